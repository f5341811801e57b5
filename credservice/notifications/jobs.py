"""
Notification jobs handed to the dispatcher.
"""
from typing import Dict

from pydantic import BaseModel, ConfigDict, Field

VERIFICATION_TEMPLATE = "email_verification"
VERIFICATION_SUBJECT = "Verify Your Email"
RESET_TEMPLATE = "password_reset"
RESET_SUBJECT = "Reset Your Password"


class NotificationJob(BaseModel):
    """Email job; serialized on the wire as {to, subject, template, data}."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    recipient: str = Field(..., alias="to")
    subject: str
    template: str
    data: Dict[str, str] = Field(default_factory=dict)

    def to_json(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")


def verification_job(email: str, otp: str) -> NotificationJob:
    return NotificationJob(
        recipient=email,
        subject=VERIFICATION_SUBJECT,
        template=VERIFICATION_TEMPLATE,
        data={"otp": otp},
    )


def reset_job(email: str, token: str) -> NotificationJob:
    return NotificationJob(
        recipient=email,
        subject=RESET_SUBJECT,
        template=RESET_TEMPLATE,
        data={"token": token},
    )
