"""
Request and response models for the credential endpoints.

Emails are normalized (stripped, lower-cased) and every secret is checked
against bcrypt's 72-byte input limit before any flow touches the store.
"""
import re

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from credservice.auth.hashing import BCRYPT_MAX_BYTES

OTP_PATTERN = re.compile(r"^\d{6}$")
MIN_PASSWORD_LENGTH = 8


def normalize_email(value: str) -> str:
    return value.strip().lower()


def check_password(value: str) -> str:
    if len(value) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(value.encode("utf-8")) > BCRYPT_MAX_BYTES:
        raise ValueError(f"Password must be at most {BCRYPT_MAX_BYTES} bytes")
    return value


class EmailRequest(BaseModel):
    email: EmailStr

    @field_validator("email", mode="before")
    @classmethod
    def email_must_be_normalized(cls, v):
        if isinstance(v, str):
            return normalize_email(v)
        return v


class RegisterRequest(EmailRequest):
    """Model for account registration."""
    password: str

    @field_validator("password")
    @classmethod
    def password_must_be_valid(cls, v: str) -> str:
        return check_password(v)


class VerifyChallengeRequest(EmailRequest):
    """Model for one-time code verification."""
    otp: str

    @field_validator("otp")
    @classmethod
    def otp_must_be_six_digits(cls, v: str) -> str:
        v = v.strip()
        if not OTP_PATTERN.match(v):
            raise ValueError("OTP must be exactly 6 digits")
        return v


class LoginRequest(EmailRequest):
    """Model for login."""
    password: str = Field(..., min_length=1)


class ChangePasswordRequest(EmailRequest):
    """Model for an authenticated password change."""
    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(..., alias="currentPassword", min_length=1)
    new_password: str = Field(..., alias="newPassword")

    @field_validator("new_password")
    @classmethod
    def new_password_must_be_valid(cls, v: str) -> str:
        return check_password(v)


class ForgotPasswordRequest(EmailRequest):
    """Model for requesting a password reset."""


class ResetPasswordRequest(EmailRequest):
    """Model for consuming a password reset token."""
    model_config = ConfigDict(populate_by_name=True)

    token: str = Field(..., min_length=1, max_length=BCRYPT_MAX_BYTES)
    password: str
    confirm_password: str = Field(..., alias="confirmPassword")

    @field_validator("password", "confirm_password")
    @classmethod
    def passwords_must_be_valid(cls, v: str) -> str:
        return check_password(v)


class LoginResult(BaseModel):
    """Session token returned to clients."""
    model_config = ConfigDict(populate_by_name=True)

    token: str
    token_type: str = Field("bearer", serialization_alias="tokenType")
    expires_at: int = Field(..., serialization_alias="expiresAt")
