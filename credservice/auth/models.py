"""
Credential model.

One row per account, keyed by a unique, case-normalized email.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Integer, String, Boolean, DateTime

from credservice.base_microservice import Base, utcnow


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to timestamps read back from drivers that drop tzinfo."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Credential(Base):
    """Credential record for a single account."""
    __tablename__ = "credentials"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(320), unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    verified = Column(Boolean, nullable=False, default=False)
    challenge_code = Column(String(6), nullable=True)
    challenge_expires_at = Column(DateTime(timezone=True), nullable=True)
    reset_token_hash = Column(String, nullable=True)
    reset_expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def challenge_expired(self, now: datetime) -> bool:
        expires = as_utc(self.challenge_expires_at)
        return expires is None or now > expires

    def has_active_reset(self) -> bool:
        return self.reset_token_hash is not None and self.reset_expires_at is not None

    def reset_expired(self, now: datetime) -> bool:
        expires = as_utc(self.reset_expires_at)
        return expires is None or now > expires

    def __repr__(self) -> str:
        return f"<Credential id={self.id} email={self.email!r} verified={self.verified}>"
