"""
Session token handling.

This module provides functionality for:
- Issuing signed, time-bounded session tokens
- Verifying session tokens
"""
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt
from jwt.exceptions import PyJWTError
from pydantic import BaseModel

from credservice.auth.errors import InvalidToken

ALGORITHM = "HS256"
DEFAULT_EXPIRATION_HOURS = 24


class SessionToken(BaseModel):
    """Token response model."""
    token: str
    token_type: str = "bearer"
    expires_at: int  # Unix timestamp


class SessionClaims(BaseModel):
    """Verified token payload."""
    email: str
    issuer: str
    exp: int


class SessionTokenIssuer:
    """
    Signs and verifies bearer tokens carrying an account's email.

    The secret is fixed for the lifetime of the issuer; rotating it
    invalidates every outstanding token.
    """
    def __init__(
        self,
        secret_key: str,
        issuer: str,
        expiration: timedelta = timedelta(hours=DEFAULT_EXPIRATION_HOURS),
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if not secret_key:
            raise ValueError("secret_key is required")
        self._secret_key = secret_key
        self.issuer = issuer
        self.expiration = expiration
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def issue(self, email: str) -> SessionToken:
        """
        Create a signed session token for an account.

        Args:
            email: Account email to embed

        Returns:
            SessionToken with the encoded token and its expiry
        """
        now = self._clock()
        expires = now + self.expiration
        payload = {
            "email": email,
            "iss": self.issuer,
            "iat": int(now.timestamp()),
            "exp": int(expires.timestamp()),
        }
        token = jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)
        return SessionToken(token=token, expires_at=int(expires.timestamp()))

    def verify(self, token: str) -> SessionClaims:
        """
        Verify a session token and return its claims.

        Raises:
            InvalidToken: bad signature, wrong issuer, malformed payload or expired
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[ALGORITHM],
                issuer=self.issuer,
                options={"require": ["exp", "iss", "email"], "verify_exp": False, "verify_iat": False},
            )
        except PyJWTError:
            raise InvalidToken("Invalid or expired token")

        email = payload.get("email")
        exp = payload.get("exp")
        if not isinstance(email, str) or not email or not isinstance(exp, (int, float)):
            raise InvalidToken("Invalid or expired token")

        # Expiry is checked against the issuer's clock rather than PyJWT's
        if exp <= self._clock().timestamp():
            raise InvalidToken("Invalid or expired token")

        return SessionClaims(email=email, issuer=payload["iss"], exp=int(exp))
