"""
Credential error taxonomy.

Every externally visible failure carries a stable code, an HTTP status and a
human message. Internal fault details are logged, never put on these errors.
"""
from typing import Dict, Optional


class CredentialError(Exception):
    """Base class for all credential lifecycle failures."""
    code = "BAD_REQUEST"
    status_code = 400
    default_message = "Request could not be processed"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, str]] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class ValidationError(CredentialError):
    code = "VALIDATION_ERROR"
    default_message = "Validation failed"


class DuplicateError(CredentialError):
    code = "DUPLICATE_ENTRY"
    status_code = 409
    default_message = "Email already registered"


class NotFoundError(CredentialError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "User not found"


class UnknownAccount(NotFoundError):
    """No account for the email on an authenticating request (login, password change)."""
    status_code = 401


class Unverified(CredentialError):
    code = "EMAIL_NOT_VERIFIED"
    status_code = 401
    default_message = "Email not verified"


class InvalidCredentials(CredentialError):
    code = "INVALID_CREDENTIALS"
    status_code = 401
    default_message = "Invalid credentials"


class Unauthorized(CredentialError):
    code = "UNAUTHORIZED"
    status_code = 401
    default_message = "Could not validate credentials"


class AlreadyVerified(CredentialError):
    code = "ALREADY_VERIFIED"
    default_message = "Email already verified"


class InvalidChallenge(CredentialError):
    code = "INVALID_OTP"
    default_message = "Invalid OTP"


class ChallengeExpired(CredentialError):
    code = "OTP_EXPIRED"
    default_message = "OTP has expired"


class InvalidToken(CredentialError):
    code = "INVALID_TOKEN"
    default_message = "Invalid or expired token"


class ResetExpired(CredentialError):
    code = "RESET_EXPIRED"
    default_message = "Reset token has expired"


class Mismatch(CredentialError):
    code = "PASSWORD_MISMATCH"
    default_message = "Passwords do not match"


class DispatchUnavailable(CredentialError):
    code = "DISPATCH_UNAVAILABLE"
    status_code = 503
    default_message = "Email service unavailable"


class InternalError(CredentialError):
    code = "INTERNAL_ERROR"
    status_code = 500
    default_message = "Internal server error"
