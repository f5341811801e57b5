"""
Authentication router.

This module provides the FastAPI router for the credential endpoints:
- Registration and one-time code verification
- Login
- Password change
- Forgot / reset password
"""
from fastapi import APIRouter, Depends, status

from credservice.base_microservice import BaseMicroservice, utcnow
from credservice.auth.credentials import CredentialService
from credservice.auth.jwt import SessionClaims
from credservice.auth.middleware import get_credential_service, get_current_session
from credservice.auth.schemas import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    VerifyChallengeRequest,
)

# Create router
router = APIRouter(tags=["auth"])

# Create service instance
base_service = BaseMicroservice(service_name="auth")


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    data: RegisterRequest,
    service: CredentialService = Depends(get_credential_service),
):
    """Register an account and send the verification code."""
    credential = await service.register(data)
    return base_service.envelope(
        data={"email": credential.email},
        message="Registration initiated. Please check your email for OTP verification.",
        status_code=status.HTTP_201_CREATED,
    )


@router.post("/verify-otp")
async def verify_otp(
    data: VerifyChallengeRequest,
    service: CredentialService = Depends(get_credential_service),
):
    """Verify an account with its one-time code."""
    await service.verify_challenge(data)
    return base_service.envelope(message="Email verified successfully")


@router.post("/login")
async def login(
    data: LoginRequest,
    service: CredentialService = Depends(get_credential_service),
):
    """Authenticate a verified account and return a session token."""
    result = await service.login(data)
    return base_service.envelope(
        data=result.model_dump(by_alias=True),
        message="Login successful",
    )


@router.patch("/update-password")
async def update_password(
    data: ChangePasswordRequest,
    session: SessionClaims = Depends(get_current_session),
    service: CredentialService = Depends(get_credential_service),
):
    """Change the password of the authenticated account."""
    await service.change_password(data, session_email=session.email)
    return base_service.envelope(message="Password updated successfully")


@router.post("/forgot-password")
async def forgot_password(
    data: ForgotPasswordRequest,
    service: CredentialService = Depends(get_credential_service),
):
    """Send a password reset token by email."""
    await service.request_reset(data)
    return base_service.envelope(message="Reset link sent to your email")


@router.post("/reset-password")
async def reset_password(
    data: ResetPasswordRequest,
    service: CredentialService = Depends(get_credential_service),
):
    """Set a new password with a reset token."""
    await service.consume_reset(data)
    return base_service.envelope(message="Password has been reset successfully")


@router.get("/ping")
async def ping():
    """Simple ping endpoint to check if the service is alive."""
    return base_service.envelope(
        data={"timestamp": utcnow().isoformat()},
        message="Auth service is alive",
    )
