"""
Authentication dependencies.

This module provides FastAPI dependencies for:
- Resolving the credential service from the application
- Validating bearer session tokens
"""
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from credservice.auth.credentials import CredentialService
from credservice.auth.errors import InternalError, InvalidToken, Unauthorized
from credservice.auth.jwt import SessionClaims

bearer_scheme = HTTPBearer(auto_error=False)


def get_credential_service(request: Request) -> CredentialService:
    """Dependency returning the service wired by the composition root."""
    service = getattr(request.app.state, "credential_service", None)
    if service is None:
        raise InternalError("Credential service is not initialized")
    return service


async def get_current_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    service: CredentialService = Depends(get_credential_service),
) -> SessionClaims:
    """
    Dependency validating the bearer session token.

    Raises:
        Unauthorized: missing, malformed, forged or expired token
    """
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise Unauthorized("Missing token")
    try:
        return service.issuer.verify(credentials.credentials)
    except InvalidToken:
        raise Unauthorized("Invalid or expired token")
