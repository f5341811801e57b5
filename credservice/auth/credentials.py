"""
Credential lifecycle flows.

This module drives an account through its states:
- Register: Unregistered -> PendingVerification
- VerifyChallenge: PendingVerification -> Verified
- Login / ChangePassword on Verified accounts
- RequestReset / ConsumeReset: Verified -> ResetPending -> Verified

Register and RequestReset are two-step sagas: a tentative store write, then a
dispatch. When the dispatch fails the write is undone here, before the error
is returned, so the store never promises a notice that was not sent.
"""
import secrets
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, Protocol

from credservice.base_microservice import BaseMicroservice
from credservice.auth.errors import (
    AlreadyVerified,
    ChallengeExpired,
    DispatchUnavailable,
    DuplicateError,
    InternalError,
    InvalidChallenge,
    InvalidCredentials,
    InvalidToken,
    Mismatch,
    NotFoundError,
    ResetExpired,
    Unauthorized,
    UnknownAccount,
    Unverified,
)
from credservice.auth.hashing import SecretCodec
from credservice.auth.jwt import SessionTokenIssuer
from credservice.auth.models import Credential
from credservice.auth.schemas import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    LoginResult,
    RegisterRequest,
    ResetPasswordRequest,
    VerifyChallengeRequest,
)
from credservice.auth.store import CredentialStore
from credservice.notifications.jobs import NotificationJob, reset_job, verification_job

CHALLENGE_TTL = timedelta(minutes=15)
RESET_TTL = timedelta(minutes=15)


class Dispatcher(Protocol):
    def publish(self, job: NotificationJob) -> Awaitable[None]: ...


class CredentialService(BaseMicroservice):
    """
    Orchestrates the store, secret codec, token issuer and dispatcher.

    `now` is sampled once per call and used for every expiry decision in
    that call.
    """
    def __init__(
        self,
        store: CredentialStore,
        dispatcher: Dispatcher,
        codec: SecretCodec,
        issuer: SessionTokenIssuer,
        challenge_ttl: timedelta = CHALLENGE_TTL,
        reset_ttl: timedelta = RESET_TTL,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(service_name="auth")
        self.store = store
        self.dispatcher = dispatcher
        self.codec = codec
        self.issuer = issuer
        self.challenge_ttl = challenge_ttl
        self.reset_ttl = reset_ttl
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def register(self, data: RegisterRequest) -> Credential:
        """
        Create an unverified account and send its verification code.

        Raises:
            DuplicateError: the email is already registered
            DispatchUnavailable: the verification email could not be queued;
                the account created by this call has been removed
        """
        now = self._clock()
        email = data.email

        if await self.store.count_by_email(email) > 0:
            raise DuplicateError()

        code = self.codec.generate_challenge_code()
        credential = Credential(
            email=email,
            password_hash=await self.codec.hash(data.password),
            verified=False,
            challenge_code=code,
            challenge_expires_at=now + self.challenge_ttl,
        )
        credential = await self.store.insert(credential)

        try:
            await self.dispatcher.publish(verification_job(email, code))
        except DispatchUnavailable:
            try:
                await self.store.delete_by_email(email)
            except InternalError as e:
                self.log_error(e, context=f"Rollback of registration for {email}")
            self.log_event("credential.register.rolled_back", {"email": email})
            raise

        self.log_event("credential.registered", {"email": email})
        return credential

    async def verify_challenge(self, data: VerifyChallengeRequest) -> None:
        """Mark the account verified if the code matches and has not expired."""
        now = self._clock()
        email = data.email

        credential = await self.store.find_by_email(email)
        if credential is None:
            raise NotFoundError()
        if credential.verified:
            raise AlreadyVerified()
        if credential.challenge_code is None or not secrets.compare_digest(
            credential.challenge_code, data.otp
        ):
            raise InvalidChallenge()
        if credential.challenge_expired(now):
            raise ChallengeExpired()

        updated = await self.store.update_fields(
            email,
            {"verified": True, "challenge_code": None, "challenge_expires_at": None},
            expected={"verified": False, "challenge_code": data.otp},
        )
        if not updated:
            # Another request verified the account between the read and the write
            raise AlreadyVerified()

        self.log_event("credential.verified", {"email": email})

    async def login(self, data: LoginRequest) -> LoginResult:
        """Check the password of a verified account and issue a session token."""
        credential = await self._verified_credential(data.email)
        if not await self.codec.verify(data.password, credential.password_hash):
            self.log_event("credential.login.failed", {"email": data.email})
            raise InvalidCredentials()

        session = self.issuer.issue(credential.email)
        self.log_event("credential.login", {"email": credential.email})
        return LoginResult(token=session.token, token_type=session.token_type, expires_at=session.expires_at)

    async def change_password(self, data: ChangePasswordRequest, session_email: str) -> None:
        """
        Replace the password of the account owning the current session.

        Raises:
            Unauthorized: the session belongs to a different account
            InvalidCredentials: the current password is wrong
        """
        if session_email != data.email:
            raise Unauthorized("Session does not match account")

        credential = await self._verified_credential(data.email)
        if not await self.codec.verify(data.current_password, credential.password_hash):
            raise InvalidCredentials("Current password is incorrect")

        new_hash = await self.codec.hash(data.new_password)
        updated = await self.store.update_fields(
            data.email,
            {"password_hash": new_hash},
            expected={"password_hash": credential.password_hash},
        )
        if not updated:
            raise InvalidCredentials("Current password is incorrect")

        self.log_event("credential.password_changed", {"email": data.email})

    async def request_reset(self, data: ForgotPasswordRequest) -> None:
        """
        Store a hashed reset token and email the plaintext token.

        Any earlier reset token for the account is replaced.

        Raises:
            DispatchUnavailable: the reset email could not be queued; the reset
                fields written by this call have been cleared
        """
        now = self._clock()
        email = data.email

        credential = await self.store.find_by_email(email)
        if credential is None:
            raise NotFoundError()
        if not credential.verified:
            raise Unverified()

        token = self.codec.generate_reset_token()
        token_hash = await self.codec.hash(token)
        updated = await self.store.update_fields(
            email,
            {"reset_token_hash": token_hash, "reset_expires_at": now + self.reset_ttl},
        )
        if not updated:
            raise NotFoundError()

        try:
            await self.dispatcher.publish(reset_job(email, token))
        except DispatchUnavailable:
            try:
                await self.store.update_fields(
                    email,
                    {"reset_token_hash": None, "reset_expires_at": None},
                    expected={"reset_token_hash": token_hash},
                )
            except InternalError as e:
                self.log_error(e, context=f"Clearing reset fields for {email}")
            self.log_event("credential.reset.rolled_back", {"email": email})
            raise

        self.log_event("credential.reset_requested", {"email": email})

    async def consume_reset(self, data: ResetPasswordRequest) -> None:
        """
        Set a new password using a reset token. A token works at most once.
        """
        if data.password != data.confirm_password:
            raise Mismatch()

        now = self._clock()
        email = data.email

        credential = await self.store.find_by_email(email)
        if credential is None or not credential.has_active_reset():
            raise NotFoundError("No active password reset")
        if not await self.codec.verify(data.token, credential.reset_token_hash):
            raise InvalidToken("Invalid reset token")
        if credential.reset_expired(now):
            raise ResetExpired()

        new_hash = await self.codec.hash(data.password)
        updated = await self.store.update_fields(
            email,
            {"password_hash": new_hash, "reset_token_hash": None, "reset_expires_at": None},
            expected={"reset_token_hash": credential.reset_token_hash},
        )
        if not updated:
            raise NotFoundError("No active password reset")

        self.log_event("credential.password_reset", {"email": email})

    async def _verified_credential(self, email: str) -> Credential:
        credential = await self.store.find_by_email(email)
        if credential is None:
            raise UnknownAccount()
        if not credential.verified:
            raise Unverified()
        return credential
