"""
Test cases for the credential lifecycle flows.
"""
import pytest
from pydantic import ValidationError as SchemaValidationError

from credservice.auth.errors import (
    AlreadyVerified,
    ChallengeExpired,
    DispatchUnavailable,
    DuplicateError,
    InvalidChallenge,
    InvalidCredentials,
    InvalidToken,
    Mismatch,
    NotFoundError,
    ResetExpired,
    Unauthorized,
    Unverified,
)
from credservice.auth.hashing import generate_reset_token
from credservice.auth.schemas import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    VerifyChallengeRequest,
)
from credservice.notifications.jobs import RESET_TEMPLATE, VERIFICATION_TEMPLATE

EMAIL = "a@x.com"
PASSWORD = "Passw0rd!"


async def register(service, email=EMAIL, password=PASSWORD):
    return await service.register(RegisterRequest(email=email, password=password))


async def register_and_verify(service, dispatcher, email=EMAIL, password=PASSWORD):
    await register(service, email, password)
    otp = dispatcher.last_job().data["otp"]
    await service.verify_challenge(VerifyChallengeRequest(email=email, otp=otp))


async def request_reset_token(service, dispatcher, email=EMAIL):
    await service.request_reset(ForgotPasswordRequest(email=email))
    return dispatcher.last_job().data["token"]


def reset_request(token, password="N3wPassw0rd!", confirm=None, email=EMAIL):
    return ResetPasswordRequest(
        email=email,
        token=token,
        password=password,
        confirmPassword=confirm or password,
    )


# --- Register ---

@pytest.mark.asyncio
async def test_register_creates_unverified_credential_and_sends_code(service, store, dispatcher, clock):
    credential = await register(service)

    assert credential.email == EMAIL
    stored = await store.find_by_email(EMAIL)
    assert stored.verified is False
    assert stored.password_hash != PASSWORD

    job = dispatcher.last_job()
    assert job.recipient == EMAIL
    assert job.template == VERIFICATION_TEMPLATE
    assert job.data == {"otp": stored.challenge_code}
    assert len(stored.challenge_code) == 6
    assert stored.challenge_expired(clock.now) is False


@pytest.mark.asyncio
async def test_register_normalizes_email(service, store):
    await register(service, email="  A@X.COM ")

    assert await store.find_by_email("a@x.com") is not None


@pytest.mark.asyncio
async def test_duplicate_register_fails_without_mutation(service, store, dispatcher):
    await register(service)
    before = await store.find_by_email(EMAIL)
    jobs_before = len(dispatcher.jobs)

    with pytest.raises(DuplicateError):
        await register(service, password="An0therPass!")

    after = await store.find_by_email(EMAIL)
    assert after.password_hash == before.password_hash
    assert after.challenge_code == before.challenge_code
    assert len(dispatcher.jobs) == jobs_before


@pytest.mark.asyncio
async def test_register_rolls_back_when_dispatch_fails(service, store, dispatcher):
    dispatcher.fail = True

    with pytest.raises(DispatchUnavailable):
        await register(service)

    assert await store.find_by_email(EMAIL) is None

    # The rolled back email can register again once dispatch recovers
    dispatcher.fail = False
    await register(service)
    assert await store.count_by_email(EMAIL) == 1


def test_register_rejects_malformed_input():
    with pytest.raises(SchemaValidationError):
        RegisterRequest(email="not-an-email", password=PASSWORD)
    with pytest.raises(SchemaValidationError):
        RegisterRequest(email=EMAIL, password="short")
    with pytest.raises(SchemaValidationError):
        RegisterRequest(email=EMAIL, password="x" * 73)


# --- VerifyChallenge ---

@pytest.mark.asyncio
async def test_verify_challenge_succeeds_exactly_once(service, store, dispatcher):
    await register(service)
    otp = dispatcher.last_job().data["otp"]

    await service.verify_challenge(VerifyChallengeRequest(email=EMAIL, otp=otp))

    stored = await store.find_by_email(EMAIL)
    assert stored.verified is True
    assert stored.challenge_code is None
    assert stored.challenge_expires_at is None

    with pytest.raises(AlreadyVerified):
        await service.verify_challenge(VerifyChallengeRequest(email=EMAIL, otp=otp))


@pytest.mark.asyncio
async def test_verify_challenge_rejects_wrong_code(service, store, dispatcher):
    await register(service)
    otp = dispatcher.last_job().data["otp"]
    wrong = "000000" if otp != "000000" else "111111"

    with pytest.raises(InvalidChallenge):
        await service.verify_challenge(VerifyChallengeRequest(email=EMAIL, otp=wrong))

    assert (await store.find_by_email(EMAIL)).verified is False


@pytest.mark.asyncio
async def test_verify_challenge_rejects_expired_code(service, store, dispatcher, clock):
    await register(service)
    otp = dispatcher.last_job().data["otp"]
    clock.advance(minutes=15, seconds=1)

    with pytest.raises(ChallengeExpired):
        await service.verify_challenge(VerifyChallengeRequest(email=EMAIL, otp=otp))

    assert (await store.find_by_email(EMAIL)).verified is False


@pytest.mark.asyncio
async def test_verify_challenge_unknown_account(service):
    with pytest.raises(NotFoundError):
        await service.verify_challenge(VerifyChallengeRequest(email=EMAIL, otp="123456"))


# --- Login ---

@pytest.mark.asyncio
async def test_login_requires_verification(service, dispatcher):
    await register(service)

    with pytest.raises(Unverified) as exc_info:
        await service.login(LoginRequest(email=EMAIL, password=PASSWORD))
    assert exc_info.value.message == "Email not verified"


@pytest.mark.asyncio
async def test_login_issues_session_token(service, dispatcher, issuer):
    await register_and_verify(service, dispatcher)

    result = await service.login(LoginRequest(email=EMAIL, password=PASSWORD))

    assert issuer.verify(result.token).email == EMAIL


@pytest.mark.asyncio
async def test_login_failures(service, dispatcher):
    with pytest.raises(NotFoundError):
        await service.login(LoginRequest(email=EMAIL, password=PASSWORD))

    await register_and_verify(service, dispatcher)
    with pytest.raises(InvalidCredentials):
        await service.login(LoginRequest(email=EMAIL, password="WrongPass1!"))


# --- ChangePassword ---

def change_request(current, new, email=EMAIL):
    return ChangePasswordRequest(email=email, currentPassword=current, newPassword=new)


@pytest.mark.asyncio
async def test_change_password(service, dispatcher):
    await register_and_verify(service, dispatcher)

    await service.change_password(change_request(PASSWORD, "N3wPassw0rd!"), session_email=EMAIL)

    with pytest.raises(InvalidCredentials):
        await service.login(LoginRequest(email=EMAIL, password=PASSWORD))
    assert (await service.login(LoginRequest(email=EMAIL, password="N3wPassw0rd!"))).token


@pytest.mark.asyncio
async def test_change_password_wrong_current(service, dispatcher):
    await register_and_verify(service, dispatcher)

    with pytest.raises(InvalidCredentials):
        await service.change_password(change_request("WrongPass1!", "N3wPassw0rd!"), session_email=EMAIL)


@pytest.mark.asyncio
async def test_change_password_requires_matching_session(service, dispatcher):
    await register_and_verify(service, dispatcher)

    with pytest.raises(Unauthorized):
        await service.change_password(
            change_request(PASSWORD, "N3wPassw0rd!"),
            session_email="someone@else.com",
        )


@pytest.mark.asyncio
async def test_change_password_unverified(service):
    await register(service)

    with pytest.raises(Unverified):
        await service.change_password(change_request(PASSWORD, "N3wPassw0rd!"), session_email=EMAIL)


# --- RequestReset / ConsumeReset ---

@pytest.mark.asyncio
async def test_request_reset_stores_only_the_hash(service, store, dispatcher):
    await register_and_verify(service, dispatcher)

    token = await request_reset_token(service, dispatcher)

    job = dispatcher.last_job()
    assert job.template == RESET_TEMPLATE
    assert job.recipient == EMAIL
    stored = await store.find_by_email(EMAIL)
    assert stored.reset_token_hash is not None
    assert stored.reset_token_hash != token
    assert await service.codec.verify(token, stored.reset_token_hash)
    assert stored.reset_expires_at is not None


@pytest.mark.asyncio
async def test_request_reset_unknown_account(service):
    with pytest.raises(NotFoundError):
        await service.request_reset(ForgotPasswordRequest(email=EMAIL))


@pytest.mark.asyncio
async def test_request_reset_unverified_account(service):
    await register(service)

    with pytest.raises(Unverified):
        await service.request_reset(ForgotPasswordRequest(email=EMAIL))


@pytest.mark.asyncio
async def test_request_reset_clears_fields_when_dispatch_fails(service, store, dispatcher):
    await register_and_verify(service, dispatcher)
    dispatcher.fail = True

    with pytest.raises(DispatchUnavailable):
        await service.request_reset(ForgotPasswordRequest(email=EMAIL))

    stored = await store.find_by_email(EMAIL)
    assert stored.reset_token_hash is None
    assert stored.reset_expires_at is None


@pytest.mark.asyncio
async def test_new_reset_request_replaces_previous_token(service, dispatcher):
    await register_and_verify(service, dispatcher)
    first = await request_reset_token(service, dispatcher)
    second = await request_reset_token(service, dispatcher)

    with pytest.raises(InvalidToken):
        await service.consume_reset(reset_request(first))
    await service.consume_reset(reset_request(second))


@pytest.mark.asyncio
async def test_consume_reset_is_single_use(service, store, dispatcher):
    await register_and_verify(service, dispatcher)
    token = await request_reset_token(service, dispatcher)

    await service.consume_reset(reset_request(token))

    stored = await store.find_by_email(EMAIL)
    assert stored.reset_token_hash is None
    assert stored.reset_expires_at is None
    assert (await service.login(LoginRequest(email=EMAIL, password="N3wPassw0rd!"))).token

    with pytest.raises(NotFoundError):
        await service.consume_reset(reset_request(token, password="An0therPass!"))


@pytest.mark.asyncio
async def test_consume_reset_wrong_token_regardless_of_expiry(service, dispatcher, clock):
    await register_and_verify(service, dispatcher)
    await request_reset_token(service, dispatcher)

    with pytest.raises(InvalidToken):
        await service.consume_reset(reset_request(generate_reset_token()))

    clock.advance(minutes=30)
    with pytest.raises(InvalidToken):
        await service.consume_reset(reset_request(generate_reset_token()))


@pytest.mark.asyncio
async def test_consume_reset_expired_token(service, dispatcher, clock):
    await register_and_verify(service, dispatcher)
    token = await request_reset_token(service, dispatcher)
    clock.advance(minutes=15, seconds=1)

    with pytest.raises(ResetExpired):
        await service.consume_reset(reset_request(token))

    # Old password still works
    assert (await service.login(LoginRequest(email=EMAIL, password=PASSWORD))).token


@pytest.mark.asyncio
async def test_consume_reset_password_mismatch(service, store, dispatcher):
    await register_and_verify(service, dispatcher)
    token = await request_reset_token(service, dispatcher)

    with pytest.raises(Mismatch):
        await service.consume_reset(reset_request(token, password="N3wPassw0rd!", confirm="Different1!"))

    assert (await store.find_by_email(EMAIL)).reset_token_hash is not None


@pytest.mark.asyncio
async def test_consume_reset_without_active_reset(service, dispatcher):
    with pytest.raises(NotFoundError):
        await service.consume_reset(reset_request(generate_reset_token()))

    await register_and_verify(service, dispatcher)
    with pytest.raises(NotFoundError):
        await service.consume_reset(reset_request(generate_reset_token()))
