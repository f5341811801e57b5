"""
Secret handling for credentials.

This module provides:
- bcrypt hashing and verification of passwords and reset tokens
- One-time challenge code generation
- Reset token generation
"""
import secrets

import bcrypt
from starlette.concurrency import run_in_threadpool

DEFAULT_ROUNDS = 14
CHALLENGE_CODE_LENGTH = 6
RESET_TOKEN_BYTES = 32  # 256 bits
BCRYPT_MAX_BYTES = 72


def hash_secret(plaintext: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Hash a secret with bcrypt; the random salt is embedded in the result."""
    return bcrypt.hashpw(
        plaintext.encode("utf-8"),
        bcrypt.gensalt(rounds=rounds)
    ).decode("utf-8")


def verify_secret(plaintext: str, hashed: str) -> bool:
    """Check a secret against its hash. Never raises on mismatch."""
    if not plaintext or not hashed:
        return False
    try:
        return bcrypt.checkpw(plaintext.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash or secret beyond bcrypt's input limit
        return False


def generate_challenge_code() -> str:
    """Generate a zero-padded 6-digit numeric code from the system CSPRNG."""
    return f"{secrets.randbelow(10 ** CHALLENGE_CODE_LENGTH):0{CHALLENGE_CODE_LENGTH}d}"


def generate_reset_token() -> str:
    """Generate a 256-bit hex-encoded reset token."""
    return secrets.token_hex(RESET_TOKEN_BYTES)


class SecretCodec:
    """
    Hashing bound to the configured cost factor.

    bcrypt is deliberately slow, so the async helpers run it in the worker
    thread pool instead of on the event loop.
    """
    def __init__(self, rounds: int = DEFAULT_ROUNDS):
        self.rounds = rounds

    async def hash(self, plaintext: str) -> str:
        return await run_in_threadpool(hash_secret, plaintext, self.rounds)

    async def verify(self, plaintext: str, hashed: str) -> bool:
        return await run_in_threadpool(verify_secret, plaintext, hashed)

    generate_challenge_code = staticmethod(generate_challenge_code)
    generate_reset_token = staticmethod(generate_reset_token)
