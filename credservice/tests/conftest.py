"""
Shared fixtures: an in-memory SQLite credential store, a recording
dispatcher, a controllable clock and an HTTP client bound to the app.
"""
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from credservice.base_microservice import create_store_engine
from credservice.main import create_app
from credservice.auth.credentials import CredentialService
from credservice.auth.errors import DispatchUnavailable
from credservice.auth.hashing import SecretCodec
from credservice.auth.jwt import SessionTokenIssuer
from credservice.auth.store import CredentialStore

TEST_SECRET = "test-secret-key-0123456789abcdef0123"
TEST_ISSUER = "credservice-test"
TEST_ROUNDS = 4


class Clock:
    """Manually advanced UTC clock."""
    def __init__(self):
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingDispatcher:
    """Stands in for the broker dispatcher; records jobs or fails on demand."""
    def __init__(self):
        self.jobs = []
        self.fail = False
        self.is_connected = True

    async def publish(self, job) -> None:
        if self.fail:
            raise DispatchUnavailable()
        self.jobs.append(job)

    def last_job(self):
        return self.jobs[-1]


@pytest_asyncio.fixture
async def store():
    engine = create_store_engine("sqlite+aiosqlite://")
    credential_store = CredentialStore(engine, timeout=5.0)
    await credential_store.create_schema()
    yield credential_store
    await engine.dispose()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def issuer():
    return SessionTokenIssuer(TEST_SECRET, TEST_ISSUER)


@pytest.fixture
def service(store, dispatcher, issuer, clock):
    return CredentialService(
        store=store,
        dispatcher=dispatcher,
        codec=SecretCodec(rounds=TEST_ROUNDS),
        issuer=issuer,
        clock=clock,
    )


@pytest_asyncio.fixture
async def client(service):
    app = create_app(credential_service=service)
    transport = ASGITransport(app=app)
    async with AsyncClient(base_url="http://test", transport=transport) as ac:
        yield ac
