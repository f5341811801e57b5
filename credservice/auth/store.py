"""
Credential store gateway.

A narrow, email-keyed interface over the credentials table. Every operation
touches a single row; "not found" is a normal return value, not an error.
Calls are bounded by a per-call deadline.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlalchemy.orm import sessionmaker

from credservice.base_microservice import Base
from credservice.auth.errors import DuplicateError, InternalError
from credservice.auth.models import Credential

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT_SECONDS = 5.0


class CredentialStore:
    """
    Gateway to the credentials table.

    Uniqueness of email is enforced by the table's unique index, so
    concurrent duplicate registrations are settled here, not by callers.
    """
    def __init__(self, engine: AsyncEngine, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.engine = engine
        self.timeout = timeout
        self._session_factory = sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    async def create_schema(self) -> None:
        """Create the credentials table and its unique email index if missing."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all, tables=[Credential.__table__])
        logger.info("Credential store schema ready")

    async def _bounded(self, operation: str, call: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async def run() -> T:
            async with self._session_factory() as session:
                return await call(session)

        try:
            return await asyncio.wait_for(run(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Credential store {operation} exceeded {self.timeout}s deadline")
            raise InternalError()
        except SQLAlchemyError as e:
            logger.error(f"Credential store {operation} failed: {e.__class__.__name__}: {e}")
            raise InternalError()

    async def find_by_email(self, email: str) -> Optional[Credential]:
        async def call(session: AsyncSession) -> Optional[Credential]:
            result = await session.execute(select(Credential).where(Credential.email == email))
            return result.scalar_one_or_none()

        return await self._bounded("find_by_email", call)

    async def count_by_email(self, email: str) -> int:
        async def call(session: AsyncSession) -> int:
            result = await session.execute(
                select(func.count()).select_from(Credential).where(Credential.email == email)
            )
            return int(result.scalar_one())

        return await self._bounded("count_by_email", call)

    async def insert(self, credential: Credential) -> Credential:
        """
        Insert a new credential.

        Raises:
            DuplicateError: a credential with the same email already exists
        """
        async def call(session: AsyncSession) -> Credential:
            session.add(credential)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise DuplicateError()
            await session.refresh(credential)
            return credential

        return await self._bounded("insert", call)

    async def update_fields(
        self,
        email: str,
        fields: Mapping[str, Any],
        expected: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """
        Atomically update columns of the credential for `email`.

        Args:
            email: Account email
            fields: Column values to set
            expected: Optional column values the row must still hold for the
                update to apply (compare-and-set)

        Returns:
            True if a row was updated, False otherwise
        """
        conditions = [Credential.email == email]
        for column, value in (expected or {}).items():
            attr = getattr(Credential, column)
            conditions.append(attr.is_(None) if value is None else attr == value)

        async def call(session: AsyncSession) -> bool:
            result = await session.execute(
                update(Credential)
                .where(*conditions)
                .values(**dict(fields))
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount > 0

        return await self._bounded("update_fields", call)

    async def delete_by_email(self, email: str) -> bool:
        async def call(session: AsyncSession) -> bool:
            result = await session.execute(delete(Credential).where(Credential.email == email))
            await session.commit()
            return result.rowcount > 0

        return await self._bounded("delete_by_email", call)

    async def ping(self) -> bool:
        """Return True if the store answers a trivial query."""
        try:
            await self.count_by_email("")
            return True
        except InternalError:
            return False

