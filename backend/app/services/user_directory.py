"""Relational collaborator used by the token service.

Each call checks out its own pooled session, so the directory can be shared
by every request for the lifetime of the process.
"""

import asyncio
from typing import Awaitable, Protocol, TypeVar

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import StoreUnavailableError
from app.crud import user as user_crud
from app.models.user import User

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class UserDirectory(Protocol):
    async def verify_credentials(self, email: str, password: str) -> User | None: ...

    async def get_subject(self, user_id: str) -> str | None: ...


class DatabaseUserDirectory:
    """Credential checks and identity lookups against the users table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        timeout: float = 5.0,
    ) -> None:
        self.session_factory = session_factory
        self.timeout = timeout

    async def _bounded(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.error("user_directory.timeout", operation=operation, timeout=self.timeout)
            raise StoreUnavailableError(detail=f"{operation} timed out") from exc
        except SQLAlchemyError as exc:
            logger.error("user_directory.unavailable", operation=operation, error=str(exc))
            raise StoreUnavailableError(detail=f"{operation} failed") from exc

    async def verify_credentials(self, email: str, password: str) -> User | None:
        """Return the live user owning these credentials, or None."""

        async def _verify() -> User | None:
            async with self.session_factory() as session:
                return await user_crud.authenticate_user(session, email, password)

        return await self._bounded("verify_credentials", _verify())

    async def get_subject(self, user_id: str) -> str | None:
        """Return the current display subject (email) of a live user, or None."""
        try:
            numeric_id = int(user_id)
        except ValueError:
            return None

        async def _lookup() -> str | None:
            async with self.session_factory() as session:
                user = await user_crud.get_user_by_id(session, numeric_id)
                return user.email if user else None

        return await self._bounded("get_subject", _lookup())
