"""Redis-backed session store for issued tokens.

A session entry ``auth:session:<token_id> -> <user_id>`` exists exactly as
long as the token is live. Expiry is left to Redis; explicit deletion is the
only early revocation. The link ``auth:pair:<access_id> -> <refresh_id>``
lives as long as the refresh entry so logout can find it after the access
token has expired.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, TypeVar

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError, WatchError

from app.core.config import Settings
from app.core.errors import StoreUnavailableError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

SESSION_PREFIX = "auth:session:"
PAIR_PREFIX = "auth:pair:"


@dataclass(frozen=True)
class SessionEntry:
    """One token's liveness record."""

    token_id: str
    user_id: str
    ttl_seconds: int


def create_redis_client(settings: Settings) -> aioredis.Redis:
    """Build the shared, internally pooled Redis client. Does not connect."""
    return aioredis.from_url(
        str(settings.REDIS_URL),
        decode_responses=True,
        socket_timeout=settings.REDIS_TIMEOUT_SECONDS,
        socket_connect_timeout=settings.REDIS_TIMEOUT_SECONDS,
    )


class SessionStore:
    """Token liveness records over a shared Redis client."""

    def __init__(self, client: Any, *, operation_timeout: float = 2.0) -> None:
        self.client = client
        self.operation_timeout = operation_timeout

    @staticmethod
    def session_key(token_id: str) -> str:
        return f"{SESSION_PREFIX}{token_id}"

    @staticmethod
    def pair_key(access_token_id: str) -> str:
        return f"{PAIR_PREFIX}{access_token_id}"

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.operation_timeout)
        except asyncio.TimeoutError as exc:
            logger.error("session_store.timeout", operation=operation, timeout=self.operation_timeout)
            raise StoreUnavailableError(detail=f"{operation} timed out") from exc
        except WatchError:
            raise
        except RedisError as exc:
            logger.error("session_store.unavailable", operation=operation, error=str(exc))
            raise StoreUnavailableError(detail=f"{operation} failed: {exc}") from exc

    async def put(self, token_id: str, user_id: str, ttl_seconds: int) -> None:
        """Insert or overwrite a session entry with expiry."""
        await self._call(
            "put",
            self.client.set(self.session_key(token_id), user_id, ex=max(1, ttl_seconds)),
        )

    async def get(self, token_id: str) -> str | None:
        """Return the user id of a live session, or None."""
        return await self._call("get", self.client.get(self.session_key(token_id)))

    async def delete(self, *token_ids: str) -> int:
        """Delete session entries. Absent keys are not an error."""
        if not token_ids:
            return 0
        keys = [self.session_key(token_id) for token_id in token_ids]
        return await self._call("delete", self.client.delete(*keys))

    async def put_pair(self, access: SessionEntry, refresh: SessionEntry) -> None:
        """
        Store both entries of a token pair and their link in one transaction.

        Raises:
            StoreUnavailableError: If the transaction did not complete; nothing
                is considered stored in that case
        """

        async def _execute() -> None:
            async with self.client.pipeline(transaction=True) as pipe:
                self._queue_pair(pipe, access, refresh)
                await pipe.execute()

        await self._call("put_pair", _execute())

    async def rotate(
        self,
        old_refresh_token_id: str,
        expected_user_id: str,
        access: SessionEntry,
        refresh: SessionEntry,
    ) -> bool:
        """
        Consume a refresh session and store a new pair atomically.

        The old key is WATCHed, so if another request consumed or changed it
        in the meantime the transaction aborts.

        Returns:
            True if the new pair was stored and the old entry deleted, False if
            the old entry was no longer live for ``expected_user_id``
        """
        old_key = self.session_key(old_refresh_token_id)

        async def _execute() -> bool:
            async with self.client.pipeline(transaction=True) as pipe:
                await pipe.watch(old_key)
                if await pipe.get(old_key) != expected_user_id:
                    return False
                pipe.multi()
                self._queue_pair(pipe, access, refresh)
                pipe.delete(old_key)
                await pipe.execute()
                return True

        try:
            return await self._call("rotate", _execute())
        except WatchError:
            logger.warning("session_store.rotate_conflict", token_id=old_refresh_token_id)
            return False

    async def revoke_access(self, access_token_id: str) -> str | None:
        """
        Delete an access session and its paired refresh session.

        Returns:
            The paired refresh token id, if one was still linked
        """
        pair_key = self.pair_key(access_token_id)
        refresh_token_id = await self._call("get_pair", self.client.get(pair_key))
        keys = [self.session_key(access_token_id), pair_key]
        if refresh_token_id:
            keys.append(self.session_key(refresh_token_id))
        await self._call("revoke", self.client.delete(*keys))
        return refresh_token_id

    async def ping(self) -> bool:
        return bool(await self._call("ping", self.client.ping()))

    async def close(self) -> None:
        await self.client.aclose()

    def _queue_pair(self, pipe: Any, access: SessionEntry, refresh: SessionEntry) -> None:
        pipe.set(self.session_key(access.token_id), access.user_id, ex=max(1, access.ttl_seconds))
        pipe.set(self.session_key(refresh.token_id), refresh.user_id, ex=max(1, refresh.ttl_seconds))
        pipe.set(self.pair_key(access.token_id), refresh.token_id, ex=max(1, refresh.ttl_seconds))
