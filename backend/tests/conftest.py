"""Pytest configuration and fixtures for UserGate tests."""

import os
import time
from typing import AsyncGenerator

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa


def _rsa_pem_pair() -> tuple[str, str]:
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")
    return private_pem, public_pem


ACCESS_KEYS = _rsa_pem_pair()
REFRESH_KEYS = _rsa_pem_pair()

# Settings are read at import time, so the environment must be ready first
os.environ.update(
    {
        "APP_ENV": "test",
        "DEBUG": "false",
        "DATABASE_URL": "sqlite+aiosqlite:///:memory:",
        "REDIS_URL": "redis://localhost:6379/15",
        "RATE_LIMIT_ENABLED": "false",
        "RATE_LIMIT_STORAGE_URI": "memory://",
        "SENTRY_DSN": "",
        "ACCESS_TOKEN_PRIVATE_KEY": ACCESS_KEYS[0],
        "ACCESS_TOKEN_PUBLIC_KEY": ACCESS_KEYS[1],
        "REFRESH_TOKEN_PRIVATE_KEY": REFRESH_KEYS[0],
        "REFRESH_TOKEN_PUBLIC_KEY": REFRESH_KEYS[1],
    }
)

import pytest  # noqa: E402
from fastapi import FastAPI  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from redis.exceptions import ConnectionError as RedisConnectionError  # noqa: E402
from redis.exceptions import WatchError  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from app.core.database import Base, get_db  # noqa: E402
from app.core.security import KeyPair, TokenCodec, get_password_hash  # noqa: E402
from app.main import create_app  # noqa: E402
from app.models.user import Role, User  # noqa: E402
from app.schemas.token import TokenClass  # noqa: E402
from app.schemas.user import UserLogin  # noqa: E402
from app.services.session_store import SessionStore  # noqa: E402
from app.services.token_service import TokenService  # noqa: E402
from app.services.user_directory import DatabaseUserDirectory  # noqa: E402

TEST_ISSUER = "usergate"
TEST_PASSWORD = "Test123!@#"
ADMIN_PASSWORD = "Admin123!@#"


class FakePipeline:
    """MULTI/EXEC pipeline over FakeRedis, with optimistic WATCH."""

    def __init__(self, redis: "FakeRedis") -> None:
        self.redis = redis
        self.commands: list[tuple[str, tuple, dict]] = []
        self.watched: dict[str, int] = {}
        self.immediate = False

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.commands.clear()
        self.watched.clear()

    async def watch(self, *keys: str) -> None:
        self.redis._check()
        self.immediate = True
        for key in keys:
            self.watched[key] = self.redis.versions.get(key, 0)
            if key in self.redis.racing_writes:
                # Another client touches the key between WATCH and EXEC
                self.redis._bump(key)

    async def get(self, key: str) -> str | None:
        return await self.redis.get(key)

    def multi(self) -> None:
        self.immediate = False

    def set(self, key: str, value: str, ex: int | None = None) -> "FakePipeline":
        self.commands.append(("set", (key, value), {"ex": ex}))
        return self

    def delete(self, *keys: str) -> "FakePipeline":
        self.commands.append(("delete", keys, {}))
        return self

    async def execute(self) -> list:
        self.redis._check()
        for key, version in self.watched.items():
            if self.redis.versions.get(key, 0) != version:
                raise WatchError("Watched variable changed.")
        results = []
        for name, args, kwargs in self.commands:
            results.append(await getattr(self.redis, name)(*args, **kwargs))
        self.redis.transactions += 1
        return results


class FakeRedis:
    """In-process stand-in for the redis.asyncio client used by SessionStore."""

    def __init__(self) -> None:
        self.data: dict[str, tuple[str, float | None]] = {}
        self.versions: dict[str, int] = {}
        self.racing_writes: set[str] = set()
        self.transactions = 0
        self.fail = False
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("Connection refused")

    def _bump(self, key: str) -> None:
        self.versions[key] = self.versions.get(key, 0) + 1

    def ttl_of(self, key: str) -> float | None:
        """Seconds left before ``key`` expires, None when it has no expiry."""
        _, expires_at = self.data[key]
        return None if expires_at is None else expires_at - time.monotonic()

    def expire_now(self, key: str) -> None:
        """Simulate Redis evicting ``key`` at its TTL."""
        self.data.pop(key, None)
        self._bump(key)

    async def get(self, key: str) -> str | None:
        self._check()
        entry = self.data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= time.monotonic():
            del self.data[key]
            return None
        return value

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self._check()
        self.data[key] = (value, time.monotonic() + ex if ex else None)
        self._bump(key)
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
                self._bump(key)
        return removed

    async def ping(self) -> bool:
        self._check()
        return True

    async def aclose(self) -> None:
        self.closed = True

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    def session_keys(self) -> list[str]:
        return sorted(key for key in self.data if key.startswith("auth:session:"))


@pytest.fixture
def fake_redis() -> FakeRedis:
    """Fresh in-memory Redis double for each test."""
    return FakeRedis()


@pytest.fixture
def session_store(fake_redis: FakeRedis) -> SessionStore:
    return SessionStore(fake_redis, operation_timeout=1.0)


@pytest.fixture
def codec() -> TokenCodec:
    """Codec over the test key pairs exported to the environment."""
    return TokenCodec(
        {
            TokenClass.ACCESS: KeyPair(*ACCESS_KEYS),
            TokenClass.REFRESH: KeyPair(*REFRESH_KEYS),
        },
        algorithm="RS256",
        issuer=TEST_ISSUER,
    )


@pytest.fixture(scope="session")
def access_keys() -> tuple[str, str]:
    """(private PEM, public PEM) configured for access tokens."""
    return ACCESS_KEYS


@pytest.fixture(scope="session")
def refresh_keys() -> tuple[str, str]:
    return REFRESH_KEYS


@pytest.fixture(scope="session")
def foreign_keys() -> tuple[str, str]:
    """A key pair that belongs to neither token class."""
    return _rsa_pem_pair()


@pytest.fixture
async def engine(tmp_path):
    """Create async engine for tests backed by a throwaway SQLite file."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'usergate.db'}", echo=False)

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def user_directory(session_factory) -> DatabaseUserDirectory:
    return DatabaseUserDirectory(session_factory, timeout=2.0)


@pytest.fixture
def token_service(codec, session_store, user_directory) -> TokenService:
    return TokenService(
        codec,
        session_store,
        user_directory,
        issuer=TEST_ISSUER,
        access_ttl_minutes=15,
        refresh_ttl_minutes=60,
    )


@pytest.fixture
def app(token_service: TokenService, db_session: AsyncSession) -> FastAPI:
    """Application wired to the test token service and database session."""
    application = create_app(token_service)

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    application.dependency_overrides[get_db] = override_get_db
    return application


@pytest.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client over the ASGI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def _create_user(db_session: AsyncSession, **fields) -> User:
    user = User(**fields)
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.fixture
async def test_user(db_session: AsyncSession) -> User:
    """Create a test user for authentication tests."""
    return await _create_user(
        db_session,
        name="Test User",
        email="test@example.com",
        hashed_password=get_password_hash(TEST_PASSWORD),
        role=Role.USER,
    )


@pytest.fixture
async def test_admin(db_session: AsyncSession) -> User:
    """Create a test admin for privileged operations."""
    return await _create_user(
        db_session,
        name="Admin User",
        email="admin@example.com",
        hashed_password=get_password_hash(ADMIN_PASSWORD),
        role=Role.ADMIN,
    )


@pytest.fixture
async def user_tokens(token_service: TokenService, test_user: User):
    """Token pair issued to ``test_user`` through a real login."""
    result = await token_service.login(UserLogin(email=test_user.email, password=TEST_PASSWORD))
    return result.tokens


@pytest.fixture
async def admin_tokens(token_service: TokenService, test_admin: User):
    result = await token_service.login(UserLogin(email=test_admin.email, password=ADMIN_PASSWORD))
    return result.tokens


@pytest.fixture
def auth_headers(user_tokens) -> dict[str, str]:
    return {"Authorization": f"Bearer {user_tokens.access_token}"}


@pytest.fixture
def admin_headers(admin_tokens) -> dict[str, str]:
    return {"Authorization": f"Bearer {admin_tokens.access_token}"}
