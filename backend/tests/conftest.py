"""Pytest configuration and shared fixtures for API and auth service tests."""

import asyncio
import itertools
import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set test DB and cheap argon2 parameters before app imports so config/engine use them
_TEST_DB_PATH = os.path.join(tempfile.gettempdir(), f"learning_planner_test_{os.getpid()}.db")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TEST_DB_PATH}")
os.environ.setdefault("JWT_ACCESS_SECRET", "test-access-secret")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret")
os.environ.setdefault("ARGON2_MEMORY_COST", "1024")
os.environ.setdefault("ARGON2_TIME_COST", "1")
os.environ.setdefault("ARGON2_PARALLELISM", "1")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

from learning_planner.api.deps import get_password_hasher
from learning_planner.core.auth import PasswordHasher, TokenSigner
from learning_planner.db.base import Base
from learning_planner.db.session import async_session_maker, engine
from learning_planner.main import app
from learning_planner.models.refresh_token import RefreshToken
from learning_planner.models.user import User
from learning_planner.services.auth import AuthConfig, AuthService, CredentialVerifier
import learning_planner.models  # noqa: F401 - register tables


class FakeClock:
    """Controllable `now` for the auth service."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, delta: timedelta) -> None:
        self.current += delta


class InMemoryUserStore:
    def __init__(self):
        self._users: dict[int, User] = {}

    async def get_by_email(self, email: str) -> User | None:
        return next((u for u in self._users.values() if u.email == email), None)

    async def get_by_id(self, user_id: int) -> User | None:
        return self._users.get(user_id)

    async def create(self, *, email: str, password_hash: str, name: str | None = None) -> User:
        user = User(id=len(self._users) + 1, email=email, name=name, password_hash=password_hash)
        self._users[user.id] = user
        return user


def _copy_token(row: RefreshToken) -> RefreshToken:
    return RefreshToken(**{c.name: getattr(row, c.name) for c in RefreshToken.__table__.columns})


class InMemoryRefreshTokenStore:
    """Mimics the SQL store. Reads return snapshots and yield to the loop, like a DB round trip."""

    def __init__(self):
        self.rows: dict[int, RefreshToken] = {}
        self._ids = itertools.count(1)

    async def find_by_jti(self, jti: str) -> RefreshToken | None:
        row = next((r for r in self.rows.values() if r.jti == jti), None)
        snapshot = _copy_token(row) if row is not None else None
        await asyncio.sleep(0)
        return snapshot

    async def create(self, *, jti, token_hash, family_id, user_id, expires_at, user_agent=None, ip_address=None):
        row = RefreshToken(
            id=next(self._ids),
            jti=jti,
            token_hash=token_hash,
            family_id=family_id,
            user_id=user_id,
            is_revoked=False,
            expires_at=expires_at,
            user_agent=user_agent,
            ip_address=ip_address,
        )
        self.rows[row.id] = row
        return row

    async def mark_revoked(self, token_id: int) -> bool:
        row = self.rows.get(token_id)
        if row is None or row.is_revoked:
            return False
        row.is_revoked = True
        return True

    def _revoke(self, rows) -> int:
        count = 0
        for row in rows:
            if not row.is_revoked:
                row.is_revoked = True
                count += 1
        return count

    async def revoke_by_jti(self, jti: str) -> int:
        return self._revoke(r for r in self.rows.values() if r.jti == jti)

    async def revoke_family(self, family_id: str) -> int:
        return self._revoke(r for r in self.rows.values() if r.family_id == family_id)

    async def revoke_all_for_user(self, user_id: int) -> int:
        return self._revoke(r for r in self.rows.values() if r.user_id == user_id)

    async def delete_expired_before(self, cutoff: datetime) -> int:
        stale = [i for i, r in self.rows.items() if r.expires_at < cutoff]
        for i in stale:
            del self.rows[i]
        return len(stale)

    def by_jti(self, jti: str) -> RefreshToken:
        return next(r for r in self.rows.values() if r.jti == jti)


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(memory_cost=1024, time_cost=1, parallelism=1)


@pytest.fixture
def auth_config() -> AuthConfig:
    return AuthConfig(access_secret="unit-access-secret", refresh_secret="unit-refresh-secret")


@pytest.fixture
def signer(auth_config: AuthConfig) -> TokenSigner:
    return TokenSigner(access_secret=auth_config.access_secret, refresh_secret=auth_config.refresh_secret)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def user_store() -> InMemoryUserStore:
    return InMemoryUserStore()


@pytest.fixture
def token_store() -> InMemoryRefreshTokenStore:
    return InMemoryRefreshTokenStore()


@pytest.fixture
def auth_service(user_store, token_store, signer, hasher, auth_config, clock) -> AuthService:
    """AuthService wired to in-memory stores."""
    return AuthService(
        users=user_store,
        tokens=token_store,
        signer=signer,
        hasher=hasher,
        verifier=CredentialVerifier(user_store, hasher),
        config=auth_config,
        now=clock,
    )


@pytest_asyncio.fixture
async def clean_db():
    """Recreate all tables so the test starts with an empty DB."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    # Pooled aiosqlite connections are bound to this test's event loop.
    await engine.dispose()


@pytest_asyncio.fixture
async def client(clean_db):
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def test_user(clean_db):
    """Create a user via DB (committed) and return (user_id, email, password)."""
    async with async_session_maker() as session:
        user = User(
            email="test@test.com",
            name="Test User",
            password_hash=get_password_hasher().hash("password123"),
        )
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user.id, user.email, "password123"
