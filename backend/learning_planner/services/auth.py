"""Auth service: register, login, refresh-token rotation with reuse detection, logout.

Each login/registration starts a token family. A refresh consumes the presented
token and issues its replacement in the same family. Presenting a token that is
unknown, already consumed/revoked or whose hash does not match revokes the whole
family, so a stolen token from earlier in the chain cannot be used separately.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from learning_planner.core import metrics
from learning_planner.core.auth import (
    PasswordHasher,
    TokenSigner,
    expiration_delta,
    new_token_id,
)
from learning_planner.core.errors import (
    ConflictError,
    InvalidCredentials,
    InvalidRefreshToken,
    RefreshTokenExpired,
    RefreshTokenRevoked,
)
from learning_planner.models.user import User
from learning_planner.services.token_store import RefreshTokenStore
from learning_planner.services.user_store import UserStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # Some drivers (SQLite) hand back naive datetimes for timezone-aware columns.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class AuthConfig:
    """Secrets and lifetimes for the auth service. TTLs use the '<int><s|m|h|d>' format."""

    access_secret: str
    refresh_secret: str
    algorithm: str = "HS256"
    access_expires_in: str = "15m"
    refresh_expires_in: str = "7d"
    retention_days: int = 30

    @classmethod
    def from_settings(cls, settings: Any) -> "AuthConfig":
        return cls(
            access_secret=settings.jwt_access_secret,
            refresh_secret=settings.jwt_refresh_secret,
            algorithm=settings.jwt_algorithm,
            access_expires_in=settings.jwt_access_expires_in,
            refresh_expires_in=settings.jwt_refresh_expires_in,
            retention_days=settings.refresh_token_retention_days,
        )

    @property
    def access_ttl(self) -> timedelta:
        return expiration_delta(self.access_expires_in)

    @property
    def refresh_ttl(self) -> timedelta:
        return expiration_delta(self.refresh_expires_in)


@dataclass(frozen=True)
class UserIdentity:
    id: int
    email: str
    name: str | None = None

    @classmethod
    def from_user(cls, user: User) -> "UserIdentity":
        return cls(id=user.id, email=user.email, name=user.name)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class AuthResult:
    user: UserIdentity
    access_token: str
    refresh_token: str


class CredentialVerifier:
    """Checks email/password. Unknown email and wrong password fail identically."""

    def __init__(self, users: UserStore, hasher: PasswordHasher) -> None:
        self.users = users
        self.hasher = hasher

    async def verify(self, email: str, password: str) -> User:
        user = await self.users.get_by_email(email)
        if user is None:
            # Spend one hash verification anyway so timing does not reveal unknown accounts.
            self.hasher.verify(self.hasher.dummy_hash, password)
            raise InvalidCredentials()
        if not self.hasher.verify(user.password_hash, password):
            raise InvalidCredentials()
        return user


class AuthService:
    def __init__(
        self,
        *,
        users: UserStore,
        tokens: RefreshTokenStore,
        signer: TokenSigner,
        hasher: PasswordHasher,
        verifier: CredentialVerifier,
        config: AuthConfig,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.users = users
        self.tokens = tokens
        self.signer = signer
        self.hasher = hasher
        self.verifier = verifier
        self.config = config
        self.now = now

    async def register(
        self,
        email: str,
        password: str,
        name: str | None = None,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> AuthResult:
        if await self.users.get_by_email(email) is not None:
            raise ConflictError()
        user = await self.users.create(email=email, password_hash=self.hasher.hash(password), name=name)
        pair = await self._issue_tokens(user.id, user.email, None, user_agent, ip_address)
        logger.info("Registered user_id=%s", user.id)
        metrics.auth_events.labels(event="register").inc()
        return AuthResult(UserIdentity.from_user(user), pair.access_token, pair.refresh_token)

    async def login(
        self,
        email: str,
        password: str,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> AuthResult:
        user = await self.verifier.verify(email, password)
        # A login always starts a new family, independent of any still-active one.
        pair = await self._issue_tokens(user.id, user.email, None, user_agent, ip_address)
        logger.info("Login user_id=%s", user.id)
        metrics.auth_events.labels(event="login").inc()
        return AuthResult(UserIdentity.from_user(user), pair.access_token, pair.refresh_token)

    async def refresh_tokens(
        self,
        presented: str,
        payload: dict,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> TokenPair:
        """Rotate a refresh token whose signature and expiry the caller already verified."""
        jti = payload.get("jti")
        family_id = payload.get("family_id")
        if not jti or not family_id:
            raise InvalidRefreshToken()

        row = await self.tokens.find_by_jti(jti)
        if row is None:
            await self._revoke_family(family_id, "unknown_jti")
            raise InvalidRefreshToken()

        if row.is_revoked:
            await self._revoke_family(row.family_id, "revoked_token_reused")
            raise RefreshTokenRevoked()

        if _as_utc(row.expires_at) < self.now():
            raise RefreshTokenExpired()

        if not self.hasher.verify(row.token_hash, presented):
            await self._revoke_family(row.family_id, "hash_mismatch")
            raise InvalidRefreshToken()

        # Conditional update: of several concurrent presentations only one flips the row.
        if not await self.tokens.mark_revoked(row.id):
            await self._revoke_family(row.family_id, "concurrent_rotation")
            raise RefreshTokenRevoked()

        pair = await self._issue_tokens(row.user_id, payload.get("email") or "", row.family_id, user_agent, ip_address)
        metrics.auth_events.labels(event="refresh").inc()
        return pair

    async def logout(self, jti: str) -> None:
        """Revoke one refresh token. Unknown jti is a no-op."""
        revoked = await self.tokens.revoke_by_jti(jti)
        logger.debug("Logout jti=%s revoked=%s", jti, revoked)
        metrics.auth_events.labels(event="logout").inc()

    async def logout_all(self, user_id: int) -> int:
        revoked = await self.tokens.revoke_all_for_user(user_id)
        logger.info("Logout-all user_id=%s revoked=%s", user_id, revoked)
        metrics.auth_events.labels(event="logout_all").inc()
        return revoked

    async def purge_expired(self) -> int:
        """Delete rows that expired more than `retention_days` ago, revoked or not."""
        cutoff = self.now() - timedelta(days=self.config.retention_days)
        deleted = await self.tokens.delete_expired_before(cutoff)
        if deleted:
            logger.info("Purged %s expired refresh tokens", deleted)
            metrics.refresh_tokens_purged.inc(deleted)
        return deleted

    async def _revoke_family(self, family_id: str, reason: str) -> None:
        revoked = await self.tokens.revoke_family(family_id)
        logger.warning("Refresh token anomaly (%s): revoked family=%s rows=%s", reason, family_id, revoked)
        metrics.refresh_reuse_detected.labels(reason=reason).inc()

    async def _issue_tokens(
        self,
        user_id: int,
        email: str,
        family_id: str | None = None,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> TokenPair:
        """Sign a new access/refresh pair and persist the refresh row. New family only at session origin."""
        access_ttl = self.config.access_ttl
        refresh_ttl = self.config.refresh_ttl
        issued_at = self.now()
        jti = new_token_id()
        family_id = family_id or new_token_id()

        access = self.signer.sign_access(sub=str(user_id), email=email, ttl=access_ttl, now=issued_at)
        refresh = self.signer.sign_refresh(
            sub=str(user_id), email=email, jti=jti, family_id=family_id, ttl=refresh_ttl, now=issued_at
        )

        await self.tokens.create(
            jti=jti,
            token_hash=self.hasher.hash(refresh),
            family_id=family_id,
            user_id=user_id,
            expires_at=issued_at + refresh_ttl,
            user_agent=user_agent,
            ip_address=ip_address,
        )
        await self.purge_expired()
        return TokenPair(access_token=access, refresh_token=refresh)
