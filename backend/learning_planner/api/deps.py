"""FastAPI dependencies: auth service wiring, current user from access token, refresh cookie guard."""

import logging
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from learning_planner.config import settings
from learning_planner.core.auth import PasswordHasher, TokenKind, TokenSigner
from learning_planner.core.errors import InvalidSignature
from learning_planner.db.session import get_db
from learning_planner.models.user import User
from learning_planner.services.auth import AuthConfig, AuthService, CredentialVerifier
from learning_planner.services.token_store import SqlRefreshTokenStore
from learning_planner.services.user_store import SqlUserStore

logger = logging.getLogger(__name__)


@lru_cache
def get_auth_config() -> AuthConfig:
    return AuthConfig.from_settings(settings)


@lru_cache
def get_password_hasher() -> PasswordHasher:
    return PasswordHasher(
        memory_cost=settings.argon2_memory_cost,
        time_cost=settings.argon2_time_cost,
        parallelism=settings.argon2_parallelism,
    )


@lru_cache
def get_token_signer() -> TokenSigner:
    config = get_auth_config()
    return TokenSigner(
        access_secret=config.access_secret,
        refresh_secret=config.refresh_secret,
        algorithm=config.algorithm,
    )


def build_auth_service(session: AsyncSession) -> AuthService:
    users = SqlUserStore(session)
    hasher = get_password_hasher()
    return AuthService(
        users=users,
        tokens=SqlRefreshTokenStore(session),
        signer=get_token_signer(),
        hasher=hasher,
        verifier=CredentialVerifier(users, hasher),
        config=get_auth_config(),
    )


async def get_auth_service(session: Annotated[AsyncSession, Depends(get_db)]) -> AuthService:
    return build_auth_service(session)


async def get_current_user(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")
    token = auth_header[7:].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = get_token_signer().verify(token, TokenKind.ACCESS)
    except InvalidSignature as e:
        logger.debug("Access token rejected: %s", e.reason)
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    try:
        user_id = int(payload["sub"])
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token")
    user = await SqlUserStore(session).get_by_id(user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def get_refresh_cookie(request: Request) -> str | None:
    return request.cookies.get(settings.refresh_cookie_name) or None


def get_refresh_payload(request: Request) -> dict:
    """Guard for /auth/refresh: the refresh cookie must carry a valid token signed with the refresh secret."""
    token = get_refresh_cookie(request)
    if not token:
        raise HTTPException(status_code=401, detail="Refresh token not found")
    try:
        return get_token_signer().verify(token, TokenKind.REFRESH)
    except InvalidSignature as e:
        logger.info("Refresh token rejected at guard: %s", e.reason)
        raise HTTPException(status_code=401, detail="Invalid refresh token")
