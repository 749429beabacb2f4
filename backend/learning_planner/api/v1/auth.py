"""Auth: register, login, refresh (cookie rotation), logout, logout-all, me."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel

from learning_planner.api.deps import (
    get_auth_config,
    get_auth_service,
    get_current_user,
    get_refresh_cookie,
    get_refresh_payload,
    get_token_signer,
)
from learning_planner.config import settings
from learning_planner.core.auth import TokenKind
from learning_planner.core.errors import InvalidSignature
from learning_planner.core.rate_limit import LOGIN_LIMIT, REGISTER_LIMIT, limiter
from learning_planner.models.user import User
from learning_planner.services.auth import AuthService, UserIdentity

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


class RegisterBody(BaseModel):
    email: str
    password: str
    name: str | None = None


class LoginBody(BaseModel):
    email: str
    password: str


class UserOut(BaseModel):
    id: int
    email: str
    name: str | None = None


class AccessTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds until access token expires


class AuthResponse(AccessTokenResponse):
    user: UserOut


def _client_info(request: Request) -> tuple[str | None, str | None]:
    """(user_agent, ip_address) for the refresh token row. Advisory only."""
    user_agent = request.headers.get("user-agent")
    ip_address = request.client.host if request.client else None
    return user_agent, ip_address


def _access_expires_in() -> int:
    return int(get_auth_config().access_ttl.total_seconds())


def _user_out(user: UserIdentity | User) -> UserOut:
    return UserOut(id=user.id, email=user.email, name=user.name)


def _set_refresh_cookie(response: Response, token: str) -> None:
    """Refresh token travels only in an HttpOnly, SameSite=strict cookie; never in a JSON body."""
    response.set_cookie(
        key=settings.refresh_cookie_name,
        value=token,
        max_age=int(get_auth_config().refresh_ttl.total_seconds()),
        path=settings.refresh_cookie_path,
        secure=settings.is_production,
        httponly=True,
        samesite=settings.refresh_cookie_samesite,
    )


def _clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.refresh_cookie_name,
        path=settings.refresh_cookie_path,
        secure=settings.is_production,
        httponly=True,
        samesite=settings.refresh_cookie_samesite,
    )


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=201,
    summary="Register a new user",
    responses={
        400: {"description": "Email and password required"},
        409: {"description": "Email already registered"},
        429: {"description": "Too many requests"},
    },
)
@limiter.limit(REGISTER_LIMIT)
async def register(
    request: Request,
    response: Response,
    body: RegisterBody,
    service: Annotated[AuthService, Depends(get_auth_service)],
) -> AuthResponse:
    email = (body.email or "").strip()
    password = body.password or ""
    if not email or not password:
        raise HTTPException(status_code=400, detail="Email and password required")
    name = (body.name or "").strip() or None
    user_agent, ip_address = _client_info(request)
    result = await service.register(email, password, name, user_agent, ip_address)
    _set_refresh_cookie(response, result.refresh_token)
    return AuthResponse(
        access_token=result.access_token,
        expires_in=_access_expires_in(),
        user=_user_out(result.user),
    )


@router.post(
    "/login",
    response_model=AuthResponse,
    summary="Login with email and password",
    responses={
        401: {"description": "Invalid email or password"},
        429: {"description": "Too many requests"},
    },
)
@limiter.limit(LOGIN_LIMIT)
async def login(
    request: Request,
    response: Response,
    body: LoginBody,
    service: Annotated[AuthService, Depends(get_auth_service)],
) -> AuthResponse:
    email = (body.email or "").strip()
    password = body.password or ""
    if not email or not password:
        raise HTTPException(status_code=401, detail="Email and password required")
    user_agent, ip_address = _client_info(request)
    result = await service.login(email, password, user_agent, ip_address)
    _set_refresh_cookie(response, result.refresh_token)
    return AuthResponse(
        access_token=result.access_token,
        expires_in=_access_expires_in(),
        user=_user_out(result.user),
    )


@router.post(
    "/refresh",
    response_model=AccessTokenResponse,
    summary="Rotate the refresh cookie and issue a new access token",
    responses={
        401: {"description": "Refresh token missing, invalid, revoked or expired"},
    },
)
async def refresh_tokens(
    request: Request,
    response: Response,
    payload: Annotated[dict, Depends(get_refresh_payload)],
    service: Annotated[AuthService, Depends(get_auth_service)],
) -> AccessTokenResponse:
    presented = get_refresh_cookie(request)
    user_agent, ip_address = _client_info(request)
    pair = await service.refresh_tokens(presented, payload, user_agent, ip_address)
    _set_refresh_cookie(response, pair.refresh_token)
    return AccessTokenResponse(access_token=pair.access_token, expires_in=_access_expires_in())


@router.post(
    "/logout",
    summary="Revoke the current refresh token and clear the cookie",
)
async def logout(
    request: Request,
    response: Response,
    service: Annotated[AuthService, Depends(get_auth_service)],
) -> dict:
    """Always succeeds. An unreadable or unknown cookie is ignored; the cookie is cleared regardless."""
    token = get_refresh_cookie(request)
    if token:
        try:
            # Expired tokens may still be logged out; the signature must hold.
            payload = get_token_signer().verify(token, TokenKind.REFRESH, verify_exp=False)
        except InvalidSignature as e:
            logger.info("Logout with unreadable refresh cookie: %s", e.reason)
        else:
            await service.logout(payload["jti"])
    _clear_refresh_cookie(response)
    return {"ok": True}


@router.post(
    "/logout-all",
    summary="Revoke every refresh token of the current user",
    responses={
        401: {"description": "Not authenticated or invalid token"},
    },
)
async def logout_all(
    response: Response,
    user: Annotated[User, Depends(get_current_user)],
    service: Annotated[AuthService, Depends(get_auth_service)],
) -> dict:
    revoked = await service.logout_all(user.id)
    _clear_refresh_cookie(response)
    return {"ok": True, "revoked": revoked}


@router.get(
    "/me",
    response_model=UserOut,
    summary="Get current authenticated user",
    responses={
        401: {"description": "Not authenticated or invalid token"},
    },
)
async def me(user: Annotated[User, Depends(get_current_user)]) -> UserOut:
    return _user_out(user)
