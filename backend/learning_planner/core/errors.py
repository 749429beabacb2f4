"""Auth failures surfaced to callers. Messages are generic on purpose; details go to logs."""

from __future__ import annotations


class AuthError(Exception):
    """Expected, user-facing auth failure. Mapped to a 4xx JSON response."""

    status_code: int = 401
    detail: str = "Unauthorized"

    def __init__(self, detail: str | None = None) -> None:
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


class ConflictError(AuthError):
    status_code = 409
    detail = "User with this email already exists"


class InvalidCredentials(AuthError):
    detail = "Invalid email or password"


class InvalidSignature(AuthError):
    """Token failed signature, expiry or format checks.

    `reason` is for logs only; responses never distinguish expired from tampered.
    """

    detail = "Invalid token"

    def __init__(self, reason: str = "invalid") -> None:
        super().__init__()
        self.reason = reason


class InvalidRefreshToken(AuthError):
    detail = "Invalid refresh token"


class RefreshTokenRevoked(AuthError):
    detail = "Refresh token has been revoked"


class RefreshTokenExpired(AuthError):
    detail = "Refresh token expired"


class InvalidConfiguration(ValueError):
    """Malformed auth configuration (e.g. a TTL string like '15x').

    Rejected at startup by `Settings.validate_auth_config`; if it still reaches a
    request it is answered with a generic 400.
    """

    status_code: int = 400
    detail: str = "Invalid configuration"
