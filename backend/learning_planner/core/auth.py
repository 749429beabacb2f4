"""Password hashing (Argon2id) and JWT creation/verification."""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TypedDict

from argon2 import PasswordHasher as _Argon2Hasher
from argon2 import Type
from argon2.exceptions import InvalidHashError, VerificationError
from jose import ExpiredSignatureError, JWTError, jwt

from learning_planner.core.errors import InvalidConfiguration, InvalidSignature

_EXPIRATION_RE = re.compile(r"([0-9]+)([smhd])")
_UNIT_MS = {
    "s": 1000,
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
    "d": 24 * 60 * 60 * 1000,
}


def parse_expiration(value: str) -> int:
    """Parse '<int><s|m|h|d>' (e.g. '15m', '7d') into milliseconds. Anything else is a config error."""
    match = _EXPIRATION_RE.fullmatch(value or "")
    if match is None:
        raise InvalidConfiguration(f"Invalid expiration format: {value!r}")
    return int(match.group(1)) * _UNIT_MS[match.group(2)]


def expiration_delta(value: str) -> timedelta:
    return timedelta(milliseconds=parse_expiration(value))


def new_token_id() -> str:
    """Fresh random identifier, used for both jti and family_id."""
    return str(uuid.uuid4())


class PasswordHasher:
    """Argon2id wrapper. Also used to hash whole refresh tokens before storage."""

    def __init__(self, *, memory_cost: int = 65536, time_cost: int = 3, parallelism: int = 4) -> None:
        self._impl = _Argon2Hasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            type=Type.ID,
        )
        self._dummy_hash: str | None = None

    def hash(self, plaintext: str) -> str:
        return self._impl.hash(plaintext)

    def verify(self, hashed: str, plaintext: str) -> bool:
        """True on match. Mismatch and unparsable hashes are both just False."""
        try:
            return self._impl.verify(hashed, plaintext)
        except (VerificationError, InvalidHashError):
            return False

    @property
    def dummy_hash(self) -> str:
        """Hash of a random value with the same parameters, for equal-cost verification of unknown users."""
        if self._dummy_hash is None:
            self._dummy_hash = self._impl.hash(uuid.uuid4().hex)
        return self._dummy_hash


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class AccessTokenPayload(TypedDict):
    sub: str  # user id
    email: str
    iat: int
    exp: int


class RefreshTokenPayload(AccessTokenPayload):
    jti: str
    family_id: str


_REQUIRED_CLAIMS = {
    TokenKind.ACCESS: ("sub", "email", "exp"),
    TokenKind.REFRESH: ("sub", "email", "exp", "jti", "family_id"),
}


class TokenSigner:
    """Issues and verifies JWTs. Access and refresh tokens use independent secrets."""

    def __init__(self, *, access_secret: str, refresh_secret: str, algorithm: str = "HS256") -> None:
        self._secrets = {TokenKind.ACCESS: access_secret, TokenKind.REFRESH: refresh_secret}
        self.algorithm = algorithm

    def _encode(self, kind: TokenKind, claims: dict, ttl: timedelta, now: datetime | None) -> str:
        issued_at = now or datetime.now(timezone.utc)
        payload = {**claims, "iat": issued_at, "exp": issued_at + ttl}
        result = jwt.encode(payload, self._secrets[kind], algorithm=self.algorithm)
        return result if isinstance(result, str) else result.decode("utf-8")

    def sign_access(self, *, sub: str, email: str, ttl: timedelta, now: datetime | None = None) -> str:
        return self._encode(TokenKind.ACCESS, {"sub": str(sub), "email": email}, ttl, now)

    def sign_refresh(
        self,
        *,
        sub: str,
        email: str,
        jti: str,
        family_id: str,
        ttl: timedelta,
        now: datetime | None = None,
    ) -> str:
        """`now` pins `iat`/`exp` to the caller's clock so they match the persisted expiry."""
        claims = {"sub": str(sub), "email": email, "jti": jti, "family_id": family_id}
        return self._encode(TokenKind.REFRESH, claims, ttl, now)

    def verify(self, token: str, kind: TokenKind, *, verify_exp: bool = True) -> dict:
        """Decode and validate signature/expiry with the secret for `kind`. Raises InvalidSignature."""
        if not isinstance(token, str) or not token:
            raise InvalidSignature("malformed")
        try:
            payload = jwt.decode(
                token,
                self._secrets[kind],
                algorithms=[self.algorithm],
                options={"verify_exp": verify_exp},
            )
        except ExpiredSignatureError as e:
            raise InvalidSignature("expired") from e
        except JWTError as e:
            raise InvalidSignature("invalid") from e
        if any(not payload.get(claim) for claim in _REQUIRED_CLAIMS[kind]):
            raise InvalidSignature("malformed")
        return payload
