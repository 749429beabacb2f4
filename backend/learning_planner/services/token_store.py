"""Persisted refresh token ledger.

`RefreshTokenStore` is the seam the auth service depends on. `SqlRefreshTokenStore`
is the relational implementation; tests plug in an in-memory one.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from learning_planner.models.refresh_token import RefreshToken


class RefreshTokenStore(Protocol):
    async def find_by_jti(self, jti: str) -> RefreshToken | None: ...

    async def create(
        self,
        *,
        jti: str,
        token_hash: str,
        family_id: str,
        user_id: int,
        expires_at: datetime,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> RefreshToken: ...

    async def mark_revoked(self, token_id: int) -> bool:
        """Flip is_revoked for one row only if it is still false. False means someone else got there first."""
        ...

    async def revoke_by_jti(self, jti: str) -> int: ...

    async def revoke_family(self, family_id: str) -> int: ...

    async def revoke_all_for_user(self, user_id: int) -> int: ...

    async def delete_expired_before(self, cutoff: datetime) -> int: ...


class SqlRefreshTokenStore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_by_jti(self, jti: str) -> RefreshToken | None:
        r = await self.session.execute(select(RefreshToken).where(RefreshToken.jti == jti))
        return r.scalar_one_or_none()

    async def create(
        self,
        *,
        jti: str,
        token_hash: str,
        family_id: str,
        user_id: int,
        expires_at: datetime,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> RefreshToken:
        row = RefreshToken(
            jti=jti,
            token_hash=token_hash,
            family_id=family_id,
            user_id=user_id,
            is_revoked=False,
            expires_at=expires_at,
            user_agent=user_agent,
            ip_address=ip_address,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def mark_revoked(self, token_id: int) -> bool:
        r = await self.session.execute(
            update(RefreshToken)
            .where(RefreshToken.id == token_id, RefreshToken.is_revoked.is_(False))
            .values(is_revoked=True)
            .execution_options(synchronize_session=False)
        )
        return r.rowcount == 1

    async def _revoke_where(self, *criteria) -> int:
        r = await self.session.execute(
            update(RefreshToken)
            .where(*criteria, RefreshToken.is_revoked.is_(False))
            .values(is_revoked=True)
            .execution_options(synchronize_session=False)
        )
        return r.rowcount

    async def revoke_by_jti(self, jti: str) -> int:
        return await self._revoke_where(RefreshToken.jti == jti)

    async def revoke_family(self, family_id: str) -> int:
        return await self._revoke_where(RefreshToken.family_id == family_id)

    async def revoke_all_for_user(self, user_id: int) -> int:
        return await self._revoke_where(RefreshToken.user_id == user_id)

    async def delete_expired_before(self, cutoff: datetime) -> int:
        r = await self.session.execute(
            delete(RefreshToken)
            .where(RefreshToken.expires_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        return r.rowcount
