"""User lookups and creation needed by the auth service."""

from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from learning_planner.core.errors import ConflictError
from learning_planner.models.user import User

logger = logging.getLogger(__name__)


class UserStore(Protocol):
    async def get_by_email(self, email: str) -> User | None: ...

    async def get_by_id(self, user_id: int) -> User | None: ...

    async def create(self, *, email: str, password_hash: str, name: str | None = None) -> User: ...


class SqlUserStore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_email(self, email: str) -> User | None:
        r = await self.session.execute(select(User).where(User.email == email))
        return r.scalar_one_or_none()

    async def get_by_id(self, user_id: int) -> User | None:
        r = await self.session.execute(select(User).where(User.id == user_id))
        return r.scalar_one_or_none()

    async def create(self, *, email: str, password_hash: str, name: str | None = None) -> User:
        """Insert a user. A concurrent registration of the same email surfaces as ConflictError."""
        user = User(email=email, name=name, password_hash=password_hash)
        self.session.add(user)
        try:
            await self.session.flush()
        except IntegrityError as e:
            # Nothing else is written before the user row during registration.
            await self.session.rollback()
            logger.warning("Register IntegrityError: %s", e.orig)
            raise ConflictError() from e
        return user
