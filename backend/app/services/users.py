"""Identity lookups used on the auth path. Every query is bounded by STORE_TIMEOUT_SECONDS."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import DuplicateUserError, StoreUnavailableError
from app.models.user import User

logger = logging.getLogger(__name__)


class UserRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], timeout: float) -> None:
        self.session_factory = session_factory
        self.timeout = timeout

    async def _run(self, what: str, coro):
        try:
            return await asyncio.wait_for(coro, self.timeout)
        except asyncio.TimeoutError as e:
            raise StoreUnavailableError(f"{what} timed out after {self.timeout}s") from e
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableError(f"{what} failed: {e}") from e

    async def _select_one(self, *criteria) -> User | None:
        async with self.session_factory() as session:
            r = await session.execute(select(User).where(*criteria))
            return r.scalar_one_or_none()

    async def find_by_id(self, user_id: str) -> User | None:
        return await self._run("find_by_id", self._select_one(User.id == user_id))

    async def find_by_email(self, email: str) -> User | None:
        return await self._run("find_by_email", self._select_one(User.email == email.strip().lower()))

    async def _touch(self, user_id: str, when: datetime) -> None:
        async with self.session_factory() as session:
            await session.execute(update(User).where(User.id == user_id).values(last_active=when))
            await session.commit()

    async def mark_active(self, user_id: str, when: datetime | None = None) -> None:
        """Set last_active to now (or `when`)."""
        await self._run("mark_active", self._touch(user_id, when or datetime.now(timezone.utc)))

    async def find_conflict(self, email: str, username: str) -> str | None:
        """Name of the field ("email" or "username") already taken by another user, else None."""
        email = email.strip().lower()
        existing = await self._run(
            "find_conflict",
            self._select_first(or_(User.email == email, User.username == username)),
        )
        if existing is None:
            return None
        return "email" if existing.email == email else "username"

    async def _select_first(self, *criteria) -> User | None:
        async with self.session_factory() as session:
            r = await session.execute(select(User).where(*criteria).limit(1))
            return r.scalars().first()

    async def _insert(self, user: User) -> User:
        async with self.session_factory() as session:
            session.add(user)
            await session.commit()
            await session.refresh(user)
            return user

    async def create(self, email: str, username: str, password_hash: str) -> User:
        """Insert a new active, unverified user. Raises DuplicateUserError on a unique clash."""
        user = User(email=email.strip().lower(), username=username, password_hash=password_hash)
        try:
            return await self._run("create", self._insert(user))
        except StoreUnavailableError as e:
            if isinstance(e.__cause__, IntegrityError):
                raise DuplicateUserError(str(e.__cause__.orig)) from e.__cause__
            raise
