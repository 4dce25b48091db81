"""Durable per-user event log (user_analytics). Source of truth for the per-user rate limiter."""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import StoreUnavailableError
from app.models.user_analytics import UserAnalytics


class EventLog:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], timeout: float) -> None:
        self.session_factory = session_factory
        self.timeout = timeout

    async def _count(self, user_id: str, since: datetime) -> int:
        async with self.session_factory() as session:
            r = await session.execute(
                select(func.count())
                .select_from(UserAnalytics)
                .where(UserAnalytics.user_id == user_id, UserAnalytics.date > since)
            )
            return int(r.scalar_one())

    async def count_since(self, user_id: str, since: datetime) -> int:
        """Number of events for user_id with a timestamp strictly after `since`."""
        try:
            return await asyncio.wait_for(self._count(user_id, since), self.timeout)
        except asyncio.TimeoutError as e:
            raise StoreUnavailableError(f"count_since timed out after {self.timeout}s") from e
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableError(f"count_since failed: {e}") from e

    async def _record(self, row: UserAnalytics) -> None:
        async with self.session_factory() as session:
            session.add(row)
            await session.commit()

    async def record(
        self, user_id: str, event: str, details: dict[str, Any] | None = None, at: datetime | None = None
    ) -> None:
        row = UserAnalytics(user_id=user_id, event=event, details=details)
        if at is not None:
            row.date = at
        try:
            await asyncio.wait_for(self._record(row), self.timeout)
        except asyncio.TimeoutError as e:
            raise StoreUnavailableError(f"record timed out after {self.timeout}s") from e
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableError(f"record failed: {e}") from e
