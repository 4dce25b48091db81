"""
Per-user rate limiting over the durable analytics event log.

A trailing-window counter: each check counts the user's events newer than now - window.
Bursts that straddle a window boundary can briefly admit more than the limit; that is
accepted. When the event log cannot be queried the request is admitted (fail open).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from app.services.event_log import EventLog

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: int | None = None  # seconds; set only when rejected
    count: int | None = None  # None when the count could not be obtained


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RateLimiter:
    def __init__(self, event_log: EventLog, clock: Callable[[], datetime] = _utcnow) -> None:
        self.event_log = event_log
        self.clock = clock

    async def check(self, identity: str, max_requests: int, window_seconds: float) -> RateLimitDecision:
        since = self.clock() - timedelta(seconds=window_seconds)
        try:
            count = await self.event_log.count_since(identity, since)
        except Exception as e:
            logger.warning("User rate limiting error for %s: %s (allowing request)", identity, e)
            return RateLimitDecision(allowed=True)
        if count >= max_requests:
            return RateLimitDecision(allowed=False, retry_after=math.ceil(window_seconds), count=count)
        return RateLimitDecision(allowed=True, count=count)
