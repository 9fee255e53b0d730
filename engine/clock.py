# engine/clock.py
"""
Countdown for one active session view.

The timer only counts down from the last persisted snapshot; it never
measures wall-clock time on its own. Expiry calls the completion callback
exactly once.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import Awaitable, Callable, Optional

logger = logging.getLogger("assessment-sessions.clock")

TickCallback = Callable[[int], Awaitable[None]]
ExpireCallback = Callable[[], Awaitable[None]]


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def parse_timestamp(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        return as_utc(value)
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(s))


def format_timestamp(dt: datetime) -> str:
    return as_utc(dt).isoformat().replace("+00:00", "Z")


class SessionTimer:
    def __init__(
        self,
        remaining: int,
        on_expire: ExpireCallback,
        on_tick: Optional[TickCallback] = None,
        interval: float = 1.0,
    ) -> None:
        self.remaining = max(0, int(remaining))
        self.interval = interval
        self._on_expire = on_expire
        self._on_tick = on_tick
        self._task: Optional[asyncio.Task] = None
        self._stopped = False
        # set before the callback runs so an overlapping tick cannot re-enter
        self._expiring = False

    @property
    def expired(self) -> bool:
        return self._expiring

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> int:
        if self._stopped or self.remaining <= 0:
            return self.remaining
        self.remaining -= 1
        if self._on_tick is not None:
            await self._on_tick(self.remaining)
        if self.remaining == 0:
            await self._expire()
        return self.remaining

    async def _expire(self) -> None:
        if self._expiring:
            return
        self._expiring = True
        self._stopped = True
        logger.info("timer expired; completing session")
        await self._on_expire()

    async def run(self) -> None:
        if self.remaining <= 0:
            await self._expire()
            return
        while not self._stopped and self.remaining > 0:
            await asyncio.sleep(self.interval)
            await self.tick()

    def start(self) -> asyncio.Task:
        if self._task is None:
            self._task = asyncio.create_task(self.run())
        return self._task

    def stop(self) -> None:
        """Stop ticking without completing (session left in_progress elsewhere)."""
        self._stopped = True

    def cancel(self) -> None:
        self.stop()
        if self._task is not None and not self._task.done():
            self._task.cancel()
