"""Inactivity auto-stop for a recording session."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from .models import Session

logger = logging.getLogger("callscribe.monitor")


class InactivityMonitor:
    """Recurring check bound to one recording segment of one session.

    The monitor fires at most once. It deactivates as soon as the session
    stops recording that segment, so it never acts on a stale segment.
    """

    def __init__(
        self,
        session: Session,
        on_inactive: Callable[[Session, int], Awaitable[None]],
        limit_seconds: float = 180.0,
        interval_seconds: float = 20.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session = session
        self.segment_id = session.segment_counter
        self.limit_seconds = limit_seconds
        self.interval_seconds = interval_seconds
        self.active = False
        self.fired = False
        self._on_inactive = on_inactive
        self._clock = clock
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        self.active = True
        self._task = asyncio.create_task(self._loop())

    def cancel(self) -> None:
        self.active = False
        task = self._task
        if task is None or task.done():
            return
        # The stop sequence triggered by this monitor runs on its own task.
        if task is asyncio.current_task():
            return
        task.cancel()

    def idle_seconds(self) -> float:
        last = self.session.last_speech_at
        if last is None:
            return 0.0
        return self._clock() - last

    def _is_current(self) -> bool:
        return (
            self.session.is_recording
            and self.session.segment_counter == self.segment_id
            and self.session.inactivity_monitor is self
        )

    async def check(self) -> bool:
        """Run one tick. Returns False once the monitor has deactivated."""
        if not self.active:
            return False
        if not self._is_current():
            logger.debug(
                "[%s] Monitor for segment %s no longer current, deactivating.",
                self.session.context_id,
                self.segment_id,
            )
            self.cancel()
            return False
        if self.idle_seconds() <= self.limit_seconds:
            return True

        logger.info(
            "[%s] Inactivity reached, stopping segment %s...",
            self.session.context_id,
            self.segment_id,
        )
        self.active = False
        self.fired = True
        try:
            await self._on_inactive(self.session, self.segment_id)
        except Exception:
            logger.exception(
                "[%s] Error stopping due to inactivity", self.session.context_id
            )
        return False

    async def _loop(self) -> None:
        while self.active:
            await asyncio.sleep(self.interval_seconds)
            if not await self.check():
                break
