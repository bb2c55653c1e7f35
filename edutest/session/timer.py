"""Deadline-based countdown timer for a bounded test session."""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
import time
from typing import Any, Awaitable, Callable, Coroutine

from edutest.core.config import settings

logger = logging.getLogger(__name__)

ExpiryHandler = Callable[[], Any]
Spawner = Callable[[Coroutine[Any, Any, Any]], Any]


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Expiry handler failed: {exc}", exc_info=exc)


def spawn_logged(coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
    task = asyncio.get_running_loop().create_task(coro)
    task.add_done_callback(_log_task_failure)
    return task


class CountdownTimer:
    """
    Counts down from ``duration_minutes * 60`` seconds.

    Remaining time is always derived from an absolute deadline, so a late or
    skipped tick never accumulates drift. The expiry handler fires exactly
    once per start; ``restart`` arms it again.
    """

    def __init__(
        self,
        on_expire: ExpiryHandler | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        tick_seconds: float | None = None,
        spawn: Spawner | None = None,
    ) -> None:
        self._on_expire = on_expire
        self._spawn = spawn or spawn_logged
        self._clock = clock
        self._sleep = sleep
        self._tick_seconds = tick_seconds if tick_seconds is not None else settings.TIMER_TICK_SECONDS
        self._duration_seconds: int = 0
        self._deadline: float | None = None
        self._expired: bool = False
        self._stopped: bool = False

    @property
    def duration_seconds(self) -> int:
        return self._duration_seconds

    @property
    def deadline(self) -> float | None:
        return self._deadline

    @property
    def started(self) -> bool:
        return self._deadline is not None

    @property
    def expired(self) -> bool:
        return self._expired

    def start(self, duration_minutes: int) -> None:
        if duration_minutes < 1:
            raise ValueError("duration_minutes must be >= 1")
        self._duration_seconds = duration_minutes * 60
        self._deadline = self._clock() + self._duration_seconds
        self._expired = False
        self._stopped = False
        logger.debug(f"Timer started for {self._duration_seconds}s")

    def restart(self, duration_minutes: int) -> None:
        self.start(duration_minutes)

    def stop(self) -> None:
        """Stop counting without firing the expiry handler."""
        self._stopped = True

    def remaining_seconds(self) -> int:
        if self._deadline is None:
            return 0
        if self._expired:
            return 0
        remaining = math.ceil(self._deadline - self._clock())
        return max(0, min(remaining, self._duration_seconds))

    def tick(self) -> int:
        """
        Recompute the remaining seconds; fire the expiry handler on the tick
        that first observes zero. Returns the remaining seconds.

        A coroutine handler is handed to ``spawn`` (by default a task on the
        running loop whose failure is logged), so ``tick`` must then be called
        from inside a loop; ``run`` awaits it instead.
        """
        remaining, result = self._advance()
        if inspect.iscoroutine(result):
            self._spawn(result)
        return remaining

    def _advance(self) -> tuple[int, Any]:
        if self._deadline is None or self._stopped or self._expired:
            return self.remaining_seconds(), None
        remaining = self.remaining_seconds()
        if remaining > 0:
            return remaining, None
        self._expired = True
        logger.info(f"Timer expired after {self._duration_seconds}s")
        if self._on_expire is None:
            return 0, None
        return 0, self._on_expire()

    async def run(self) -> None:
        """Tick once per interval until expiry or stop, awaiting an async handler."""
        while not self._stopped and not self._expired:
            await self._sleep(self._tick_seconds)
            if self._stopped:
                return
            _, result = self._advance()
            if inspect.isawaitable(result):
                await result
