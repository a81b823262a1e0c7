"""Cancellable delayed and periodic callbacks on the event loop."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Protocol

logger = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[None]]
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class TimerHandle:
    """Handle for one scheduled callback. cancel() may be called any number of times."""

    def __init__(self) -> None:
        self._cancelled = False
        self._task: Optional[asyncio.Task] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def attach(self, task: asyncio.Task) -> None:
        self._task = task

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        task = self._task
        # A callback cancelling its own handle finishes its current run.
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callback) -> TimerHandle: ...

    def call_every(self, interval: float, callback: Callback) -> TimerHandle: ...


class AsyncioScheduler:
    """Runs callbacks as tasks on the running loop; first periodic run is after one interval."""

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        handle = TimerHandle()

        async def _run() -> None:
            await asyncio.sleep(max(0.0, delay))
            if not handle.cancelled:
                await _invoke(callback)

        handle.attach(asyncio.get_running_loop().create_task(_run()))
        return handle

    def call_every(self, interval: float, callback: Callback) -> TimerHandle:
        handle = TimerHandle()

        async def _run() -> None:
            while not handle.cancelled:
                await asyncio.sleep(max(0.0, interval))
                if handle.cancelled:
                    return
                await _invoke(callback)

        handle.attach(asyncio.get_running_loop().create_task(_run()))
        return handle


async def _invoke(callback: Callback) -> None:
    try:
        await callback()
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception("Scheduled callback failed")
