"""
Single-flight debounced writer.

Coalesces bursts of snapshot writes into at most one in-flight call per
cool-down window, always carrying the newest snapshot.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

_EMPTY = object()


class DebouncedWriter:
    """Latest-wins write scheduler with a pending slot of depth one"""

    def __init__(self, write: Callable[[Any], Awaitable[bool]], cooldown: Optional[float] = None):
        self._write = write

        if cooldown is None:
            try:
                import config
                cooldown = config.PROGRESS_CONFIG.get("debounce_seconds", 0.1)
            except (ImportError, AttributeError, KeyError):
                cooldown = 0.1
        self.cooldown = cooldown

        self._pending: Any = _EMPTY
        self._last_written: Any = _EMPTY
        self._next_write_at = 0.0
        self._task: Optional[asyncio.Task] = None
        self._wake: Optional[asyncio.Event] = None
        self._flush_requested = False
        self._in_flight = False

        self.last_write_ok = True
        self.writes = 0
        self.failed_writes = 0
        self.coalesced = 0

    @property
    def has_pending(self) -> bool:
        return self._pending is not _EMPTY

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def is_busy(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self, snapshot: Any):
        """Queue a snapshot, replacing any snapshot still waiting"""
        if self.has_pending:
            self.coalesced += 1
        self._pending = snapshot

        if not self.is_busy:
            self._task = asyncio.get_running_loop().create_task(self._drain())
        elif self._wake is not None and self._flush_requested:
            self._wake.set()

    async def flush(self, snapshot: Any = _EMPTY) -> bool:
        """Write the latest snapshot now, skipping the remaining cool-down"""
        if snapshot is not _EMPTY:
            self.schedule(snapshot)

        self._flush_requested = True
        try:
            while self.is_busy:
                if self._wake is not None:
                    self._wake.set()
                await self._task
        finally:
            self._flush_requested = False
        return self.last_write_ok

    async def _drain(self):
        loop = asyncio.get_running_loop()
        self._wake = asyncio.Event()

        while self.has_pending:
            delay = self._next_write_at - loop.time()
            if delay > 0 and not self._flush_requested:
                self._wake.clear()
                try:
                    await asyncio.wait_for(self._wake.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass

            snapshot = self._pending
            self._pending = _EMPTY

            if snapshot == self._last_written:
                logger.debug("Dropping duplicate snapshot")
                continue

            self._next_write_at = loop.time() + self.cooldown
            await self._write_one(snapshot)

    async def _write_one(self, snapshot: Any):
        self._in_flight = True
        try:
            ok = await self._write(snapshot)
        except Exception as e:
            logger.error(f"Debounced write failed: {e}")
            ok = False
        finally:
            self._in_flight = False

        self.writes += 1
        self.last_write_ok = bool(ok)
        if ok:
            self._last_written = snapshot
        else:
            self.failed_writes += 1
            logger.debug("Write failed, next snapshot will carry the changes")
