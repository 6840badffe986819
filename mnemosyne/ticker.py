"""
Time sources for round countdowns.

A round never calls ``asyncio.sleep`` directly: it asks a :class:`Ticker` to
suspend for a number of time units, optionally bound to a :class:`CancelToken`
that ends the wait early. :class:`RealtimeTicker` maps units onto wall-clock
seconds; :class:`ManualTicker` only moves when :meth:`ManualTicker.advance`
is called, which keeps tests deterministic and lets a host drive rounds from
its own frame clock.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional, Tuple

LOG = logging.getLogger(__name__)

SETTLE_PASSES = 8


class CancelToken:
    """One-shot cancellation flag with synchronous callbacks."""

    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:  # pragma: no cover - callbacks must not break cancellation
                LOG.exception("Cancel callback failed.")

    def on_cancel(self, callback: Callable[[], None]) -> None:
        if self._cancelled:
            callback()
            return
        self._callbacks.append(callback)

    def discard(self, callback: Callable[[], None]) -> None:
        try:
            self._callbacks.remove(callback)
        except ValueError:
            pass


def _release(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)


class Ticker:
    """
    Base class. Subclasses arrange for ``future`` to resolve after ``units``.
    """

    async def sleep(self, units: float, token: Optional[CancelToken] = None) -> None:
        if token is not None and token.cancelled:
            return
        if units <= 0:
            await asyncio.sleep(0)
            return

        future = asyncio.get_running_loop().create_future()

        def wake() -> None:
            _release(future)

        if token is not None:
            token.on_cancel(wake)
        self._schedule(future, units)
        try:
            await future
        finally:
            self._unschedule(future)
            if token is not None:
                token.discard(wake)

    def _schedule(self, future: asyncio.Future, units: float) -> None:
        raise NotImplementedError

    def _unschedule(self, future: asyncio.Future) -> None:
        pass


class RealtimeTicker(Ticker):
    """One time unit equals ``unit_seconds`` of event-loop time."""

    def __init__(self, unit_seconds: float = 1.0) -> None:
        self.unit_seconds = max(0.0, float(unit_seconds))
        self._handles: dict = {}

    def _schedule(self, future: asyncio.Future, units: float) -> None:
        loop = asyncio.get_running_loop()
        self._handles[future] = loop.call_later(units * self.unit_seconds, _release, future)

    def _unschedule(self, future: asyncio.Future) -> None:
        handle = self._handles.pop(future, None)
        if handle is not None:
            handle.cancel()


class ManualTicker(Ticker):
    """Externally driven ticker; time only passes in :meth:`advance`."""

    def __init__(self) -> None:
        self.elapsed = 0
        self._waiters: List[Tuple[float, asyncio.Future]] = []

    @property
    def pending(self) -> int:
        return sum(1 for _, future in self._waiters if not future.done())

    def _schedule(self, future: asyncio.Future, units: float) -> None:
        self._waiters.append((self.elapsed + units, future))

    def _unschedule(self, future: asyncio.Future) -> None:
        self._waiters = [(deadline, f) for deadline, f in self._waiters if f is not future]

    async def settle(self) -> None:
        """Let woken tasks run up to their next suspension point."""

        for _ in range(SETTLE_PASSES):
            await asyncio.sleep(0)

    async def advance(self, units: int = 1) -> None:
        for _ in range(max(0, int(units))):
            self.elapsed += 1
            due = [future for deadline, future in self._waiters if deadline <= self.elapsed]
            for future in due:
                _release(future)
            await self.settle()
