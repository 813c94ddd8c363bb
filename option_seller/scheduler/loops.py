"""
DUAL-CADENCE SCHEDULER

Two cooperative asyncio tasks on one event loop:
- fast loop: fixed short interval
- slow loop: aligned to bar closes

Orchestration only: no trading logic lives here. Both loops share the
engine's state; mutual exclusion is the engine's per-leg pending state.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

from option_seller.infrastructure.broker.errors import AuthenticationError, FatalEngineError

logger = logging.getLogger(__name__)

Tick = Callable[[datetime], Awaitable[None]]


class DualCadenceScheduler:
    def __init__(
        self,
        fast_tick: Tick,
        slow_tick: Tick,
        now_fn: Callable[[], datetime],
        next_slow_at: Callable[[datetime], datetime],
        is_active: Callable[[], bool],
        fast_interval_seconds: float,
    ):
        self._fast_tick = fast_tick
        self._slow_tick = slow_tick
        self._now = now_fn
        self._next_slow_at = next_slow_at
        self._is_active = is_active
        self._fast_interval = fast_interval_seconds
        self._stop = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self.stop_reason: Optional[str] = None

    @property
    def stopped(self) -> bool:
        return self._stop.is_set() or not self._is_active()

    def stop(self, reason: str) -> None:
        """Cooperative cancellation: loops exit at their next check."""
        if not self._stop.is_set():
            self.stop_reason = reason
            self._stop.set()

    async def run(self) -> None:
        self._tasks = [
            asyncio.create_task(self._fast_loop(), name="fast-loop"),
            asyncio.create_task(self._slow_loop(), name="slow-loop"),
        ]
        logger.info("✅ Fast and slow loops started")
        try:
            await asyncio.gather(*self._tasks)
        finally:
            self.stop(self.stop_reason or "loops finished")
            for task in self._tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            logger.info(f"Loops stopped: {self.stop_reason}")

    async def _wait(self, seconds: float) -> None:
        """Sleep, returning early if stop() is called."""
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _run_tick(self, name: str, tick: Tick) -> None:
        try:
            await tick(self._now())
        except AuthenticationError as exc:
            logger.critical(f"{name} loop: authentication failure, stopping engine: {exc}")
            self.stop(f"authentication failure: {exc}")
        except FatalEngineError as exc:
            logger.critical(f"{name} loop: fatal error, stopping engine: {exc}")
            self.stop(f"fatal: {exc}")
        except Exception:
            logger.exception(f"{name} loop: tick failed, continuing")

    async def _fast_loop(self) -> None:
        loop = asyncio.get_running_loop()
        while not self.stopped:
            started = loop.time()
            await self._run_tick("fast", self._fast_tick)
            await self._wait(self._fast_interval - (loop.time() - started))
        self.stop("engine inactive")

    async def _slow_loop(self) -> None:
        while not self.stopped:
            now = self._now()
            await self._wait((self._next_slow_at(now) - now).total_seconds())
            if self.stopped:
                break
            await self._run_tick("slow", self._slow_tick)
        self.stop("engine inactive")
