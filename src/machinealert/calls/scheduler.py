"""
Expiration scheduler: runs the call sweep on a fixed interval.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime

from machinealert.calls.lifecycle import CallLifecycleEngine, SweepResult
from machinealert.shared.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ExpirationSchedulerConfig:
    """Configuration for the expiration scheduler."""

    interval_seconds: float = 30


class ExpirationScheduler:
    """Background task invoking ``CallLifecycleEngine.sweep_expired``.

    Sweeps never overlap: a tick that fires while the previous sweep is
    still running is skipped, and forced sweeps wait for it to finish.
    """

    def __init__(
        self,
        engine: CallLifecycleEngine,
        config: ExpirationSchedulerConfig | None = None,
    ) -> None:
        self._engine = engine
        self._config = config or ExpirationSchedulerConfig()
        self._lock = asyncio.Lock()
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self.last_result: SweepResult | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the scheduler background task."""
        if self._running:
            logger.warning("Expiration scheduler already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "Expiration scheduler started",
            extra={"interval_seconds": self._config.interval_seconds},
        )

    async def stop(self) -> None:
        """Stop the scheduler background task."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Expiration scheduler stopped")

    async def _run_loop(self) -> None:
        """Main scheduler loop."""
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Expiration sweep failed")
            await asyncio.sleep(self._config.interval_seconds)

    async def run_once(self, now: datetime | None = None, *, wait: bool = False) -> SweepResult | None:
        """Run a single sweep.

        Args:
            now: Sweep time; the engine clock when omitted.
            wait: Queue behind a sweep in progress instead of skipping.

        Returns:
            The sweep result, or None when skipped because a sweep was running.
        """
        if not wait and self._lock.locked():
            logger.info("Previous expiration sweep still running; skipping tick")
            return None

        async with self._lock:
            result = await self._engine.sweep_expired(now)
            self.last_result = result
            return result
