"""
Periodic pull-based reconciliation with the prioritization authority.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from .errors import ExternalServiceError
from .reconciler import ExternalReconciler

logger = logging.getLogger(__name__)

RefreshCallback = Callable[[bool, Optional[Dict[str, int]], Optional[str]], Awaitable[None]]


class ReconciliationScheduler:
    """
    One cancellable background task that refreshes the queue every
    `interval_seconds`. A tick that finds the previous refresh still running
    is skipped, so refreshes never overlap.
    """

    def __init__(
        self,
        reconciler: ExternalReconciler,
        interval_seconds: float,
        on_refresh: Optional[RefreshCallback] = None,
    ):
        if interval_seconds <= 0:
            raise ValueError("Reconciliation interval must be positive")
        self.reconciler = reconciler
        self.interval_seconds = interval_seconds
        self.on_refresh = on_refresh
        self.skipped_runs = 0
        self._task: Optional[asyncio.Task] = None
        self._run_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="queue-reconciliation")
        logger.info(f"Started reconciliation every {self.interval_seconds}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Reconciliation task had failed before shutdown: {e!r}")
        self._task = None
        logger.info("Stopped reconciliation")

    async def run_once(self) -> bool:
        """
        Run one refresh unless another is in progress.

        Returns:
            True if the refresh ran and succeeded
        """
        if self._run_lock.locked():
            self.skipped_runs += 1
            logger.info("Previous reconciliation still running; skipping this tick")
            return False

        async with self._run_lock:
            try:
                counts = await self.reconciler.refresh()
            except ExternalServiceError as e:
                logger.warning(f"Reconciliation failed, keeping previous queue: {e.message}")
                await self._notify(False, None, e.message)
                return False
            except Exception as e:
                logger.exception(f"Unexpected reconciliation error, keeping previous queue: {e!r}")
                await self._notify(False, None, f"{type(e).__name__}: {e}")
                return False
            await self._notify(True, counts, None)
            return True

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.run_once()

    async def _notify(self, success: bool, counts: Optional[Dict[str, int]], error: Optional[str]) -> None:
        if self.on_refresh is None:
            return
        try:
            await self.on_refresh(success, counts, error)
        except Exception as e:
            logger.error(f"Reconciliation callback failed: {e}")
