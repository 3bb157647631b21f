"""Background task running the retention sweeps on a fixed interval.

Runs as an ``asyncio`` background task inside the API process.  Deployments
that prefer cron can disable it (``API_SWEEPS_ENABLED=false``) and invoke
``consentiq sweep-sessions`` / ``consentiq sweep-accounts`` instead.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import asdict

from consent_engine.errors import StorageFailureError
from consent_engine.retention import SweepReport
from sqlalchemy.exc import InterfaceError, OperationalError

logger = logging.getLogger(__name__)


class PeriodicSweep:
    """AsyncIO background task that invokes one retention sweep repeatedly.

    Parameters
    ----------
    name:
        Label used in log lines (``sessions`` or ``accounts``).
    sweep:
        Zero-argument coroutine function running one pass and returning its
        :class:`SweepReport`.  A fresh scheduler is built per pass so that
        each pass reads the clock and the store anew.
    interval_seconds:
        Pause between the end of one pass and the start of the next.
    """

    def __init__(
        self,
        name: str,
        sweep: Callable[[], Awaitable[SweepReport]],
        interval_seconds: float,
    ) -> None:
        self._name = name
        self._sweep = sweep
        self._interval = interval_seconds
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self.last_report: SweepReport | None = None

    @property
    def running(self) -> bool:
        """Whether the sweep loop is active."""
        return self._running

    async def start(self) -> None:
        """Start the sweep background task."""
        if self._running:
            logger.warning("PeriodicSweep[%s] already running; ignoring start()", self._name)
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("PeriodicSweep[%s] started (interval=%ss)", self._name, self._interval)

    async def stop(self) -> None:
        """Stop the sweep loop gracefully."""
        self._running = False
        task, self._task = self._task, None
        if task is not None:
            if task.done():
                # A crashed loop was already logged by _run_loop.
                if not task.cancelled():
                    task.exception()
            else:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        logger.info("PeriodicSweep[%s] stopped", self._name)

    async def run_once(self) -> SweepReport:
        """Execute a single pass and remember its report."""
        report = await self._sweep()
        self.last_report = report
        extra = {"sweep": asdict(report)}
        if report.ok:
            logger.info("Sweep %s", report.summary(), extra=extra)
        else:
            logger.warning("Sweep %s", report.summary(), extra=extra)
        return report

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except (StorageFailureError, OperationalError, InterfaceError) as exc:
                # Transient; the next pass retries everything still due.
                logger.error("PeriodicSweep[%s] storage error: %s", self._name, exc, exc_info=True)
            except Exception as exc:
                logger.critical("PeriodicSweep[%s] unexpected error: %s", self._name, exc, exc_info=True)
                raise
            await asyncio.sleep(self._interval)
