"""
In-process polling loop over ``RecurringService.process_due``.

Optional convenience. ``process_due`` depends only on ``now`` and the
stored recurring rows, so cron running ``scripts/run_scheduler.py --once``
gives the same result as this loop. Several schedulers against one
database are safe: each occurrence locks its recurring row and carries an
idempotence key, so a due date is generated at most once.
"""

from __future__ import annotations

import threading
from typing import Callable

from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.logging_config import get_logger

from ledger_batch.domain.types import ProcessDueResult
from ledger_batch.services.recurring_service import RecurringService

logger = get_logger("batch.scheduler")

ServiceFactory = Callable[[Session], RecurringService]


class RecurringScheduler:
    """Background thread that calls process_due() every ``tick_interval_seconds``."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        service_factory: ServiceFactory,
        clock: Clock | None = None,
        tick_interval_seconds: int = 3600,
    ):
        self._session_factory = session_factory
        self._service_factory = service_factory
        self._clock = clock or SystemClock()
        self._tick_interval = tick_interval_seconds
        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def tick(self) -> ProcessDueResult:
        """One pass over everything due at the clock's current time, in a fresh session."""
        session = self._session_factory()
        try:
            result = self._service_factory(session).process_due(self._clock.now())
        finally:
            session.close()
        if result.generated or result.retried or result.paused or result.errors:
            logger.info(
                "scheduler_tick",
                extra={
                    "as_of": result.as_of,
                    "generated": result.generated,
                    "retried": result.retried,
                    "paused": result.paused,
                    "errors": result.errors,
                },
            )
        return result

    def start(self) -> None:
        """Start polling; a no-op while the thread is alive."""
        if self.is_running:
            return
        self._stopping.clear()
        self._thread = threading.Thread(target=self._poll, name="recurring-scheduler", daemon=True)
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Ask the loop to exit and wait up to ``timeout`` seconds for the current tick."""
        self._stopping.set()
        if self.is_running:
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    def _poll(self) -> None:
        while not self._stopping.is_set():
            try:
                self.tick()
            except Exception:
                # process_due records per-occurrence failures itself; this is a
                # lost connection or similar, and the next tick retries.
                logger.exception("scheduler_tick_exception")
            self._stopping.wait(timeout=self._tick_interval)
