"""
RecurringScheduler -- In-process polling scheduler for recurring invoices.

Contract:
    Polls on a configurable interval and hands due templates to
    ``RecurringRunner``.  An external trigger (cron hitting an endpoint, the
    CLI ``tick`` command) calls ``verify_trigger_secret`` and then
    ``run_tick`` directly.

Architecture: billing_recurring/services.  Uses
    billing_recurring.services.runner for execution.

Invariants enforced:
    - All timestamps from the injected Clock.
    - Graceful shutdown: the stop signal is checked between templates, so
      the template in progress always finishes.
    - The trigger secret is compared in constant time, and an unset secret
      rejects every request.
"""

from __future__ import annotations

import hmac
import threading

from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.exceptions import TriggerAuthenticationError
from billing_kernel.logging_config import get_logger

from billing_recurring.domain.types import RunStatus, TickResult
from billing_recurring.services.runner import RecurringRunner

logger = get_logger("recurring.scheduler")


def verify_trigger_secret(presented: str | None, expected: str | None) -> None:
    """
    Check an ``Authorization`` header value against the shared secret.

    Raises:
        TriggerAuthenticationError: No secret configured, header missing, or
            header is not ``Bearer <secret>``.
    """
    if not expected:
        logger.error("recurring_trigger_secret_not_configured")
        raise TriggerAuthenticationError()
    if not presented or not hmac.compare_digest(
        presented.encode("utf-8"), f"Bearer {expected}".encode("utf-8")
    ):
        logger.warning("recurring_trigger_rejected")
        raise TriggerAuthenticationError()


class RecurringScheduler:
    """Polling scheduler for recurring templates.

    Contract:
        - ``run_tick()`` processes every due template and returns the
          ``TickResult``.
        - ``tick()`` is the loop body: same as ``run_tick()`` but never
          raises.
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - NOT a distributed scheduler (no leader election); concurrent
          ticks are made safe by the idempotency key instead.
        - Does NOT handle timezone conversions (periods follow the clock).
    """

    def __init__(
        self,
        runner: RecurringRunner,
        clock: Clock | None = None,
        tick_interval_seconds: float = 3600.0,
    ):
        self._runner = runner
        self._clock = clock or SystemClock()
        self._tick_interval = tick_interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def run_tick(self) -> TickResult:
        now = self._clock.now()
        result = self._runner.run_due_templates(now, should_stop=self._stop_event.is_set)
        logger.info(
            "recurring_tick_completed",
            extra={
                "processed": result.processed_count,
                "succeeded": result.count(RunStatus.SUCCESS),
                "failed": result.count(RunStatus.FAILED),
                "skipped": result.count(RunStatus.SKIPPED),
                "generated": result.count(RunStatus.GENERATED),
            },
        )
        return result

    def tick(self) -> TickResult | None:
        """Run one tick (public for testing).  Returns None if it failed."""
        try:
            return self.run_tick()
        except Exception:
            logger.exception("scheduler_tick_failed")
            return None

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="recurring-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current template to finish.

        Args:
            timeout: Max seconds to wait for the thread to finish.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(timeout=self._tick_interval)
