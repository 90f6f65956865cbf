"""
Periodic reconciliation of tracked payments.

A single daemon thread wakes every ``interval_seconds`` and refreshes each
non-terminal payment in the store, one after another. A failing entry is
reported as a ``monitor_error`` event and the cycle moves on; it is retried
on the next cycle at the normal cadence.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

from .config import DEFAULT_MONITOR_INTERVAL_SECONDS
from .errors import EngineClosedError, ValidationError
from .events import EventEmitter, EventType, MonitorError
from .store import PaymentStore

logger = logging.getLogger(__name__)


class MonitorScheduler:
    """Drives ``refresh`` over every non-terminal entry of a store."""

    def __init__(
        self,
        store: PaymentStore,
        refresh: Callable[[str], Any],
        emitter: EventEmitter,
        interval_seconds: float = DEFAULT_MONITOR_INTERVAL_SECONDS,
        join_timeout: float = 5.0,
    ):
        self._store = store
        self._refresh = refresh
        self._emitter = emitter
        self.interval_seconds = interval_seconds
        self.join_timeout = join_timeout
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        """True while a monitor thread is alive, including one still stopping."""
        thread = self._thread
        return thread is not None and thread.is_alive()

    def start(self, interval_seconds: Optional[float] = None) -> bool:
        """Start polling. Returns False (and logs) if a monitor thread is alive."""
        with self._lock:
            if self.is_running:
                if self._stop_event.is_set():
                    logger.warning("Payment monitoring still stopping, not restarted")
                else:
                    logger.warning("Payment monitoring already running")
                return False
            if interval_seconds is not None:
                if interval_seconds <= 0:
                    raise ValidationError("interval_seconds must be > 0")
                self.interval_seconds = interval_seconds
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_event,),
                name="escrow-payment-monitor",
                daemon=True,
            )
            self._thread.start()
        logger.info("Payment status monitoring started (interval: %.1fs)", self.interval_seconds)
        return True

    def stop(self) -> bool:
        """Cancel the timer. The store is left untouched.

        The thread finishes the refresh it is in, then exits. It stays
        referenced until it does, so ``start`` cannot overlap it.
        """
        with self._lock:
            thread = self._thread
            if thread is None or self._stop_event.is_set():
                return False
            self._stop_event.set()
        if thread is not threading.current_thread():
            thread.join(timeout=self.join_timeout)
        with self._lock:
            if self._thread is thread and not thread.is_alive():
                self._thread = None
        if thread.is_alive():
            logger.info("Payment status monitoring stopping after current refresh")
        else:
            logger.info("Payment status monitoring stopped")
        return True

    def run_cycle(self, stop_event: Optional[threading.Event] = None) -> int:
        """Refresh every non-terminal entry once; returns the success count.

        The cycle ends early once *stop_event* is set.
        """
        refreshed = 0
        for payment in self._store.non_terminal():
            if stop_event is not None and stop_event.is_set():
                logger.debug("Monitor stopped mid-cycle")
                break
            payment_id = payment.blockchain_identifier
            try:
                self._refresh(payment_id)
            except EngineClosedError:
                logger.debug("Engine closed mid-cycle, abandoning reconciliation")
                break
            except Exception as e:
                logger.warning("Payment status check failed for %s: %s", payment_id, e)
                self._emitter.emit(
                    EventType.MONITOR_ERROR,
                    MonitorError(blockchain_identifier=payment_id, error=e),
                )
                continue
            refreshed += 1
        return refreshed

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.interval_seconds):
            self.run_cycle(stop_event)
