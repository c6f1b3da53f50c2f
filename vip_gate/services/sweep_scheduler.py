"""Background timer that runs the expiration sweep periodically."""

import threading
from typing import Optional

from vip_gate.logging_config import get_logger
from vip_gate.models.results import SweepReport

logger = get_logger(__name__)


class SweepScheduler:
    """Runs ``engine.sweep()`` every ``interval_seconds`` on a daemon thread.

    Args:
        subscription_engine: optional subscription engine object, if missing,
        global instance is used
        interval_seconds: delay between sweeps
    """

    def __init__(
        self,
        subscription_engine: Optional["SubscriptionEngine"] = None,
        interval_seconds: float = 600.0,
    ) -> None:
        from vip_gate.services.subscription_engine import get_subscription_engine

        if interval_seconds <= 0:
            raise ValueError("Sweep interval must be positive")

        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._interval_seconds = interval_seconds
        self._subscription_engine = subscription_engine or get_subscription_engine()
        self._runs = 0

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    @property
    def runs(self) -> int:
        return self._runs

    def start(self) -> None:
        """Start the timer thread (no-op if already running)."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run, name="vip-gate-sweep", daemon=True
            )
            self._thread.start()

        logger.info("sweep_scheduler_started", interval_seconds=self._interval_seconds)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Signal the thread to stop and wait for the current sweep to finish."""
        with self._lock:
            thread = self._thread
            self._thread = None
        self._stop_event.set()
        if thread is not None:
            thread.join(timeout)
            logger.info("sweep_scheduler_stopped", runs=self._runs)

    def run_once(self) -> Optional[SweepReport]:
        """Run one sweep now; errors are logged so the timer keeps going."""
        try:
            report = self._subscription_engine.sweep()
        except Exception as e:
            logger.error("sweep_failed", error=str(e), exc_info=True)
            return None
        finally:
            self._runs += 1
        return report

    def _run(self) -> None:
        # first sweep happens one interval after start
        while not self._stop_event.wait(self._interval_seconds):
            self.run_once()
