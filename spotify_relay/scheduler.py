"""
Proactive token refresh on a fixed interval. Owned by the app lifespan: started after bootstrap,
stopped on shutdown.
"""
import logging
import threading

from spotify_relay.lifecycle import TokenLifecycle

logger = logging.getLogger(__name__)


class RefreshScheduler:
    def __init__(self, lifecycle: TokenLifecycle, interval_seconds: float, lead_seconds: float):
        self.lifecycle = lifecycle
        self.interval_seconds = interval_seconds
        self.lead_ms = int(lead_seconds * 1000)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="token-refresh-scheduler", daemon=True)
        self._thread.start()
        logger.info(
            "Refresh scheduler started: every %ss, lead %ss", self.interval_seconds, self.lead_ms // 1000
        )

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Refresh scheduler stopped")

    def tick(self) -> bool:
        """One proactive check. Errors are logged, never raised."""
        try:
            return self.lifecycle.refresh_if_due(self.lead_ms)
        except Exception:
            logger.exception("Scheduled token refresh failed")
            return False

    def _run(self) -> None:
        # Event.wait returns True once stop() is called
        while not self._stop.wait(self.interval_seconds):
            self.tick()
