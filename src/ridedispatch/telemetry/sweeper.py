"""Background sweep that expires drivers whose reports went stale."""

import logging
import threading

from ridedispatch.core.exceptions import DispatchError

from .location_telemetry import LocationTelemetry

logger = logging.getLogger(__name__)


class StalenessSweeper:
    """Runs LocationTelemetry.expire_stale on a fixed interval in a daemon thread."""

    def __init__(self, telemetry: LocationTelemetry, interval_seconds: float = 15.0) -> None:
        self._telemetry = telemetry
        self._interval = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run_loop, name="staleness-sweeper", daemon=True
        )
        self._thread.start()
        logger.info("Staleness sweeper started (every %.0fs)", self._interval)

    def stop(self) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=5.0)
            self._thread = None
        logger.info("Staleness sweeper stopped")

    def _run_loop(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self._telemetry.expire_stale()
            except DispatchError:
                logger.exception("Staleness sweep failed")
