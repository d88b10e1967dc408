"""
Formation Runner

Scheduler thread that ticks the coordinator at a fixed period.
"""

import logging
import threading
import time
from typing import Optional

from .swarm.coordinator import FormationCoordinator

logger = logging.getLogger(__name__)


class FormationRunner:
    """
    Drives FormationCoordinator.tick() from a daemon thread

    One tick both drains queued action events and republishes the
    formation frame.
    """

    def __init__(self, coordinator: FormationCoordinator, tick_period: float = 0.02):
        if tick_period <= 0:
            raise ValueError("tick_period must be positive")
        self.coordinator = coordinator
        self.tick_period = tick_period

        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._overruns = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def overruns(self) -> int:
        """Ticks that took longer than the tick period"""
        return self._overruns

    def start(self):
        """Start the tick thread"""
        if self._running:
            return

        self._running = True
        self._thread = threading.Thread(target=self._loop, daemon=True, name="formation-runner")
        self._thread.start()
        logger.info(f"Formation runner started ({1.0 / self.tick_period:.0f}Hz)")

    def stop(self):
        """Stop the tick thread"""
        self._running = False
        if self._thread:
            self._thread.join(timeout=2.0)
            self._thread = None
        logger.info("Formation runner stopped")

    def _loop(self):
        """Main tick loop"""
        while self._running:
            loop_start = time.monotonic()

            try:
                self.coordinator.tick()
            except Exception as e:
                logger.error(f"Coordinator tick error: {e}")

            # Maintain tick rate
            elapsed = time.monotonic() - loop_start
            sleep_time = self.tick_period - elapsed
            if sleep_time > 0:
                time.sleep(sleep_time)
            else:
                self._overruns += 1
