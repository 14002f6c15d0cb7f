import logging
import threading

from .errors import StorageFailure

logger = logging.getLogger(__name__)


class KeySweeper(threading.Thread):
    """Background thread that calls ``registry.sweep()`` every ``interval`` seconds."""

    def __init__(self, registry, interval=600):
        super().__init__(name="key-sweeper", daemon=True)
        self.registry = registry
        self.interval = interval
        self._stop_event = threading.Event()

    def run(self):
        while not self._stop_event.wait(self.interval):
            self.sweep_once()

    def sweep_once(self):
        try:
            return self.registry.sweep()
        except StorageFailure as e:
            # records stay deleted in memory; the next save retries
            logger.error("Sweep could not persist: %s", e)
            return 0

    def stop(self, timeout=None):
        self._stop_event.set()
        if self.is_alive():
            self.join(timeout)
