import logging
import threading

logger = logging.getLogger(__name__)


class RepeatedTimer:
    """
    Runs a given function repeatedly every interval_seconds in a background thread.
    """

    def __init__(self, interval_seconds: float, function, *, run_immediately=False, name=None):
        self.interval = interval_seconds
        self.function = function
        self.thread = threading.Thread(target=self._run, daemon=True, name=name)
        self._stop = threading.Event()
        self.run_immediately = run_immediately

    def start(self):
        """Start the background thread."""
        self.thread.start()

    def stop(self):
        """Stop the background thread."""
        self._stop.set()
        if self.thread.is_alive():
            self.thread.join(timeout=1)

    def _call(self):
        try:
            self.function()
        except Exception:
            logger.exception("Background job %s failed", self.thread.name)

    def _run(self):
        """Internal loop to run the function repeatedly."""
        if self.run_immediately:
            self._call()

        while not self._stop.wait(self.interval):
            self._call()
