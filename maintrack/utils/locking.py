import logging

from filelock import FileLock, Timeout

from maintrack.errors import StoreBusyError

logger = logging.getLogger(__name__)


class WriteLock:
    """
    Cross-process file lock to serialize writes to one maintenance store.

    Create one instance per store and reuse it: nested ``with`` blocks on the
    same instance are re-entrant, separate instances on the same path are not.
    """

    def __init__(self, path: str, timeout: float = 10.0):
        self.path = path
        self._lock = FileLock(path, timeout=timeout)

    def __enter__(self):
        try:
            self._lock.acquire()
        except Timeout as e:
            logger.warning("Store is locked by another process: %s", self.path)
            raise StoreBusyError(f"Store is busy, try again: {self.path}") from e
        return self

    def __exit__(self, exc_type, exc, tb):
        self._lock.release()
