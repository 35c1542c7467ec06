"""Host-local mutual exclusion for recurring tasks."""

import fcntl
import os
import time
from pathlib import Path

from swarm_manager.exceptions import LockError
from swarm_manager.logging_config import get_logger

logger = get_logger(__name__)


class HostLock:
    """Exclusive `flock` on a file, held for the duration of a `with` block.

    A timeout of 0 makes acquisition non-blocking, matching
    `flock -n` in the unit files this replaces.
    """

    def __init__(self, path: str | Path, timeout: float = 0, poll_interval: float = 0.5):
        self.path = Path(path)
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._fh = None

    @property
    def held(self) -> bool:
        return self._fh is not None

    def acquire(self) -> None:
        """Acquire the lock or raise LockError once the timeout has passed."""
        if self._fh is not None:
            raise LockError(f"Lock {self.path} is already held by this process")

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fh = open(self.path, "a+")
        except OSError as e:
            raise LockError(f"Cannot open lock file {self.path}", str(e))

        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except OSError:
                if time.monotonic() >= deadline:
                    fh.close()
                    raise LockError(
                        f"Another run holds {self.path}",
                        "A previous invocation is still running; this run was skipped",
                    )
                time.sleep(self.poll_interval)

        fh.seek(0)
        fh.truncate()
        fh.write(str(os.getpid()))
        fh.flush()
        self._fh = fh
        logger.debug(f"Acquired lock {self.path}")

    def release(self) -> None:
        if self._fh is None:
            return
        try:
            fcntl.flock(self._fh.fileno(), fcntl.LOCK_UN)
        finally:
            self._fh.close()
            self._fh = None
            logger.debug(f"Released lock {self.path}")

    def __enter__(self) -> "HostLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
