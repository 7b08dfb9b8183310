"""
Start lock for the supervisor.

Guards the check-then-spawn sequence in Supervisor.start() so that two
concurrent invocations cannot both launch the bot. The lock is an OS advisory
lock on an open handle (flock on POSIX, msvcrt.locking on Windows), so the
operating system drops it when the holder exits or crashes. The lock file
itself is never removed.
"""

import logging
import os
import sys
from pathlib import Path

from .errors import StartLockBusy

if sys.platform == "win32":
    import msvcrt
else:
    import fcntl

logger = logging.getLogger(__name__)


def _lock_fd(fd: int):
    """Take a non-blocking exclusive lock. Raises OSError if it is held elsewhere."""
    if sys.platform == "win32":
        os.lseek(fd, 0, os.SEEK_SET)
        msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)
    else:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)


def _unlock_fd(fd: int):
    if sys.platform == "win32":
        os.lseek(fd, 0, os.SEEK_SET)
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
    else:
        fcntl.flock(fd, fcntl.LOCK_UN)


class StartLock:
    """Exclusive lock held for the duration of a start."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._fd = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self):
        """Take the lock or raise StartLockBusy if another process holds it."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_CREAT | os.O_RDWR, 0o644)
        try:
            _lock_fd(fd)
        except OSError as e:
            os.close(fd)
            raise StartLockBusy(f"Start already in progress (lock {self.path} is held)") from e

        # Informational only, the OS lock is what counts
        owner = str(os.getpid()).encode()
        os.lseek(fd, 0, os.SEEK_SET)
        os.write(fd, owner)
        os.ftruncate(fd, len(owner))
        self._fd = fd
        logger.debug(f"Acquired start lock {self.path}")

    def release(self):
        if self._fd is None:
            return
        try:
            _unlock_fd(self._fd)
        finally:
            os.close(self._fd)
            self._fd = None

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
