"""
Process record persistence.

The record is a single text file holding the decimal PID of the last known
bot instance. It is advisory only: the live process table decides whether the
bot is running, so a stale or unreadable record is tolerated rather than fixed
here.
"""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


class ProcessRegistry:
    """Loads, saves and clears the persisted bot PID."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> int | None:
        """Return the recorded PID, or None if absent or unreadable."""
        try:
            content = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Could not read PID file {self.path}: {e}")
            return None

        try:
            pid = int(content)
        except ValueError:
            logger.warning(f"Ignoring malformed PID file {self.path}: {content[:40]!r}")
            return None

        if pid <= 0:
            logger.warning(f"Ignoring invalid PID {pid} in {self.path}")
            return None
        return pid

    def save(self, pid: int):
        """Atomically overwrite the record with a new PID."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_suffix(".tmp")
        try:
            temp_path.write_text(f"{pid}\n", encoding="utf-8")
            os.replace(temp_path, self.path)
        finally:
            temp_path.unlink(missing_ok=True)
        logger.debug(f"Recorded PID {pid} in {self.path}")

    def clear(self) -> bool:
        """Delete the record. Returns True if a file was removed."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        logger.debug(f"Removed PID file {self.path}")
        return True

    def exists(self) -> bool:
        return self.path.exists()
