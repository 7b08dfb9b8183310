"""
Resource monitoring for the supervised bot.

Collects uptime, resident memory and CPU time for a running process and reads
the tail of the rolling log for status reports. Every metric is best effort:
a metric that cannot be read is logged as a warning and reported as None.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path

import psutil

logger = logging.getLogger(__name__)


@dataclass
class ProcessMetrics:
    """Resource usage snapshot of a process."""

    pid: int
    uptime_seconds: float | None = None
    memory_mb: float | None = None
    cpu_seconds: float | None = None

    @property
    def uptime_str(self) -> str | None:
        """Human-readable uptime."""
        if self.uptime_seconds is None:
            return None
        return format_duration(self.uptime_seconds)

    def to_dict(self) -> dict:
        return {
            "pid": self.pid,
            "uptime_seconds": round(self.uptime_seconds, 1) if self.uptime_seconds is not None else None,
            "uptime": self.uptime_str,
            "memory_mb": round(self.memory_mb, 1) if self.memory_mb is not None else None,
            "cpu_seconds": round(self.cpu_seconds, 2) if self.cpu_seconds is not None else None,
        }


def format_duration(seconds: float) -> str:
    total_seconds = int(seconds)
    if total_seconds < 60:
        return f"{total_seconds}s"
    elif total_seconds < 3600:
        return f"{total_seconds // 60}m {total_seconds % 60}s"
    elif total_seconds < 86400:
        return f"{total_seconds // 3600}h {(total_seconds % 3600) // 60}m"
    return f"{total_seconds // 86400}d {(total_seconds % 86400) // 3600}h"


def collect_metrics(pid: int) -> ProcessMetrics:
    """Get current resource usage for a process."""
    metrics = ProcessMetrics(pid=pid)

    try:
        proc = psutil.Process(pid)
    except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
        logger.warning(f"Metrics unavailable for PID {pid}: {e}")
        return metrics

    try:
        metrics.uptime_seconds = max(0.0, time.time() - proc.create_time())
    except (psutil.Error, OSError) as e:
        logger.warning(f"Uptime unavailable for PID {pid}: {e}")

    try:
        metrics.memory_mb = proc.memory_info().rss / 1024 / 1024
    except (psutil.Error, OSError) as e:
        logger.warning(f"Memory usage unavailable for PID {pid}: {e}")

    try:
        cpu = proc.cpu_times()
        metrics.cpu_seconds = cpu.user + cpu.system
    except (psutil.Error, OSError) as e:
        logger.warning(f"CPU time unavailable for PID {pid}: {e}")

    return metrics


def tail_lines(path: Path, count: int) -> list[str]:
    """Return the last `count` lines of a text file, or [] if it is missing."""
    if count <= 0:
        return []
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            return [line.rstrip("\r\n") for line in deque(f, maxlen=count)]
    except FileNotFoundError:
        return []
    except OSError as e:
        logger.warning(f"Could not read log file {path}: {e}")
        return []
