"""
Process supervisor for the trading bot.

Detects whether the bot is running, starts it as a detached background
process and stops it by PID. The PID file is only a cache: every decision is
checked against the live process table, and a missing or stale record is
recovered by scanning the table for the bot's command line.
"""

import fnmatch
import logging
import os
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, Optional

import psutil

from .config import Config, config
from .errors import StartLockBusy, TerminationError
from .lock import StartLock
from .monitor import ProcessMetrics, collect_metrics, tail_lines
from .registry import ProcessRegistry

logger = logging.getLogger(__name__)


@dataclass
class ProcessInfo:
    """A row of the live process table."""

    pid: int
    name: str = ""
    cmdline: list[str] = field(default_factory=list)

    @property
    def command_line(self) -> str:
        return " ".join(self.cmdline)


class ProcessTable:
    """Thin wrapper over psutil so the supervisor can be tested without real processes."""

    def get(self, pid: int) -> Optional[ProcessInfo]:
        """Look up a single PID. Returns None if it cannot be inspected."""
        try:
            proc = psutil.Process(pid)
            return ProcessInfo(pid=pid, name=proc.name(), cmdline=proc.cmdline())
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return None

    def scan(self) -> Iterator[ProcessInfo]:
        """Iterate over every process we are allowed to inspect."""
        for proc in psutil.process_iter(["pid", "name", "cmdline"]):
            info = proc.info
            yield ProcessInfo(
                pid=info["pid"],
                name=info.get("name") or "",
                cmdline=info.get("cmdline") or [],
            )

    def kill(self, pid: int, timeout: float):
        """Kill a process and its children, then wait for it to exit."""
        try:
            proc = psutil.Process(pid)
            try:
                children = proc.children(recursive=True)
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                children = []

            for child in children:
                try:
                    child.kill()
                except psutil.NoSuchProcess:
                    pass

            proc.kill()
            _, alive = psutil.wait_procs([proc], timeout=timeout)
        except psutil.Error as e:
            raise TerminationError(f"Could not kill PID {pid}: {e}") from e

        if alive:
            raise TerminationError(f"PID {pid} still running {timeout}s after kill")


def script_in_cmdline(script_name: str) -> Callable[[ProcessInfo], bool]:
    """Match any process whose command line mentions the bot script."""

    def predicate(info: ProcessInfo) -> bool:
        return script_name in info.command_line

    return predicate


def script_identity(script_name: str, interpreter_names) -> Callable[[ProcessInfo], bool]:
    """Match an interpreter process running the bot script."""
    in_cmdline = script_in_cmdline(script_name)

    def predicate(info: ProcessInfo) -> bool:
        name = info.name.lower().removesuffix(".exe")
        if not any(fnmatch.fnmatch(name, pattern) for pattern in interpreter_names):
            return False
        return in_cmdline(info)

    return predicate


def _get_popen_creation_flags() -> dict:
    """Platform-specific Popen arguments for a detached, windowless child."""
    if sys.platform == "win32":
        return {
            "creationflags": subprocess.CREATE_NO_WINDOW | subprocess.CREATE_NEW_PROCESS_GROUP,
        }
    return {"start_new_session": True}


def spawn_detached(
    command: list[str],
    cwd: Path,
    env: dict[str, str],
    stdout_path: Path,
    stderr_path: Path,
) -> int:
    """Launch a background process with output redirected to files. Returns its PID."""
    stdout_path.parent.mkdir(parents=True, exist_ok=True)
    stderr_path.parent.mkdir(parents=True, exist_ok=True)

    # The child keeps its own copies of the handles
    with open(stdout_path, "ab") as stdout_log, open(stderr_path, "ab") as stderr_log:
        process = subprocess.Popen(
            command,
            cwd=str(cwd),
            env=env,
            stdin=subprocess.DEVNULL,
            stdout=stdout_log,
            stderr=stderr_log,
            close_fds=True,
            **_get_popen_creation_flags(),
        )
    # Detached on purpose, the child outlives this Popen object
    process.returncode = 0
    return process.pid


@dataclass
class StatusReport:
    """Result of a status check."""

    running: bool
    pid: Optional[int] = None
    metrics: Optional[ProcessMetrics] = None
    log_file: Optional[Path] = None
    log_tail: list[str] = field(default_factory=list)

    @property
    def state(self) -> str:
        return "running" if self.running else "stopped"

    def to_dict(self) -> dict:
        return {
            "state": self.state,
            "pid": self.pid,
            "metrics": self.metrics.to_dict() if self.metrics else None,
            "log_file": str(self.log_file) if self.log_file else None,
            "log_tail": self.log_tail,
        }


class Supervisor:
    """Owns detect/start/stop/status for the single supervised bot."""

    def __init__(
        self,
        cfg: Config = None,
        registry: ProcessRegistry = None,
        table: ProcessTable = None,
        identity: Callable[[ProcessInfo], bool] = None,
        scan_match: Callable[[ProcessInfo], bool] = None,
        spawn: Callable[..., int] = None,
        start_lock: StartLock = None,
    ):
        self.config = cfg or config
        self.registry = registry or ProcessRegistry(self.config.pid_file)
        self.table = table or ProcessTable()
        self.identity = identity or script_identity(
            self.config.script_name, self.config.interpreter_names
        )
        self.scan_match = scan_match or script_in_cmdline(self.config.script_name)
        self._spawn = spawn or spawn_detached
        self.start_lock = start_lock or StartLock(self.config.lock_file)

    def detect_running(self) -> tuple[bool, Optional[int]]:
        """
        Determine whether the bot is running.

        Trusts the recorded PID only if that process still looks like the bot.
        Otherwise scans the process table and adopts the first process that
        passes the same identity check as the new record.

        Returns:
            Tuple of (is_running, pid)
        """
        recorded = self.registry.load()
        if recorded is not None:
            info = self.table.get(recorded)
            if info is not None and self.identity(info):
                return True, recorded
            logger.debug(f"Recorded PID {recorded} is not {self.config.script_name}, scanning")

        own_pid = os.getpid()
        for info in self.table.scan():
            if info.pid in (own_pid, recorded):
                continue
            # Adopt only what the recorded PID check accepts on the next call
            if self.scan_match(info) and self.identity(info):
                logger.info(f"Found running {self.config.script_name} with PID {info.pid}")
                self.registry.save(info.pid)
                return True, info.pid

        return False, None

    def start(self) -> bool:
        """Start the bot unless it is already running. Returns True if launched."""
        try:
            with self.start_lock:
                running, pid = self.detect_running()
                if running:
                    logger.warning(f"{self.config.script_name} is already running (PID {pid})")
                    return False

                try:
                    pid = self._spawn(
                        self.config.command(),
                        cwd=self.config.install_dir,
                        env=self.config.child_env(),
                        stdout_path=self.config.stdout_log,
                        stderr_path=self.config.stderr_log,
                    )
                except OSError as e:
                    logger.error(f"Failed to start {self.config.script_name}: {e}")
                    return False

                try:
                    self.registry.save(pid)
                except OSError as e:
                    logger.error(
                        f"Started {self.config.script_name} with PID {pid} but could not "
                        f"record it in {self.registry.path}: {e}"
                    )
                    return False

                logger.info(f"Started {self.config.script_name} with PID {pid}")
                return True

        except StartLockBusy as e:
            logger.warning(str(e))
            return False

    def stop(self) -> bool:
        """Kill the running bot. Returns True if it was stopped."""
        running, pid = self.detect_running()
        if not running:
            logger.warning(f"{self.config.script_name} is not running")
            return False

        try:
            self.table.kill(pid, timeout=self.config.stop_timeout)
        except TerminationError as e:
            logger.error(f"Failed to stop {self.config.script_name}: {e}")
            return False

        self.registry.clear()
        logger.info(f"Stopped {self.config.script_name} (PID {pid})")
        return True

    def status(self, lines: int = None) -> StatusReport:
        """Report run state, resource usage and the tail of the log."""
        if lines is None:
            lines = self.config.status_tail_lines

        running, pid = self.detect_running()
        report = StatusReport(running=running, pid=pid, log_file=self.config.supervisor_log)
        if running:
            report.metrics = collect_metrics(pid)
            report.log_tail = tail_lines(self.config.supervisor_log, lines)
        return report
