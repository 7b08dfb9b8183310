"""
Configuration for the bot supervisor.

Loads settings from environment variables (and a .env file) with sensible
defaults. All state lives next to the supervised bot in its install directory.
"""

import os
import sys
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Forces UTF-8 text I/O in the child, for direct launches and the service alike
UTF8_ENVIRONMENT = {
    "PYTHONIOENCODING": "utf-8",
    "PYTHONUTF8": "1",
}


def _path_from_env(name: str) -> Path | None:
    value = os.environ.get(name, "")
    return Path(value) if value else None


@dataclass
class Config:
    """Supervisor configuration."""

    # Target program
    install_dir: Path = Path(os.environ.get("BOT_HOME", os.getcwd()))
    script_name: str = os.environ.get("BOT_SCRIPT", "main.py")
    interpreter: str = os.environ.get("BOT_INTERPRETER", sys.executable)
    interpreter_names: tuple = tuple(
        name.strip().lower()
        for name in os.environ.get("BOT_INTERPRETER_NAMES", "python*").split(",")
        if name.strip()
    )

    # Paths
    logs_dir: Path = _path_from_env("BOT_LOGS_DIR")
    pid_file: Path = _path_from_env("BOT_PID_FILE")
    lock_file: Path = None
    tools_dir: Path = None
    supervisor_log: Path = None
    stdout_log: Path = None
    stderr_log: Path = None

    # Logging
    log_level: str = os.environ.get("LOG_LEVEL", "INFO").upper()
    log_backup_count: int = int(os.environ.get("LOG_BACKUP_COUNT", "7"))
    status_tail_lines: int = int(os.environ.get("STATUS_TAIL_LINES", "20"))

    # Process management
    stop_timeout: int = int(os.environ.get("STOP_TIMEOUT", "10"))

    # Service registration
    service_name: str = os.environ.get("SERVICE_NAME", "TradingBot")
    service_display_name: str = os.environ.get("SERVICE_DISPLAY_NAME", "Trading Bot")
    service_description: str = os.environ.get(
        "SERVICE_DESCRIPTION", "Runs the trading bot in the background"
    )
    nssm_url: str = os.environ.get("NSSM_URL", "https://nssm.cc/release/nssm-2.24.zip")
    nssm_sha256: str = os.environ.get("NSSM_SHA256", "")
    download_timeout: int = int(os.environ.get("DOWNLOAD_TIMEOUT", "60"))

    def __post_init__(self):
        """Initialize derived paths."""
        self.install_dir = Path(self.install_dir).resolve()
        if self.logs_dir is None:
            self.logs_dir = self.install_dir / "logs"
        if self.pid_file is None:
            self.pid_file = self.install_dir / "bot.pid"
        if self.lock_file is None:
            self.lock_file = self.install_dir / "bot.start.lock"
        if self.tools_dir is None:
            self.tools_dir = self.install_dir / "tools"
        if self.supervisor_log is None:
            self.supervisor_log = self.logs_dir / "botsupervisor.log"
        if self.stdout_log is None:
            self.stdout_log = self.logs_dir / "bot_stdout.log"
        if self.stderr_log is None:
            self.stderr_log = self.logs_dir / "bot_stderr.log"

    @property
    def script_path(self) -> Path:
        return self.install_dir / self.script_name

    def command(self) -> list[str]:
        """Command line used to launch the bot."""
        return [self.interpreter, str(self.script_path)]

    def child_env(self) -> dict[str, str]:
        """Environment for the launched bot: ours plus the UTF-8 overrides."""
        env = os.environ.copy()
        env.update(UTF8_ENVIRONMENT)
        return env

    def ensure_dirs(self):
        """Create the log directory if it does not exist yet."""
        self.logs_dir.mkdir(parents=True, exist_ok=True)


config = Config()
