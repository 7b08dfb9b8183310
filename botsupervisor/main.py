"""
Bot supervisor command line.

Runs exactly one action per invocation: install or uninstall the OS service,
start or stop the bot, or check its status. Without an action flag an
interactive menu is shown.

Exit codes:
    0  action performed (or status reported)
    1  action refused or failed
    2  usage error
    3  unhandled supervisor error (service helper or service manager failure)
"""

import json
import logging
from logging.handlers import TimedRotatingFileHandler
from typing import Optional

import typer

from .config import Config, config
from .errors import BotSupervisorError
from .process import Supervisor
from .service import ServiceRegistrar

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_ERROR = 3

INSTALL = "install"
UNINSTALL = "uninstall"
START = "start"
STOP = "stop"
STATUS = "status"

MENU = [
    (INSTALL, "Install service"),
    (UNINSTALL, "Uninstall service"),
    (START, "Start bot"),
    (STOP, "Stop bot"),
    (STATUS, "Check status"),
]

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False, help="Start, stop and monitor the trading bot.")


def configure_logging(cfg: Config = None):
    """Log to a daily rolling file and the console."""
    cfg = cfg or config
    cfg.ensure_dirs()

    log_formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    # Rolls over at midnight, keeps one file per day
    file_handler = TimedRotatingFileHandler(
        cfg.supervisor_log,
        when="midnight",
        backupCount=cfg.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(log_formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(log_formatter)

    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        handlers=[file_handler, console_handler],
        force=True,
    )


def print_status(report, json_output: bool = False):
    if json_output:
        typer.echo(json.dumps(report.to_dict(), indent=2))
        return

    if not report.running:
        typer.echo("Bot: STOPPED")
        return

    typer.echo(f"Bot: RUNNING (PID {report.pid})")
    metrics = report.metrics
    if metrics:
        typer.echo(f"  Uptime: {metrics.uptime_str or 'unknown'}")
        memory = f"{metrics.memory_mb:.1f} MB" if metrics.memory_mb is not None else "unknown"
        typer.echo(f"  Memory: {memory}")
        cpu = f"{metrics.cpu_seconds:.2f} s" if metrics.cpu_seconds is not None else "unknown"
        typer.echo(f"  CPU time: {cpu}")
    if report.log_tail:
        typer.echo(f"\nLast {len(report.log_tail)} lines of {report.log_file}:")
        for line in report.log_tail:
            typer.echo(f"  {line}")


def run_action(
    action: str,
    supervisor: Supervisor = None,
    registrar: ServiceRegistrar = None,
    json_output: bool = False,
    lines: Optional[int] = None,
) -> int:
    """Run a single action and return the process exit code."""
    supervisor = supervisor or Supervisor()
    registrar = registrar or ServiceRegistrar()

    try:
        if action == INSTALL:
            ok = registrar.install()
        elif action == UNINSTALL:
            ok = registrar.uninstall()
        elif action == START:
            ok = supervisor.start()
        elif action == STOP:
            ok = supervisor.stop()
        elif action == STATUS:
            report = supervisor.status(lines=lines)
            if not report.running:
                logger.warning("Bot is not running")
            print_status(report, json_output=json_output)
            ok = True
        else:
            logger.error(f"Unknown action: {action}")
            return EXIT_USAGE
    except BotSupervisorError as e:
        logger.exception(f"Action '{action}' failed: {e}")
        return EXIT_ERROR

    return EXIT_OK if ok else EXIT_FAILED


def prompt_menu() -> Optional[str]:
    """Show the interactive menu and return the chosen action (None to exit)."""
    typer.echo("\nTrading bot supervisor")
    for index, (_, label) in enumerate(MENU, start=1):
        typer.echo(f"  {index}. {label}")
    exit_choice = len(MENU) + 1
    typer.echo(f"  {exit_choice}. Exit")

    raw = typer.prompt("Select an option", default=str(exit_choice))
    try:
        choice = int(raw)
    except ValueError:
        raise typer.BadParameter(f"'{raw}' is not a number", param_hint="selection")

    if choice == exit_choice:
        return None
    if not 1 <= choice <= len(MENU):
        raise typer.BadParameter(f"choose a number from 1 to {exit_choice}", param_hint="selection")
    return MENU[choice - 1][0]


@app.command()
def main(
    install_service: bool = typer.Option(False, "--install-service", help="Register the bot as an auto-starting service"),
    uninstall_service: bool = typer.Option(False, "--uninstall-service", help="Show how to remove the service"),
    start_service: bool = typer.Option(False, "--start-service", help="Start the bot in the background"),
    stop_service: bool = typer.Option(False, "--stop-service", help="Stop the running bot"),
    check_status: bool = typer.Option(False, "--check-status", help="Show whether the bot is running"),
    json_output: bool = typer.Option(False, "--json", help="Print the status report as JSON"),
    lines: Optional[int] = typer.Option(None, "--lines", min=0, help="Log lines to show with the status"),
):
    """Manage the trading bot process."""
    flags = {
        INSTALL: install_service,
        UNINSTALL: uninstall_service,
        START: start_service,
        STOP: stop_service,
        STATUS: check_status,
    }
    selected = [action for action, enabled in flags.items() if enabled]
    if len(selected) > 1:
        raise typer.BadParameter("choose only one action flag")
    if json_output and selected and selected[0] != STATUS:
        raise typer.BadParameter("--json only applies to --check-status")

    configure_logging()

    action = selected[0] if selected else prompt_menu()
    if action is None:
        raise typer.Exit(code=EXIT_OK)

    raise typer.Exit(code=run_action(action, json_output=json_output, lines=lines))


if __name__ == "__main__":
    app()
