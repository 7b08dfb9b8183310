"""Exception types raised by the bot supervisor."""


class BotSupervisorError(Exception):
    """Base class for supervisor failures."""


class StartLockBusy(BotSupervisorError):
    """Another start is already in progress."""


class TerminationError(BotSupervisorError):
    """The supervised process could not be killed."""


class ServiceError(BotSupervisorError):
    """Base class for service registration failures."""


class HelperAcquisitionError(ServiceError):
    """The service helper could not be downloaded or extracted."""


class ServiceCommandError(ServiceError):
    """The service helper rejected a command."""

    def __init__(self, command: list[str], returncode: int, output: str = ""):
        self.command = command
        self.returncode = returncode
        self.output = output
        super().__init__(
            f"Command {' '.join(command)!r} failed with exit code {returncode}: {output.strip()}"
        )
