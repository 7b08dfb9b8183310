"""
OS service registration for the bot.

Hands unattended execution (start at boot, restart on crash) to an external
service manager. The only backend is NSSM, the Non-Sucking Service Manager,
which is downloaded on first use and driven through its command line.

Uninstalling is deliberately left to the operator: uninstall() only prints
the commands to run.
"""

import hashlib
import logging
import platform
import shutil
import subprocess
import sys
import zipfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from .config import UTF8_ENVIRONMENT, Config, config
from .errors import HelperAcquisitionError, ServiceCommandError

logger = logging.getLogger(__name__)


@dataclass
class ServiceDefinition:
    """Everything the service manager needs to run the bot."""

    name: str
    display_name: str
    description: str
    executable: str
    arguments: list[str]
    working_dir: Path
    stdout_log: Path
    stderr_log: Path
    environment: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_config(cls, cfg: Config) -> "ServiceDefinition":
        return cls(
            name=cfg.service_name,
            display_name=cfg.service_display_name,
            description=cfg.service_description,
            executable=cfg.interpreter,
            arguments=[str(cfg.script_path)],
            working_dir=cfg.install_dir,
            stdout_log=cfg.stdout_log,
            stderr_log=cfg.stderr_log,
            environment=dict(UTF8_ENVIRONMENT),
        )


class ServiceBackend(ABC):
    """A service manager capable of running the bot unattended."""

    name = "base"

    @abstractmethod
    def is_supported(self) -> bool:
        ...

    @abstractmethod
    def ensure_helper(self) -> Path:
        """Make sure the helper tool is available locally and return its path."""

    @abstractmethod
    def install(self, definition: ServiceDefinition):
        ...

    @abstractmethod
    def uninstall_commands(self, service_name: str) -> list[list[str]]:
        ...


class NssmBackend(ServiceBackend):
    """Registers the bot as a Windows service through nssm.exe."""

    name = "nssm"

    def __init__(self, cfg: Config = None, transport: httpx.BaseTransport = None):
        self.config = cfg or config
        self._transport = transport

    @property
    def helper_path(self) -> Path:
        return self.config.tools_dir / "nssm.exe"

    def is_supported(self) -> bool:
        return sys.platform == "win32"

    def ensure_helper(self) -> Path:
        if self.helper_path.exists():
            return self.helper_path

        self.config.tools_dir.mkdir(parents=True, exist_ok=True)
        archive_path = self.config.tools_dir / "nssm.zip.part"
        try:
            self._download(self.config.nssm_url, archive_path)
            self._verify(archive_path)
            self._extract(archive_path)
        except HelperAcquisitionError:
            self.helper_path.unlink(missing_ok=True)
            raise
        finally:
            archive_path.unlink(missing_ok=True)

        logger.info(f"NSSM installed to {self.helper_path}")
        return self.helper_path

    def _download(self, url: str, dest_path: Path):
        logger.info(f"Downloading NSSM from {url}...")
        try:
            with httpx.Client(
                transport=self._transport,
                timeout=self.config.download_timeout,
                follow_redirects=True,
            ) as client:
                with client.stream("GET", url) as response:
                    response.raise_for_status()
                    with open(dest_path, "wb") as f:
                        for chunk in response.iter_bytes():
                            f.write(chunk)
        except (httpx.HTTPError, OSError) as e:
            raise HelperAcquisitionError(f"Failed to download NSSM from {url}: {e}") from e

    def _verify(self, archive_path: Path):
        expected = self.config.nssm_sha256.strip().lower()
        if not expected:
            logger.warning("NSSM_SHA256 not set, skipping checksum verification")
            return

        digest = hashlib.sha256(archive_path.read_bytes()).hexdigest()
        if digest != expected:
            raise HelperAcquisitionError(
                f"NSSM archive checksum mismatch: expected {expected}, got {digest}"
            )

    def _extract(self, archive_path: Path):
        arch = "win64" if platform.machine().endswith("64") else "win32"
        suffix = f"{arch}/nssm.exe"
        try:
            with zipfile.ZipFile(archive_path) as archive:
                member = next((n for n in archive.namelist() if n.endswith(suffix)), None)
                if member is None:
                    raise HelperAcquisitionError(f"{suffix} not found in NSSM archive")
                with archive.open(member) as src, open(self.helper_path, "wb") as dst:
                    shutil.copyfileobj(src, dst)
        except (zipfile.BadZipFile, OSError) as e:
            raise HelperAcquisitionError(f"Failed to extract NSSM: {e}") from e

    def _run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        command = [str(self.helper_path), *args]
        logger.debug(f"Running {' '.join(command)}")
        result = subprocess.run(command, capture_output=True, text=True)
        if check and result.returncode != 0:
            raise ServiceCommandError(command, result.returncode, result.stderr or result.stdout)
        return result

    def install(self, definition: ServiceDefinition):
        name = definition.name
        arguments = subprocess.list2cmdline(definition.arguments)

        result = self._run("install", name, definition.executable, *definition.arguments, check=False)
        if result.returncode != 0:
            logger.warning(f"nssm install {name} returned {result.returncode}, service may already exist; re-applying settings")

        environment = [f"{key}={value}" for key, value in definition.environment.items()]
        settings = [
            ("Application", definition.executable),
            ("AppParameters", arguments),
            ("AppDirectory", str(definition.working_dir)),
            ("Start", "SERVICE_AUTO_START"),
            ("DisplayName", definition.display_name),
            ("Description", definition.description),
            ("AppStdout", str(definition.stdout_log)),
            ("AppStderr", str(definition.stderr_log)),
        ]
        for key, value in settings:
            self._run("set", name, key, value)
        if environment:
            self._run("set", name, "AppEnvironmentExtra", *environment)

    def uninstall_commands(self, service_name: str) -> list[list[str]]:
        helper = str(self.helper_path)
        return [
            [helper, "stop", service_name],
            [helper, "remove", service_name, "confirm"],
        ]


class ServiceRegistrar:
    """Installs the bot as an OS service through a pluggable backend."""

    def __init__(self, cfg: Config = None, backend: ServiceBackend = None):
        self.config = cfg or config
        self.backend = backend or NssmBackend(self.config)

    def definition(self) -> ServiceDefinition:
        return ServiceDefinition.from_config(self.config)

    def install(self) -> bool:
        """
        Register the bot as an auto-starting service.

        Helper download and service manager failures propagate as
        ServiceError. Nothing is rolled back.
        """
        if not self.backend.is_supported():
            logger.error(f"Service backend '{self.backend.name}' is not supported on {sys.platform}")
            return False

        self.backend.ensure_helper()
        definition = self.definition()
        definition.stdout_log.parent.mkdir(parents=True, exist_ok=True)
        self.backend.install(definition)
        logger.info(f"Service {definition.name} installed and set to start automatically")
        return True

    def uninstall(self) -> bool:
        """Tell the operator how to remove the service."""
        commands = self.backend.uninstall_commands(self.config.service_name)
        logger.info(f"To remove service {self.config.service_name}, run as administrator:")
        for command in commands:
            logger.info(f"    {subprocess.list2cmdline(command)}")
        return True
