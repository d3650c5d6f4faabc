"""Docker engine detection, readiness polling and context management."""

import sys
import time
from typing import List

from packaging import version

from workstation.constants import (
    LOCAL_CONTEXT_NAME,
    LOCAL_DOCKER_SOCKET,
    MIN_DOCKER_CLIENT_VERSION,
    POLL_INTERVAL_SECONDS,
    POLL_MAX_ATTEMPTS,
    WINDOWS_DOCKER_PIPE,
)
from workstation.errors import CommandError, ConnectivityError, FatalPrerequisiteError
from workstation.errors_catalog import actionable_error
from workstation.models import ChannelDescriptor
from workstation.services.docker_channel import DockerCli


class Deadline:
    """Overall time budget shared by the polling loops of one operation."""

    def __init__(self, seconds: float):
        self.seconds = seconds
        self.started = time.monotonic()

    def remaining(self) -> float:
        return max(0.0, self.seconds - (time.monotonic() - self.started))

    def expired(self) -> bool:
        return self.remaining() <= 0.0


class DockerRuntimeService:
    """Manages Docker client checks, engine readiness and contexts."""

    def __init__(self, logger, console, runner):
        self.logger = logger
        self.console = console
        self.runner = runner

    def check_client(self) -> str:
        result = self.runner.run(
            ["docker", "version", "--format", "{{.Client.Version}}"],
            check=False,
            capture_output=True,
        )
        client_version = (result.stdout or "").strip()
        try:
            parsed = version.parse(client_version)
        except version.InvalidVersion:
            self.logger.warning("Could not parse Docker client version '%s'.", client_version)
            return client_version

        if parsed < version.parse(MIN_DOCKER_CLIENT_VERSION):
            raise FatalPrerequisiteError(
                f"Docker client {client_version} is too old; {MIN_DOCKER_CLIENT_VERSION} or "
                "newer is required for context support."
            )
        return client_version

    def engine_ready(self, docker: DockerCli) -> bool:
        result = docker.run(["info", "--format", "{{.ServerVersion}}"], check=False)
        return result.returncode == 0

    def wait_for_engine(
        self,
        docker: DockerCli,
        deadline: Deadline,
        where: str = "",
        interval: float = POLL_INTERVAL_SECONDS,
        max_attempts: int = POLL_MAX_ATTEMPTS,
    ):
        self.console.print("[yellow]Waiting for the Docker engine to be ready...[/yellow]")

        for attempt in range(1, max_attempts + 1):
            if self.engine_ready(docker):
                self.console.print("[green]Docker engine is ready.[/green]")
                return
            if deadline.expired():
                self.logger.warning("Operation timeout reached after %s readiness checks.", attempt)
                break
            time.sleep(min(interval, deadline.remaining()))

        raise ConnectivityError(actionable_error("engine_unreachable", where=where))

    def local_socket(self) -> str:
        return WINDOWS_DOCKER_PIPE if sys.platform == "win32" else LOCAL_DOCKER_SOCKET

    def engine_start_command(self) -> List[str]:
        return ["docker", "desktop", "start"]

    def start_local_engine(self):
        self.console.print("[blue]Docker engine is not running. Trying to start it...[/blue]")
        try:
            self.runner.run(self.engine_start_command(), check=False, capture_output=True)
        except FatalPrerequisiteError as exc:
            self.logger.warning("Could not start the Docker engine automatically: %s", exc)

    def ensure_local_engine(self, deadline: Deadline) -> ChannelDescriptor:
        default_cli = DockerCli(self.runner, ChannelDescriptor.local())
        if not self.engine_ready(default_cli):
            self.start_local_engine()
            self.wait_for_engine(default_cli, deadline, where=" on this machine")

        if self.ensure_context(LOCAL_CONTEXT_NAME, self.local_socket()):
            return ChannelDescriptor.local(LOCAL_CONTEXT_NAME)
        self.logger.warning("Using the default Docker context for local mode.")
        return ChannelDescriptor.local()

    def context_exists(self, name: str) -> bool:
        result = self.runner.run(["docker", "context", "inspect", name], check=False, capture_output=True)
        return result.returncode == 0

    def ensure_context(self, name: str, docker_host: str) -> bool:
        action = "update" if self.context_exists(name) else "create"
        try:
            self.runner.run(
                ["docker", "context", action, name, "--docker", f"host={docker_host}"],
                capture_output=True,
            )
        except CommandError as exc:
            self.logger.warning("Could not %s Docker context '%s': %s", action, name, exc)
            return False
        self.logger.info("Docker context '%s' bound to %s.", name, docker_host)
        return True
