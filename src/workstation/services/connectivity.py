"""Connectivity resolution: from a session location to a working Docker channel."""

import os
import re
import shlex
from dataclasses import dataclass, field
from typing import List, Optional

from workstation.constants import BOOTSTRAP_ATTEMPTS, PRIVATE_KEY_MODE
from workstation.errors import ConnectivityError, WorkstationError
from workstation.errors_catalog import actionable_error
from workstation.models import ChannelDescriptor, ChannelMode, Local, Remote, SessionState
from workstation.services.docker_channel import DockerCli
from workstation.services.docker_runtime import Deadline
from workstation.services.hosts import LocalHost, RemoteHost


@dataclass
class ConnectivityResult:
    channel: ChannelDescriptor
    private_key: str
    public_key: str
    repositories: List[str] = field(default_factory=list)
    remote_home: Optional[str] = None
    known_hosts: Optional[str] = None

    @property
    def direct_ssh(self) -> bool:
        return self.channel.mode == ChannelMode.DIRECT_SSH


class ConnectivityResolver:
    """Establishes key trust, credential sync and the Docker channel for a session."""

    def __init__(
        self,
        logger,
        console,
        runner,
        docker_runtime_service,
        key_service,
        bootstrapper,
        agent,
        prompts,
        bootstrap_attempts: int = BOOTSTRAP_ATTEMPTS,
    ):
        self.logger = logger
        self.console = console
        self.runner = runner
        self.docker_runtime_service = docker_runtime_service
        self.key_service = key_service
        self.bootstrapper = bootstrapper
        self.agent = agent
        self.prompts = prompts
        self.bootstrap_attempts = max(1, bootstrap_attempts)

    def resolve(self, state: SessionState, deadline: Deadline) -> ConnectivityResult:
        self.docker_runtime_service.check_client()
        private_key, public_key = self.key_service.ensure_key_pair(state.user)

        location = state.location
        if isinstance(location, Local):
            return self._resolve_local(state, deadline, private_key, public_key)
        if isinstance(location, Remote):
            return self._resolve_remote(state, location, deadline, private_key, public_key)
        raise TypeError(f"Unsupported location: {location!r}")

    def _resolve_local(self, state, deadline, private_key, public_key) -> ConnectivityResult:
        self.console.print("[blue]Connecting to the local Docker engine...[/blue]")
        channel = self.docker_runtime_service.ensure_local_engine(deadline)
        repositories = []
        if state.paths.local_repo_base:
            repositories = LocalHost(self.runner, self.logger).list_dirs(state.paths.local_repo_base)
        return ConnectivityResult(
            channel=channel,
            private_key=private_key,
            public_key=public_key,
            repositories=repositories,
            known_hosts=self.key_service.ensure_known_hosts(),
        )

    def _resolve_remote(self, state, location: Remote, deadline, private_key, public_key) -> ConnectivityResult:
        self.console.print(f"[blue]Connecting to {location.target}...[/blue]")
        host = RemoteHost(self.runner, self.logger, location, private_key)

        remote_home = self.probe_key_auth(host)
        if remote_home is None:
            self.console.print("[yellow]SSH key is not trusted by the remote account yet.[/yellow]")
            remote_home = self.bootstrap_key(host, public_key)
        self.console.print(f"[green]Key authentication to {location.host} works.[/green]")
        host = RemoteHost(self.runner, self.logger, location, private_key, home=remote_home)

        known_hosts = self.sync_credentials(host, private_key, remote_home)

        repositories: List[str] = []
        if state.paths.remote_repo_base:
            repositories = host.list_dirs(state.paths.remote_repo_base)
            self.logger.info("Found %s repositories on %s.", len(repositories), location.host)

        auth_sock = self.agent.start(private_key)
        channel = self.select_channel(location, auth_sock)
        self.docker_runtime_service.wait_for_engine(
            DockerCli(self.runner, channel), deadline, where=f" on {location.host}"
        )
        return ConnectivityResult(
            channel=channel,
            private_key=private_key,
            public_key=public_key,
            repositories=repositories,
            remote_home=remote_home,
            known_hosts=known_hosts,
        )

    def probe_key_auth(self, host: RemoteHost) -> Optional[str]:
        """Returns the remote home directory when key authentication works."""
        try:
            result = host.run_script('printf %s "$HOME"', check=False)
        except WorkstationError as exc:
            self.logger.warning("Key authentication probe failed: %s", exc)
            return None
        if result.returncode != 0:
            self.logger.debug("Key authentication probe exited with %s.", result.returncode)
            return None
        return result.stdout.strip() or None

    def bootstrap_key(self, host: RemoteHost, public_key: str) -> str:
        location = host.location
        public_key_text = self.key_service.public_key_text(public_key)
        last_error: Optional[WorkstationError] = None

        for attempt in range(1, self.bootstrap_attempts + 1):
            password = self.prompts.ask_password(f"Password for {location.target}")
            try:
                self.bootstrapper.bootstrap(location, password, public_key_text)
            except ConnectivityError as exc:
                last_error = exc
                self.logger.warning(
                    "Key bootstrap attempt %s/%s failed: %s", attempt, self.bootstrap_attempts, exc
                )
            finally:
                password = None

            remote_home = self.probe_key_auth(host)
            if remote_home is not None:
                return remote_home

        raise ConnectivityError(
            actionable_error(
                "bootstrap_failed",
                target=location.target,
                public_key=os.path.basename(public_key),
            ),
            command=last_error.command if last_error else None,
            output=last_error.output if last_error else None,
        )

    def sync_credentials(self, host: RemoteHost, private_key: str, remote_home: str) -> Optional[str]:
        """Copies the private key and git host keys to the remote account; best effort."""
        remote_ssh_dir = host.join(remote_home, ".ssh")
        remote_key = host.join(remote_ssh_dir, os.path.basename(private_key))
        remote_known_hosts = host.join(remote_ssh_dir, "known_hosts")

        try:
            host.run_script(f"mkdir -p {shlex.quote(remote_ssh_dir)} && chmod 700 {shlex.quote(remote_ssh_dir)}")
            host.copy_to(private_key, remote_key, PRIVATE_KEY_MODE)
        except WorkstationError as exc:
            self.logger.warning("Could not sync the private key to %s: %s", host.location.host, exc)

        entries = self.key_service.known_hosts_entries()
        if entries.strip():
            quoted = shlex.quote(remote_known_hosts)
            script = f"touch {quoted} && cat >> {quoted} && sort -u {quoted} -o {quoted} && chmod 644 {quoted}"
            try:
                host.run_script(script, input_text=entries)
            except WorkstationError as exc:
                self.logger.warning("Could not sync known_hosts to %s: %s", host.location.host, exc)
        return remote_known_hosts

    def context_name(self, location: Remote) -> str:
        host = re.sub(r"[^A-Za-z0-9_.-]", "-", location.host)
        return f"workstation-{location.user}-{host}"

    def select_channel(self, location: Remote, auth_sock: Optional[str] = None) -> ChannelDescriptor:
        docker_host = f"ssh://{location.target}"
        name = self.context_name(location)
        if self.docker_runtime_service.ensure_context(name, docker_host):
            return ChannelDescriptor.named_context(name, docker_host, ssh_auth_sock=auth_sock)

        self.console.print("[yellow]Docker context unavailable; using direct SSH mode.[/yellow]")
        return ChannelDescriptor.direct(docker_host, ssh_auth_sock=auth_sock)
