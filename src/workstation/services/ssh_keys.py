"""SSH identity provisioning for Workstation."""

import os
import re
from pathlib import Path
from typing import Optional, Tuple

from workstation.constants import (
    GIT_HOST,
    KEY_PREFIX,
    KEY_TYPE,
    PRIVATE_KEY_MODE,
    PUBLIC_KEY_MODE,
    SSH_DIR_MODE,
)
from workstation.errors import ValidationError, WorkstationError
from workstation.errors_catalog import actionable_error


def normalize_username(raw: str) -> str:
    normalized = re.sub(r"[^a-z0-9_.-]", "", (raw or "").strip().lower())
    if not normalized:
        raise ValidationError(actionable_error("invalid_username", user=raw or ""))
    return normalized


def key_file_name(user: str) -> str:
    return f"{KEY_PREFIX}_{normalize_username(user)}"


def key_paths(user: str, ssh_dir: Optional[str] = None) -> Tuple[str, str]:
    directory = ssh_dir or str(Path.home() / ".ssh")
    private_key = os.path.join(directory, key_file_name(user))
    return private_key, f"{private_key}.pub"


class SshKeyService:
    """Creates the per-user key pair and collects the git host's known_hosts entries."""

    def __init__(self, logger, console, runner, filesystem_service, ssh_dir: Optional[str] = None):
        self.logger = logger
        self.console = console
        self.runner = runner
        self.filesystem_service = filesystem_service
        self.ssh_dir = ssh_dir or str(Path.home() / ".ssh")

    @property
    def known_hosts_path(self) -> str:
        return os.path.join(self.ssh_dir, "known_hosts")

    def ensure_key_pair(self, user: str) -> Tuple[str, str]:
        private_key, public_key = key_paths(user, self.ssh_dir)
        if os.path.exists(private_key) and os.path.exists(public_key):
            self.logger.debug("Using existing SSH key %s", private_key)
            return private_key, public_key

        self.filesystem_service.ensure_private_dir(self.ssh_dir, SSH_DIR_MODE)
        self.console.print(f"[blue]Generating SSH key {os.path.basename(private_key)}...[/blue]")
        if os.path.exists(private_key):
            os.remove(private_key)
        self.runner.run(
            [
                "ssh-keygen",
                "-t",
                KEY_TYPE,
                "-f",
                private_key,
                "-N",
                "",
                "-C",
                f"{normalize_username(user)}@workstation",
            ],
            capture_output=True,
        )
        self.filesystem_service.set_permissions(private_key, PRIVATE_KEY_MODE)
        self.filesystem_service.set_permissions(public_key, PUBLIC_KEY_MODE)
        self.console.print("[green]SSH key created.[/green] Register this public key with your git host:")
        self.console.print(self.public_key_text(public_key), markup=False, highlight=False)
        return private_key, public_key

    def public_key_text(self, public_key: str) -> str:
        return Path(public_key).read_text(encoding="utf-8").strip()

    def known_hosts_entries(self, host: str = GIT_HOST) -> str:
        """Returns the known_hosts lines for ``host``, scanning it when none are stored."""
        if os.path.exists(self.known_hosts_path):
            result = self.runner.run(
                ["ssh-keygen", "-F", host, "-f", self.known_hosts_path],
                check=False,
                capture_output=True,
            )
            lines = [
                line
                for line in (result.stdout or "").splitlines()
                if line.strip() and not line.startswith("#")
            ]
            if lines:
                return "\n".join(lines) + "\n"

        try:
            result = self.runner.run(["ssh-keyscan", "-t", "ed25519,rsa,ecdsa", host], capture_output=True)
        except WorkstationError as exc:
            self.logger.warning("Could not scan host keys of %s: %s", host, exc)
            return ""

        scanned = result.stdout or ""
        if scanned.strip():
            self.filesystem_service.ensure_private_dir(self.ssh_dir, SSH_DIR_MODE)
            with open(self.known_hosts_path, "a", encoding="utf-8") as file_obj:
                file_obj.write(scanned if scanned.endswith("\n") else scanned + "\n")
        return scanned

    def ensure_known_hosts(self, host: str = GIT_HOST) -> str:
        """Makes sure the local known_hosts file exists and trusts ``host``; returns its path.

        Docker creates a missing bind-mount source as a directory, so the file is
        created empty when the git host cannot be scanned.
        """
        if not self.known_hosts_entries(host).strip():
            self.logger.warning("No host keys for %s in %s; git over SSH may fail.", host, self.known_hosts_path)
        if not os.path.exists(self.known_hosts_path):
            self.filesystem_service.ensure_private_dir(self.ssh_dir, SSH_DIR_MODE)
            Path(self.known_hosts_path).touch()
            self.filesystem_service.set_permissions(self.known_hosts_path, PUBLIC_KEY_MODE)
        return self.known_hosts_path


class SshAgent:
    """A private ssh-agent holding the session key for docker and git."""

    SOCK_PATTERN = re.compile(r"SSH_AUTH_SOCK=([^;]+);")
    PID_PATTERN = re.compile(r"SSH_AGENT_PID=(\d+);")

    def __init__(self, logger, runner):
        self.logger = logger
        self.runner = runner
        self.auth_sock: Optional[str] = None
        self.pid: Optional[str] = None

    @property
    def env(self):
        env = {}
        if self.auth_sock:
            env["SSH_AUTH_SOCK"] = self.auth_sock
        if self.pid:
            env["SSH_AGENT_PID"] = self.pid
        return env

    def start(self, private_key: str) -> Optional[str]:
        """Starts the agent and loads ``private_key``; returns the socket path or None."""
        if self.auth_sock:
            return self.auth_sock
        try:
            result = self.runner.run(["ssh-agent", "-s"], capture_output=True)
            sock_match = self.SOCK_PATTERN.search(result.stdout or "")
            pid_match = self.PID_PATTERN.search(result.stdout or "")
            if not sock_match:
                self.logger.warning("ssh-agent did not report a socket.")
                return None
            self.auth_sock = sock_match.group(1)
            self.pid = pid_match.group(1) if pid_match else None
            self.runner.run(["ssh-add", private_key], capture_output=True, env=self.env)
        except WorkstationError as exc:
            self.logger.warning("Could not start ssh-agent: %s", exc)
            self.stop()
            return None
        return self.auth_sock

    def stop(self):
        if self.pid:
            try:
                self.runner.run(["ssh-agent", "-k"], check=False, capture_output=True, env=self.env)
            except WorkstationError as exc:
                self.logger.warning("Could not stop ssh-agent: %s", exc)
        self.auth_sock = None
        self.pid = None
