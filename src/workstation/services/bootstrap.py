"""Password bootstrap of the per-user public key into a remote account."""

import shlex

import paramiko

from workstation.constants import BOOTSTRAP_MARKER, SSH_CONNECT_TIMEOUT_SECONDS
from workstation.errors import CommandError, ConnectivityError
from workstation.models import Remote
from workstation.services.fallback import FallbackChain, Strategy


def build_install_script(public_key_text: str) -> str:
    key = shlex.quote(public_key_text.strip())
    return (
        "umask 077 && mkdir -p ~/.ssh && chmod 700 ~/.ssh && "
        "touch ~/.ssh/authorized_keys && "
        f"(grep -qxF {key} ~/.ssh/authorized_keys || echo {key} >> ~/.ssh/authorized_keys) && "
        "chmod 600 ~/.ssh/authorized_keys && "
        f"echo {BOOTSTRAP_MARKER}"
    )


class ManagedSessionBootstrap:
    """Installs the key through a paramiko session authenticated with the password."""

    name = "managed-ssh-session"

    def __init__(self, logger, paramiko_module=paramiko, timeout: float = SSH_CONNECT_TIMEOUT_SECONDS):
        self.logger = logger
        self.paramiko = paramiko_module
        self.timeout = timeout

    def __call__(self, location: Remote, password: str, public_key_text: str):
        client = self.paramiko.SSHClient()
        client.load_system_host_keys()
        client.set_missing_host_key_policy(self.paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=location.host,
                username=location.user,
                password=password,
                timeout=self.timeout,
                allow_agent=False,
                look_for_keys=False,
            )
            _stdin, stdout, stderr = client.exec_command(
                build_install_script(public_key_text), timeout=self.timeout * 3
            )
            output = stdout.read().decode("utf-8", errors="replace")
            error_output = stderr.read().decode("utf-8", errors="replace")
            exit_status = stdout.channel.recv_exit_status()
        except (self.paramiko.SSHException, OSError) as exc:
            raise ConnectivityError(f"SSH session to {location.target} failed: {exc}") from exc
        finally:
            client.close()

        if exit_status != 0 or BOOTSTRAP_MARKER not in output:
            raise ConnectivityError(
                f"Key installation on {location.target} did not complete (exit {exit_status}).",
                output=error_output or output,
            )


class TerminalClientBootstrap:
    """Installs the key through the ssh client driven by sshpass."""

    name = "terminal-ssh-client"

    def __init__(self, logger, runner):
        self.logger = logger
        self.runner = runner

    def __call__(self, location: Remote, password: str, public_key_text: str):
        cmd = [
            "sshpass",
            "-e",
            "ssh",
            "-o",
            "StrictHostKeyChecking=accept-new",
            "-o",
            "PubkeyAuthentication=no",
            "-o",
            "PreferredAuthentications=password,keyboard-interactive",
            "-o",
            f"ConnectTimeout={SSH_CONNECT_TIMEOUT_SECONDS}",
            location.target,
            build_install_script(public_key_text),
        ]
        try:
            result = self.runner.run(cmd, capture_output=True, env={"SSHPASS": password})
        except CommandError as exc:
            raise ConnectivityError(
                f"ssh password login to {location.target} failed.",
                command=exc.command,
                output=exc.output,
            ) from exc

        if BOOTSTRAP_MARKER not in (result.stdout or ""):
            raise ConnectivityError(
                f"Key installation on {location.target} did not report success.",
                output=result.stdout,
            )


class KeyBootstrapper:
    """Runs the bootstrap methods in order until one installs the key."""

    def __init__(self, logger, runner, paramiko_module=paramiko):
        self.logger = logger
        self.runner = runner
        self.methods = [
            ManagedSessionBootstrap(logger, paramiko_module=paramiko_module),
            TerminalClientBootstrap(logger, runner),
        ]

    def bootstrap(self, location: Remote, password: str, public_key_text: str):
        chain = FallbackChain(
            "key bootstrap",
            [Strategy(method.name, method) for method in self.methods],
            self.logger,
            error_cls=ConnectivityError,
        )
        self.runner.register_secret(password)
        try:
            chain.run(location, password, public_key_text)
        finally:
            self.runner.forget_secret(password)
