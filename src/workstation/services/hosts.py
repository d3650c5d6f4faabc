"""Engine host access: the machine that runs the Docker engine and holds the repositories."""

import os
import posixpath
import shlex
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

from workstation.constants import SSH_CONNECT_TIMEOUT_SECONDS
from workstation.errors import CommandError
from workstation.models import Local, Location, Remote


class LocalHost:
    """Runs commands and file operations on this machine."""

    def __init__(self, runner, logger):
        self.runner = runner
        self.logger = logger
        self.location = Local()

    def home(self) -> str:
        return str(Path.home())

    def join(self, *parts: str) -> str:
        return os.path.join(*parts)

    def run(
        self,
        argv: List[str],
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        check: bool = True,
        capture_output: bool = True,
        input_text: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        return self.runner.run(
            argv,
            check=check,
            capture_output=capture_output,
            env=env,
            cwd=cwd,
            input_text=input_text,
            timeout=timeout,
        )

    def read_text(self, path: str) -> Optional[str]:
        try:
            return Path(path).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            self.logger.warning("Could not read %s: %s", path, exc)
            return None

    def write_text(self, path: str, content: str, mode: int):
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(target), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as file_obj:
            file_obj.write(content)
        try:
            os.chmod(str(target), mode)
        except OSError as exc:
            self.logger.warning("Could not set permissions on %s: %s", path, exc)

    def remove(self, path: str) -> bool:
        try:
            os.remove(path)
            return True
        except FileNotFoundError:
            return False

    def list_dirs(self, path: str) -> List[str]:
        if not os.path.isdir(path):
            return []
        return sorted(
            entry.name
            for entry in os.scandir(path)
            if entry.is_dir() and not entry.name.startswith(".")
        )


class RemoteHost:
    """Runs commands and file operations on the remote engine host over key-based SSH."""

    def __init__(self, runner, logger, location: Remote, private_key: str, home: Optional[str] = None):
        self.runner = runner
        self.logger = logger
        self.location = location
        self.private_key = private_key
        self._home = home

    def ssh_options(self) -> List[str]:
        return [
            "-i",
            self.private_key,
            "-o",
            "BatchMode=yes",
            "-o",
            "IdentitiesOnly=yes",
            "-o",
            f"ConnectTimeout={SSH_CONNECT_TIMEOUT_SECONDS}",
            "-o",
            "StrictHostKeyChecking=accept-new",
        ]

    def ssh_command(self, script: str) -> List[str]:
        return ["ssh", *self.ssh_options(), self.location.target, script]

    def run_script(
        self,
        script: str,
        check: bool = True,
        capture_output: bool = True,
        input_text: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        return self.runner.run(
            self.ssh_command(script),
            check=check,
            capture_output=capture_output,
            input_text=input_text,
            timeout=timeout,
        )

    def home(self) -> str:
        if self._home is None:
            result = self.run_script('printf %s "$HOME"')
            self._home = result.stdout.strip()
        return self._home

    def join(self, *parts: str) -> str:
        return posixpath.join(*parts)

    def run(
        self,
        argv: List[str],
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        check: bool = True,
        capture_output: bool = True,
        input_text: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        return self.run_script(
            self.build_script(argv, cwd=cwd, env=env),
            check=check,
            capture_output=capture_output,
            input_text=input_text,
            timeout=timeout,
        )

    @staticmethod
    def build_script(argv: List[str], cwd: Optional[str] = None, env: Optional[Dict[str, str]] = None) -> str:
        command = shlex.join(argv)
        if env:
            assignments = " ".join(f"{key}={shlex.quote(value)}" for key, value in env.items())
            command = f"env {assignments} {command}"
        if cwd:
            command = f"cd {shlex.quote(cwd)} && {command}"
        return command

    def read_text(self, path: str) -> Optional[str]:
        result = self.run_script(f"cat {shlex.quote(path)}", check=False)
        if result.returncode != 0:
            return None
        return result.stdout

    def write_text(self, path: str, content: str, mode: int):
        directory = posixpath.dirname(path) or "."
        script = (
            f"umask 077 && mkdir -p {shlex.quote(directory)} && "
            f"cat > {shlex.quote(path)} && chmod {mode:o} {shlex.quote(path)}"
        )
        self.run_script(script, input_text=content)

    def remove(self, path: str) -> bool:
        quoted = shlex.quote(path)
        result = self.run_script(f"if [ -e {quoted} ]; then rm -f {quoted} && echo removed; fi")
        return "removed" in (result.stdout or "")

    def list_dirs(self, path: str) -> List[str]:
        script = (
            f"find {shlex.quote(path)} -mindepth 1 -maxdepth 1 -type d "
            "! -name '.*' -exec basename {} \\;"
        )
        try:
            result = self.run_script(script)
        except CommandError as exc:
            self.logger.warning("Could not list %s on %s: %s", path, self.location.host, exc)
            return []
        return sorted(line.strip() for line in result.stdout.splitlines() if line.strip())

    def copy_to(self, local_path: str, remote_path: str, mode: int):
        """Copies a local file through scp and tightens its permissions."""
        scp_cmd = [
            "scp",
            *self.ssh_options(),
            local_path,
            f"{self.location.target}:{remote_path}",
        ]
        self.runner.run(scp_cmd, capture_output=True)
        self.run_script(f"chmod {mode:o} {shlex.quote(remote_path)}")


def host_for(location: Location, runner, logger, private_key: Optional[str] = None, home: Optional[str] = None):
    if isinstance(location, Local):
        return LocalHost(runner, logger)
    if isinstance(location, Remote):
        if not private_key:
            raise ValueError("A private key is required to reach a remote host.")
        return RemoteHost(runner, logger, location, private_key, home=home)
    raise TypeError(f"Unsupported location: {location!r}")
