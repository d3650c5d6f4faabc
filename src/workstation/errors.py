"""Domain errors for Workstation."""

from typing import Optional


class WorkstationError(RuntimeError):
    """Raised when a session phase cannot continue safely."""

    def __init__(
        self,
        message: str,
        phase: Optional[str] = None,
        command: Optional[str] = None,
        output: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.phase = phase
        self.command = command
        self.output = output

    def describe(self) -> str:
        lines = []
        if self.phase:
            lines.append(f"[{self.phase}] {self.message}")
        else:
            lines.append(self.message)
        if self.command:
            lines.append(f"Command: {self.command}")
        if self.output:
            lines.append(f"Output: {self.output.strip()}")
        return "\n".join(lines)


class ValidationError(WorkstationError):
    """Bad input, port conflict or missing prerequisite data."""


class ConnectivityError(WorkstationError):
    """SSH, key bootstrap or Docker engine reachability failure."""


class DockerError(WorkstationError):
    """Image build, container run or stop failure."""


class GitError(WorkstationError):
    """Repository status, commit or push failure."""


class FatalPrerequisiteError(WorkstationError):
    """A required external tool is not installed."""


class CommandError(WorkstationError):
    """An external command exited with a non-zero status."""

    def __init__(self, message: str, command: str, returncode: int, output: Optional[str] = None):
        super().__init__(message, command=command, output=output)
        self.returncode = returncode


def reclassify(exc: WorkstationError, error_cls, message: str) -> WorkstationError:
    """Builds a classified error keeping the command context of ``exc``."""
    return error_cls(message, phase=exc.phase, command=exc.command, output=exc.output)
