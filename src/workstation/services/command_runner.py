"""Subprocess execution service for Workstation."""

import os
import subprocess
import time
from typing import Dict, Iterable, List, Optional

from workstation.errors import CommandError, FatalPrerequisiteError, WorkstationError
from workstation.errors_catalog import actionable_error

MASK = "******"


class CommandRunner:
    """Runs external commands with consistent error handling."""

    def __init__(self, logger, default_timeout: Optional[float] = None):
        self.logger = logger
        self.default_timeout = default_timeout
        self.secrets: List[str] = []

    def register_secret(self, value: Optional[str]):
        if value and value not in self.secrets:
            self.secrets.append(value)

    def forget_secret(self, value: Optional[str]):
        if value in self.secrets:
            self.secrets.remove(value)

    def mask(self, text: str) -> str:
        for secret in self.secrets:
            text = text.replace(secret, MASK)
        return text

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
        timeout: Optional[float] = None,
        retry_count: int = 0,
        retry_backoff_seconds: float = 0.0,
        retry_on_returncodes: Optional[Iterable[int]] = None,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
        input_text: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        cmd_str = self.mask(" ".join(cmd))
        self.logger.debug("Executing: %s", cmd_str)

        effective_timeout = timeout if timeout is not None else self.default_timeout
        max_attempts = max(1, retry_count + 1)
        retry_codes = set(retry_on_returncodes or [])
        process_env = None
        if env:
            process_env = dict(os.environ)
            process_env.update(env)

        for attempt in range(1, max_attempts + 1):
            try:
                result = subprocess.run(
                    cmd,
                    text=True,
                    capture_output=capture_output,
                    timeout=effective_timeout,
                    env=process_env,
                    cwd=cwd,
                    input=input_text,
                )
            except FileNotFoundError as exc:
                raise FatalPrerequisiteError(
                    actionable_error("missing_tool", tool=cmd[0]),
                    command=cmd_str,
                ) from exc
            except subprocess.TimeoutExpired as exc:
                if attempt < max_attempts:
                    self.logger.warning(
                        "Command timed out on attempt %s/%s. Retrying in %.1fs: %s",
                        attempt,
                        max_attempts,
                        retry_backoff_seconds,
                        cmd_str,
                    )
                    time.sleep(retry_backoff_seconds)
                    continue
                raise CommandError(
                    f"Command timed out after {effective_timeout}s: {cmd_str}",
                    command=cmd_str,
                    returncode=-1,
                ) from exc
            except OSError as exc:
                raise WorkstationError(
                    f"Failed to execute command: {cmd_str}. {exc}", command=cmd_str
                ) from exc

            if capture_output and result.stdout:
                self.logger.debug("Command output: %s", self.mask(result.stdout.strip()))

            if result.returncode == 0:
                return result

            stderr = self.mask((result.stderr or "").strip()) if capture_output else ""
            message = f"Command failed ({result.returncode}): {cmd_str}"

            can_retry = attempt < max_attempts and (
                not retry_codes or result.returncode in retry_codes
            )
            if can_retry:
                self.logger.warning(
                    "Command failed on attempt %s/%s and will be retried in %.1fs.\n%s",
                    attempt,
                    max_attempts,
                    retry_backoff_seconds,
                    message,
                )
                time.sleep(retry_backoff_seconds)
                continue

            if check:
                raise CommandError(
                    message,
                    command=cmd_str,
                    returncode=result.returncode,
                    output=stderr or self.mask((result.stdout or "").strip()) or None,
                )

            self.logger.debug(message)
            return result

        raise CommandError(f"Command failed after retries: {cmd_str}", command=cmd_str, returncode=-1)
