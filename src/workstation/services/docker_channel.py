"""Docker CLI invocations shaped by the session's channel descriptor."""

import subprocess
from typing import List, Optional

from workstation.models import ChannelDescriptor


class DockerCli:
    """Prefixes every docker call with the active context or environment overrides."""

    def __init__(self, runner, channel: ChannelDescriptor):
        self.runner = runner
        self.channel = channel

    def command(self, args: List[str]) -> List[str]:
        return ["docker", *self.channel.docker_args(), *args]

    def run(
        self,
        args: List[str],
        check: bool = True,
        capture_output: bool = True,
        input_text: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        return self.runner.run(
            self.command(args),
            check=check,
            capture_output=capture_output,
            env=self.channel.env_overrides() or None,
            input_text=input_text,
            timeout=timeout,
        )
