"""Named data volumes and their synchronization with host directories."""

from typing import Dict, Tuple

from workstation.constants import SERVICE_GID, SERVICE_UID, SYNC_DOCKERFILE, SYNC_IMAGE
from workstation.errors import CommandError, DockerError, reclassify
from workstation.errors_catalog import actionable_error

VOLUME_KINDS = ("output", "synthpop")


class VolumeService:
    """Creates, populates, syncs back and removes the per-user data volumes."""

    def __init__(self, logger, console, helper_image: str = SYNC_IMAGE):
        self.logger = logger
        self.console = console
        self.helper_image = helper_image

    @staticmethod
    def volume_names(user: str) -> Dict[str, str]:
        return {kind: f"workstation_{kind}_{user}" for kind in VOLUME_KINDS}

    def _docker(self, docker, args, message: str, **kwargs):
        try:
            return docker.run(args, **kwargs)
        except CommandError as exc:
            raise reclassify(exc, DockerError, message) from exc

    def ensure_helper_image(self, docker):
        result = docker.run(["image", "inspect", self.helper_image], check=False)
        if result.returncode == 0:
            return
        self.console.print(f"[blue]Building sync helper image {self.helper_image}...[/blue]")
        self._docker(
            docker,
            ["build", "-t", self.helper_image, "-"],
            f"Could not build sync helper image {self.helper_image}.",
            input_text=SYNC_DOCKERFILE,
        )

    def helper_run(self, mounts, command):
        args = ["run", "--rm"]
        for mount in mounts:
            args += ["-v", mount]
        return args + [self.helper_image, *command]

    def prepare(self, docker, user: str, sources: Dict[str, str]) -> Dict[str, str]:
        """Creates each volume and fills it from its host directory before the container starts."""
        names = self.volume_names(user)
        self.ensure_helper_image(docker)

        for kind, volume in names.items():
            source = sources.get(kind)
            if not source:
                raise DockerError(f"No host directory resolved for the {kind} volume.")
            self.console.print(f"[blue]Preparing volume {volume} from {source}...[/blue]")
            self._docker(docker, ["volume", "create", volume], f"Could not create volume {volume}.")
            self._docker(
                docker,
                self.helper_run(
                    [f"{volume}:/volume"],
                    ["chown", "-R", f"{SERVICE_UID}:{SERVICE_GID}", "/volume"],
                ),
                f"Could not set ownership inside volume {volume}.",
            )
            self._docker(
                docker,
                self.helper_run(
                    [f"{source}:/source:ro", f"{volume}:/volume"],
                    ["rsync", "-a", f"--chown={SERVICE_UID}:{SERVICE_GID}", "/source/", "/volume/"],
                ),
                f"Could not copy {source} into volume {volume}.",
            )
            self.verify_populated(docker, volume, source)
        return names

    def entry_counts(self, docker, volume: str, source: str) -> Tuple[int, int]:
        result = self._docker(
            docker,
            self.helper_run(
                [f"{source}:/source:ro", f"{volume}:/volume:ro"],
                ["sh", "-c", "ls -A /source | wc -l; ls -A /volume | wc -l"],
            ),
            f"Could not inspect volume {volume}.",
        )
        counts = [line.strip() for line in (result.stdout or "").splitlines() if line.strip()]
        try:
            return int(counts[0]), int(counts[1])
        except (IndexError, ValueError) as exc:
            raise DockerError(
                f"Unexpected entry count output for volume {volume}.", output=result.stdout
            ) from exc

    def verify_populated(self, docker, volume: str, source: str):
        source_count, volume_count = self.entry_counts(docker, volume, source)
        self.logger.debug("Volume %s holds %s of %s entries.", volume, volume_count, source_count)
        if source_count > 0 and volume_count == 0:
            raise DockerError(actionable_error("volume_empty", volume=volume, source=source))

    def sync_back(self, docker, volume: str, target: str):
        self.console.print(f"[blue]Copying volume {volume} back to {target}...[/blue]")
        self._docker(
            docker,
            self.helper_run(
                [f"{volume}:/volume:ro", f"{target}:/target"],
                ["rsync", "-a", "/volume/", "/target/"],
            ),
            f"Could not copy volume {volume} back to {target}.",
        )

    def remove(self, docker, volume: str):
        result = docker.run(["volume", "rm", volume], check=False)
        if result.returncode != 0:
            output = (result.stderr or "").strip()
            if "no such volume" in output.lower():
                self.logger.debug("Volume %s already removed.", volume)
                return
            raise DockerError(f"Could not remove volume {volume}.", output=output)
