"""Container discovery and session recovery on the active Docker engine."""

import json
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set, Tuple

from workstation.constants import SERVICE_PORT
from workstation.errors import CommandError, DockerError, reclassify
from workstation.models import ContainerInfo, RecoveredSecrets, SessionState
from workstation.services.volumes import VolumeService


@dataclass
class ContainerStatus:
    containers: List[ContainerInfo] = field(default_factory=list)
    used_ports: Set[str] = field(default_factory=set)
    user_containers: List[ContainerInfo] = field(default_factory=list)
    running: bool = False
    recovered: RecoveredSecrets = field(default_factory=RecoveredSecrets)
    warnings: List[str] = field(default_factory=list)


class ContainerStatusService:
    """Reconciles what the engine reports with this session's container."""

    PUBLISHED_PORT_PATTERN = re.compile(r":(\d+)->")

    def __init__(self, logger, console):
        self.logger = logger
        self.console = console

    def list_containers(self, docker) -> List[ContainerInfo]:
        try:
            result = docker.run(["ps", "-a", "--format", "{{json .}}"])
        except CommandError as exc:
            raise reclassify(exc, DockerError, "Could not list containers on the Docker engine.") from exc

        containers = []
        for line in (result.stdout or "").splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                self.logger.debug("Skipping unparsable docker ps line: %s", line)
                continue
            containers.append(
                ContainerInfo(
                    name=data.get("Names", ""),
                    status=data.get("Status", ""),
                    state=data.get("State", ""),
                    ports=data.get("Ports", ""),
                    image=data.get("Image", ""),
                )
            )
        return containers

    def published_ports(self, ports: str) -> Set[str]:
        return set(self.PUBLISHED_PORT_PATTERN.findall(ports or ""))

    @staticmethod
    def owned_by(container_name: str, user: str, repositories: Optional[Iterable[str]] = None) -> bool:
        """True when ``container_name`` is ``<repo>_<user>``.

        Usernames may contain underscores, so without a repository list the repo
        part must not contain one.
        """
        suffix = f"_{user}"
        if not container_name.endswith(suffix):
            return False
        repo = container_name[: -len(suffix)]
        if repositories:
            return repo in set(repositories)
        return bool(repo) and "_" not in repo

    def reconcile(
        self, state: SessionState, docker, metadata_store, repositories: Optional[Iterable[str]] = None
    ) -> ContainerStatus:
        containers = self.list_containers(docker)
        status = ContainerStatus(containers=containers)

        for container in containers:
            if container.running:
                status.used_ports.update(self.published_ports(container.ports))

        name = state.container_name
        status.user_containers = [
            container
            for container in containers
            if container.name != name and self.owned_by(container.name, state.user, repositories)
        ]
        status.running = any(container.name == name and container.running for container in containers)

        if status.running:
            volume_names = VolumeService.volume_names(state.user).values()
            status.recovered = self.recover(name, docker, metadata_store, volume_names)
            if not status.recovered.password and not status.recovered.port:
                warning = f"Container {name} is running but its password and port could not be recovered."
                status.warnings.append(warning)
                self.logger.warning(warning)
        return status

    def recover(self, name: str, docker, metadata_store, volume_names: Iterable[str] = ()) -> RecoveredSecrets:
        recovered = RecoveredSecrets()
        record = metadata_store.read(name)
        if record is not None:
            recovered.password = record.password or None
            recovered.port = record.port or None
            recovered.use_volumes = record.use_volumes
            recovered.source = "metadata"
            if recovered.password and recovered.port:
                return recovered

        password, port = self.inspect_secrets(name, docker)
        if recovered.password is None:
            recovered.password = password
        if recovered.port is None:
            recovered.port = port
        if recovered.use_volumes is None:
            mounted = self.inspect_volume_mounts(name, docker)
            recovered.use_volumes = any(volume in mounted for volume in volume_names)
        if recovered.source is None and (password or port):
            recovered.source = "inspect"
        return recovered

    def inspect_volume_mounts(self, name: str, docker) -> Set[str]:
        result = docker.run(["inspect", "--format", "{{json .Mounts}}", name], check=False)
        if result.returncode != 0:
            return set()
        try:
            mounts = json.loads((result.stdout or "").strip() or "[]") or []
        except json.JSONDecodeError:
            self.logger.debug("Skipping unparsable mounts of %s", name)
            return set()
        return {
            mount.get("Name", "")
            for mount in mounts
            if isinstance(mount, dict) and mount.get("Type") == "volume"
        }

    def inspect_secrets(self, name: str, docker) -> Tuple[Optional[str], Optional[str]]:
        password = None
        port = None

        result = docker.run(["inspect", "--format", "{{json .Config.Env}}", name], check=False)
        if result.returncode == 0:
            try:
                env = json.loads((result.stdout or "").strip() or "[]") or []
            except json.JSONDecodeError:
                env = []
            for item in env:
                if item.startswith("PASSWORD="):
                    password = item.split("=", 1)[1] or None

        result = docker.run(["port", name, f"{SERVICE_PORT}/tcp"], check=False)
        if result.returncode == 0:
            for line in (result.stdout or "").splitlines():
                candidate = line.strip().rsplit(":", 1)[-1]
                if candidate.isdigit():
                    port = candidate
                    break
        return password, port
