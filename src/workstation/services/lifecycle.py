"""Container lifecycle: build, start and stop of the session container."""

import os
import re
import secrets
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from workstation.constants import (
    CONTAINER_HOME,
    CONTAINER_KNOWN_HOSTS,
    DEFAULT_REMOTE_PORT,
    HIGH_COMPUTE_LIMITS,
    SERVICE_GID,
    SERVICE_PORT,
    SERVICE_UID,
)
from workstation.errors import CommandError, DockerError, ValidationError, WorkstationError, reclassify
from workstation.errors_catalog import actionable_error
from workstation.models import GitBaseline, Local, MetadataRecord, Remote, SessionSnapshot, SessionState
from workstation.services.git_changes import ssh_command


class LifecyclePhase(str, Enum):
    IDLE = "idle"
    BUILDING = "building"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


ALLOWED_TRANSITIONS = {
    LifecyclePhase.IDLE: {LifecyclePhase.BUILDING, LifecyclePhase.STARTING, LifecyclePhase.RUNNING},
    LifecyclePhase.BUILDING: {LifecyclePhase.STARTING, LifecyclePhase.IDLE},
    LifecyclePhase.STARTING: {LifecyclePhase.RUNNING, LifecyclePhase.IDLE},
    LifecyclePhase.RUNNING: {LifecyclePhase.STOPPING},
    LifecyclePhase.STOPPING: {LifecyclePhase.STOPPED},
    LifecyclePhase.STOPPED: {LifecyclePhase.BUILDING, LifecyclePhase.STARTING},
}

NAME_CONFLICT_PATTERN = re.compile(r"conflict|already in use", re.IGNORECASE)
MISSING_CONTAINER_PATTERN = re.compile(r"no such container|is not running", re.IGNORECASE)


@dataclass
class StartResult:
    port: str
    password: str
    build_info: Optional[str]
    volume_names: Dict[str, str]
    baseline: GitBaseline
    repo_path: str
    output_dir: Optional[str]
    synthpop_dir: Optional[str]
    use_volumes: bool
    remote: bool
    warnings: List[str] = field(default_factory=list)


@dataclass
class StopReport:
    stopped: bool = False
    errors: List[WorkstationError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def container_path(host_path: str) -> str:
    """Maps a host path to the same location inside the Linux container."""
    match = re.match(r"^([A-Za-z]):[\\/]*(.*)$", host_path)
    if match:
        rest = match.group(2).replace("\\", "/")
        return f"/{match.group(1).lower()}/{rest}".rstrip("/")
    return host_path


class LifecycleController:
    """Drives Idle -> Building -> Starting -> Running -> Stopping -> Stopped."""

    def __init__(self, logger, console, image_builder, volume_service, git_detector):
        self.logger = logger
        self.console = console
        self.image_builder = image_builder
        self.volume_service = volume_service
        self.git_detector = git_detector
        self.phase = LifecyclePhase.IDLE

    def _transition(self, target: LifecyclePhase):
        if target not in ALLOWED_TRANSITIONS[self.phase]:
            raise ValidationError(f"Cannot move container lifecycle from {self.phase.value} to {target.value}.")
        self.logger.debug("Lifecycle: %s -> %s", self.phase.value, target.value)
        self.phase = target

    def adopt_running(self):
        """Marks a container recovered from a previous process as running."""
        if self.phase != LifecyclePhase.RUNNING:
            self._transition(LifecyclePhase.RUNNING)

    def resolve_port(self, state: SessionState, used_ports) -> str:
        location = state.location
        if isinstance(location, Local):
            port = str(SERVICE_PORT)
        elif isinstance(location, Remote):
            port = str(state.ports.requested or DEFAULT_REMOTE_PORT).strip()
        else:
            raise TypeError(f"Unsupported location: {location!r}")

        if not port.isdigit() or not 1 <= int(port) <= 65535:
            raise ValidationError(f"Invalid port: {port}")
        if port in used_ports:
            raise ValidationError(actionable_error("port_in_use", port=port))
        return port

    def engine_credentials(self, state: SessionState, host):
        """Key and known_hosts paths as seen by the engine host."""
        location = state.location
        if isinstance(location, Local):
            return state.paths.private_key, state.paths.known_hosts
        if isinstance(location, Remote):
            home = state.paths.remote_home or host.home()
            key_name = os.path.basename(state.paths.private_key or "")
            return host.join(home, ".ssh", key_name), state.paths.known_hosts or host.join(home, ".ssh", "known_hosts")
        raise TypeError(f"Unsupported location: {location!r}")

    def build_run_args(
        self,
        state: SessionState,
        password: str,
        port: str,
        private_key: str,
        known_hosts: str,
        volume_names: Optional[Dict[str, str]] = None,
    ) -> List[str]:
        repo = state.repo
        repo_path = state.paths.repo_path
        workdir = f"{CONTAINER_HOME}/{repo}"
        key_name = os.path.basename(private_key)
        container_key = f"{CONTAINER_HOME}/.ssh/{key_name}"

        args = [
            "run",
            "-d",
            "--rm",
            "--name",
            state.container_name,
            "-e",
            f"PASSWORD={password}",
            "-e",
            f"USERID={SERVICE_UID}",
            "-e",
            f"GROUPID={SERVICE_GID}",
            "-e",
            f"GIT_SSH_COMMAND={ssh_command(CONTAINER_KNOWN_HOSTS, private_key=container_key)}",
            "-v",
            f"{repo_path}:{workdir}",
            "-v",
            f"{repo_path}:{container_path(repo_path)}",
            "-p",
            f"{port}:{SERVICE_PORT}",
        ]

        data_dirs = {"output": state.paths.output_dir, "synthpop": state.paths.synthpop_dir}
        for kind, host_dir in data_dirs.items():
            if not host_dir:
                continue
            if volume_names:
                args += ["-v", f"{volume_names[kind]}:{container_path(host_dir)}"]
            else:
                args += ["-v", f"{host_dir}:{container_path(host_dir)}"]

        if state.flags.high_compute:
            args += list(HIGH_COMPUTE_LIMITS)

        args += [
            "-v",
            f"{private_key}:{container_key}:ro",
            "-v",
            f"{known_hosts}:{CONTAINER_KNOWN_HOSTS}:ro",
            "-w",
            workdir,
            self.image_builder.image_name(repo),
        ]
        return args

    def start(self, state: SessionState, docker, host, metadata_store, used_ports) -> StartResult:
        if state.metadata.running:
            raise ValidationError(
                f"Container {state.container_name} is already running. Stop it before starting again."
            )
        if not state.paths.repo_path:
            raise ValidationError("Repository path is not resolved.")

        port = self.resolve_port(state, used_ports)

        self._transition(LifecyclePhase.BUILDING)
        try:
            build_info = self.image_builder.ensure_image(
                host, docker, state.repo, state.paths.repo_path, rebuild=state.flags.rebuild
            )
        except WorkstationError:
            self._transition(LifecyclePhase.IDLE)
            raise

        self._transition(LifecyclePhase.STARTING)
        try:
            volume_names: Dict[str, str] = {}
            if state.flags.use_volumes:
                volume_names = self.volume_service.prepare(
                    docker,
                    state.user,
                    {"output": state.paths.output_dir, "synthpop": state.paths.synthpop_dir},
                )

            password = state.password or secrets.token_urlsafe(12)
            private_key, known_hosts = self.engine_credentials(state, host)
            self.run_container(
                docker,
                state,
                self.build_run_args(state, password, port, private_key, known_hosts, volume_names),
            )
        except WorkstationError:
            self._transition(LifecyclePhase.IDLE)
            raise
        self._transition(LifecyclePhase.RUNNING)
        self.console.print(f"[green]Container {state.container_name} started on port {port}.[/green]")

        # The container is running from here on; record failures become warnings.
        warnings: List[str] = []
        try:
            metadata_store.write(
                MetadataRecord(
                    container=state.container_name,
                    repo=state.repo,
                    user=state.user,
                    password=password,
                    port=port,
                    use_volumes=bool(volume_names),
                    timestamp=metadata_store.timestamp(),
                )
            )
        except WorkstationError as exc:
            warnings.append(
                f"Session record was not saved ({exc}); a later stop or status may not recover "
                "the password and port."
            )
        baseline = self.git_detector.capture_baseline(host, state.paths.repo_path)
        try:
            metadata_store.write_snapshot(
                SessionSnapshot(
                    container=state.container_name,
                    repo_path=state.paths.repo_path,
                    output_dir=state.paths.output_dir,
                    synthpop_dir=state.paths.synthpop_dir,
                    volume_names=volume_names,
                    baseline=baseline,
                )
            )
        except WorkstationError as exc:
            warnings.append(f"Session snapshot was not saved ({exc}); stop will use the current configuration.")
        for warning in warnings:
            self.logger.warning(warning)

        return StartResult(
            port=port,
            password=password,
            build_info=build_info,
            volume_names=volume_names,
            baseline=baseline,
            repo_path=state.paths.repo_path,
            output_dir=state.paths.output_dir,
            synthpop_dir=state.paths.synthpop_dir,
            use_volumes=bool(volume_names),
            remote=state.is_remote,
            warnings=warnings,
        )

    def run_container(self, docker, state: SessionState, args: List[str]):
        docker.runner.register_secret(_password_arg(args))
        try:
            docker.run(args)
        except CommandError as exc:
            if NAME_CONFLICT_PATTERN.search(exc.output or ""):
                raise DockerError(
                    actionable_error("container_name_conflict", container=state.container_name),
                    command=exc.command,
                    output=exc.output,
                ) from exc
            raise reclassify(exc, DockerError, f"Container {state.container_name} failed to start.") from exc

    def stop(self, state: SessionState, docker, metadata_store) -> StopReport:
        """Stops the container, syncs and removes volumes and deletes the metadata record.

        Every step runs even when an earlier one failed; the failures are collected
        in the returned report.
        """
        report = StopReport()
        # Stop is accepted from any phase.
        self.phase = LifecyclePhase.STOPPING
        name = state.container_name
        snapshot = state.metadata

        try:
            report.stopped = self.stop_container(docker, name)
        except WorkstationError as exc:
            report.errors.append(exc)

        errors_before_volumes = len(report.errors)
        if snapshot.active_use_volumes:
            names = snapshot.volume_names or self.volume_service.volume_names(state.user)
            targets = {"output": snapshot.active_output_dir, "synthpop": snapshot.active_synthpop_dir}
            for kind, volume in names.items():
                target = targets.get(kind)
                try:
                    if target:
                        self.volume_service.sync_back(docker, volume, target)
                    else:
                        self.logger.warning("No host directory recorded for volume %s; not syncing.", volume)
                    self.volume_service.remove(docker, volume)
                except WorkstationError as exc:
                    report.errors.append(exc)
            if len(report.errors) == errors_before_volumes:
                snapshot.active_use_volumes = False
                snapshot.volume_names = {}

        state.metadata.running = False

        try:
            # Volumes that were not copied back keep their snapshot for the next stop.
            metadata_store.delete(name, keep_snapshot=snapshot.active_use_volumes)
        except WorkstationError as exc:
            report.errors.append(exc)

        self._transition(LifecyclePhase.STOPPED)
        return report

    def stop_container(self, docker, name: str) -> bool:
        result = docker.run(["stop", name], check=False)
        if result.returncode == 0:
            self.console.print(f"[green]Container {name} stopped.[/green]")
            return True
        output = (result.stderr or "").strip()
        if MISSING_CONTAINER_PATTERN.search(output):
            self.logger.info("Container %s is not running.", name)
            return False
        raise DockerError(f"Could not stop container {name}.", command=f"docker stop {name}", output=output)


def _password_arg(args: List[str]) -> Optional[str]:
    for arg in args:
        if arg.startswith("PASSWORD="):
            return arg.split("=", 1)[1]
    return None
