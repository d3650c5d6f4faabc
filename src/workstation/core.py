import logging
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from .constants import (
    BOOTSTRAP_ATTEMPTS,
    DOCKER_SETUP_DIR,
    OPERATION_TIMEOUT_SECONDS,
    SIM_DESIGN_FILE,
)
from .errors import ValidationError, WorkstationError
from .errors_catalog import actionable_error
from .models import (
    Local,
    Remote,
    SessionFlags,
    SessionPaths,
    SessionPorts,
    SessionSnapshot,
    SessionState,
    WorkstationSettings,
)
from .services.bootstrap import KeyBootstrapper
from .services.command_runner import CommandRunner
from .services.config_loader import ConfigLookup
from .services.connectivity import ConnectivityResolver
from .services.container_status import ContainerStatus, ContainerStatusService
from .services.docker_channel import DockerCli
from .services.docker_runtime import Deadline, DockerRuntimeService
from .services.filesystem import FileSystemService
from .services.git_changes import GitChangeDetector
from .services.hosts import host_for
from .services.image_builder import ImageBuilder
from .services.lifecycle import LifecycleController
from .services.metadata_store import MetadataStore
from .services.ssh_keys import SshAgent, SshKeyService, normalize_username
from .services.volumes import VolumeService

console = Console()
logger = logging.getLogger("workstation")


class Workstation:
    """Sequences connectivity, reconciliation, lifecycle and git phases for one session."""

    def __init__(self, settings: WorkstationSettings, prompts, console: Console = console):
        self.settings = settings
        self.prompts = prompts
        self.console = console

        user = normalize_username(settings.user)
        if settings.remote_host:
            location = Remote(host=settings.remote_host, user=settings.remote_user or user)
        else:
            location = Local()

        self.state = SessionState(
            user=user,
            location=location,
            password=settings.password,
            repo=settings.repo,
            paths=SessionPaths(
                local_repo_base=settings.local_repo_base,
                remote_repo_base=settings.remote_repo_base,
            ),
            flags=SessionFlags(
                debug=settings.debug,
                use_volumes=settings.use_volumes,
                rebuild=settings.rebuild,
                high_compute=settings.high_compute,
            ),
            ports=SessionPorts(requested=str(settings.port) if settings.port else None),
        )
        self.sim_design_file = settings.sim_design_file or SIM_DESIGN_FILE
        self.operation_timeout = settings.operation_timeout or OPERATION_TIMEOUT_SECONDS

        self.command_runner = CommandRunner(logger=logger, default_timeout=settings.command_timeout)
        self.command_runner.register_secret(settings.password)
        self.filesystem_service = FileSystemService(logger=logger, console=self.console)
        self.docker_runtime_service = DockerRuntimeService(
            logger=logger, console=self.console, runner=self.command_runner
        )
        self.key_service = SshKeyService(
            logger=logger,
            console=self.console,
            runner=self.command_runner,
            filesystem_service=self.filesystem_service,
        )
        self.agent = SshAgent(logger=logger, runner=self.command_runner)
        self.connectivity_resolver = ConnectivityResolver(
            logger=logger,
            console=self.console,
            runner=self.command_runner,
            docker_runtime_service=self.docker_runtime_service,
            key_service=self.key_service,
            bootstrapper=KeyBootstrapper(logger=logger, runner=self.command_runner),
            agent=self.agent,
            prompts=prompts,
            bootstrap_attempts=settings.bootstrap_attempts or BOOTSTRAP_ATTEMPTS,
        )
        self.container_status_service = ContainerStatusService(logger=logger, console=self.console)
        self.git_detector = GitChangeDetector(logger=logger, console=self.console, runner=self.command_runner)
        self.lifecycle = LifecycleController(
            logger=logger,
            console=self.console,
            image_builder=ImageBuilder(
                logger=logger,
                console=self.console,
                docker_setup_dir=settings.docker_setup_dir or DOCKER_SETUP_DIR,
            ),
            volume_service=VolumeService(logger=logger, console=self.console),
            git_detector=self.git_detector,
        )

        self.current_step_name: Optional[str] = None
        self.repositories: List[str] = []
        self.host = None
        self.docker: Optional[DockerCli] = None
        self.metadata_store: Optional[MetadataStore] = None

    def _run_step(self, name: str, callback, *args, **kwargs):
        self.current_step_name = name
        logger.debug("Phase started: %s", name)
        try:
            result = callback(*args, **kwargs)
        except WorkstationError as exc:
            if exc.phase is None:
                exc.phase = name
            raise
        logger.debug("Phase finished: %s", name)
        self.current_step_name = None
        return result

    def connect(self):
        result = self.connectivity_resolver.resolve(self.state, Deadline(self.operation_timeout))

        self.state.channel = result.channel
        self.state.flags.direct_ssh = result.direct_ssh
        self.state.paths.private_key = result.private_key
        self.state.paths.public_key = result.public_key
        self.state.paths.known_hosts = result.known_hosts
        self.state.paths.remote_home = result.remote_home
        self.repositories = result.repositories

        self.host = host_for(
            self.state.location,
            self.command_runner,
            logger,
            private_key=result.private_key,
            home=result.remote_home,
        )
        self.docker = DockerCli(self.command_runner, result.channel)
        self.metadata_store = MetadataStore(self.host, logger)

    def repo_base(self) -> Optional[str]:
        location = self.state.location
        if isinstance(location, Local):
            return self.state.paths.local_repo_base
        if isinstance(location, Remote):
            return self.state.paths.remote_repo_base
        raise TypeError(f"Unsupported location: {location!r}")

    def select_repository(self):
        base = self.repo_base()
        if not base:
            raise ValidationError("Repository base directory is not configured.")

        if not self.state.repo:
            self.state.repo = self.prompts.choose_repository(self.repositories)
        elif self.repositories and self.state.repo not in self.repositories:
            raise ValidationError(f"Repository '{self.state.repo}' was not found under {base}.")

        self.state.paths.repo_path = self.host.join(base, self.state.repo)
        logger.info("Using repository %s for container %s", self.state.paths.repo_path, self.state.container_name)

    def resolve_data_dirs(self):
        lookup = ConfigLookup(self.host, logger)
        repo_path = self.state.paths.repo_path
        config_path = self.host.join(repo_path, self.sim_design_file)

        for key in ("output_dir", "synthpop_dir"):
            value = lookup.get_config_value(config_path, key)
            if value and value.startswith("~"):
                value = self.host.home() + value[1:]
            elif value and not _is_absolute(value):
                value = self.host.join(repo_path, value)
            setattr(self.state.paths, key, value)
            if value is None:
                logger.warning("%s is not set in %s.", key, config_path)

        if self.state.flags.use_volumes and not (self.state.paths.output_dir and self.state.paths.synthpop_dir):
            raise ValidationError(
                f"Volumes need output_dir and synthpop_dir in {config_path}."
            )

    def reconcile(self) -> ContainerStatus:
        status = self.container_status_service.reconcile(
            self.state, self.docker, self.metadata_store, self.repositories
        )

        metadata = self.state.metadata
        metadata.existing_containers = status.containers
        metadata.running = status.running
        metadata.recovered = status.recovered
        self.state.ports.used = status.used_ports
        for warning in status.warnings:
            self.console.print(f"[yellow]Warning:[/yellow] {warning}")

        if status.running:
            self.lifecycle.adopt_running()
            self.state.flags.relaunch_guard = True
            recovered = status.recovered
            self.state.ports.assigned = recovered.port
            if recovered.password:
                self.state.password = recovered.password
                self.command_runner.register_secret(recovered.password)
            metadata.active_port = recovered.port
            metadata.active_use_volumes = bool(recovered.use_volumes)
            metadata.active_repo_path = self.state.paths.repo_path
            metadata.active_remote = self.state.is_remote
            metadata.active_output_dir = self.state.paths.output_dir
            metadata.active_synthpop_dir = self.state.paths.synthpop_dir
            if metadata.active_use_volumes:
                metadata.volume_names = self.lifecycle.volume_service.volume_names(self.state.user)

        snapshot = self.metadata_store.read_snapshot(self.state.container_name)
        if snapshot is not None:
            self.restore_snapshot(snapshot)
        return status

    def restore_snapshot(self, snapshot: SessionSnapshot):
        """Restores the start-time facts, since stop usually runs in a later process."""
        metadata = self.state.metadata
        metadata.active_repo_path = snapshot.repo_path or metadata.active_repo_path or self.state.paths.repo_path
        metadata.active_remote = self.state.is_remote
        metadata.active_output_dir = snapshot.output_dir
        metadata.active_synthpop_dir = snapshot.synthpop_dir
        metadata.git_baseline = snapshot.baseline
        if snapshot.volume_names:
            metadata.active_use_volumes = True
            metadata.volume_names = dict(snapshot.volume_names)

    def start_container(self):
        metadata = self.state.metadata
        if metadata.active_use_volumes and not metadata.running:
            raise ValidationError(actionable_error("unsynced_volumes", container=self.state.container_name))

        result = self.lifecycle.start(
            self.state, self.docker, self.host, self.metadata_store, self.state.ports.used
        )
        self.command_runner.register_secret(result.password)

        self.state.password = result.password
        self.state.ports.assigned = result.port
        metadata.running = True
        metadata.build_info = result.build_info
        metadata.active_port = result.port
        metadata.active_use_volumes = result.use_volumes
        metadata.active_repo_path = result.repo_path
        metadata.active_remote = result.remote
        metadata.active_output_dir = result.output_dir
        metadata.active_synthpop_dir = result.synthpop_dir
        metadata.volume_names = result.volume_names
        metadata.git_baseline = result.baseline
        self.state.flags.relaunch_guard = True
        return result

    def stop_container(self):
        report = self.lifecycle.stop(self.state, self.docker, self.metadata_store)
        self.state.flags.relaunch_guard = False
        return report

    def detect_changes(self):
        metadata = self.state.metadata
        repo_path = metadata.active_repo_path or self.state.paths.repo_path
        if metadata.active_remote != self.state.is_remote:
            logger.warning("Session location changed since start; using %s.", self.state.location.describe())
        private_key, known_hosts = self.lifecycle.engine_credentials(self.state, self.host)
        self.git_detector.handle_changes(
            self.host,
            repo_path,
            self.prompts,
            private_key,
            known_hosts,
            baseline=metadata.git_baseline,
        )

    def session_url(self) -> str:
        location = self.state.location
        port = self.state.ports.assigned or self.state.metadata.active_port
        if isinstance(location, Local):
            return f"http://localhost:{port}"
        if isinstance(location, Remote):
            return f"http://{location.host}:{port}"
        raise TypeError(f"Unsupported location: {location!r}")

    def print_session(self):
        self.console.print(f"[bold green]Session ready:[/bold green] {self.session_url()}")
        self.console.print(f"  Container: {self.state.container_name}")
        self.console.print(f"  Password:  {self.state.password or '<unknown>'}", markup=False)

    def print_status(self, status: ContainerStatus):
        table = Table(title=f"Containers on {self.state.location.describe()}")
        table.add_column("Name")
        table.add_column("State")
        table.add_column("Ports")
        table.add_column("Image")
        mine = self.state.container_name
        for container in status.containers:
            if container.name == mine or container in status.user_containers:
                table.add_row(container.name, container.status, container.ports, container.image)
        self.console.print(table)
        if status.used_ports:
            self.console.print(f"Ports in use: {', '.join(sorted(status.used_ports, key=int))}")
        if status.running:
            self.print_session()
        else:
            self.console.print(f"[dim]{mine} is not running.[/dim]")

    def _prepare(self):
        self._run_step("connect", self.connect)
        self._run_step("select_repository", self.select_repository)
        self._run_step("resolve_data_dirs", self.resolve_data_dirs)
        return self._run_step("reconcile", self.reconcile)

    def _start_workflow(self) -> int:
        status = self._prepare()
        if status.running:
            self.console.print(
                f"[yellow]Container {self.state.container_name} is already running; reattaching.[/yellow]"
            )
            self.print_session()
            return 0

        result = self._run_step("start_container", self.start_container)
        self.print_session()
        for warning in result.warnings:
            self.console.print(f"[yellow]Warning:[/yellow] {warning}")
        return 0

    def _stop_workflow(self) -> int:
        status = self._prepare()
        if not status.running:
            self.console.print(f"[dim]{self.state.container_name} is not running.[/dim]")

        report = self._run_step("stop_container", self.stop_container)
        try:
            self._run_step("detect_changes", self.detect_changes)
        except WorkstationError as exc:
            if report.ok:
                raise
            report.errors.append(exc)

        if not report.ok:
            for error in report.errors[1:]:
                self.console.print(f"[bold red]Error:[/bold red] {error.describe()}")
                logger.error(error.describe())
            first = report.errors[0]
            if first.phase is None:
                first.phase = "stop_container"
            raise first
        return 0

    def _status_workflow(self) -> int:
        status = self._prepare()
        self.print_status(status)
        return 0

    def _repositories_workflow(self) -> int:
        self._run_step("connect", self.connect)
        if not self.repositories:
            self.console.print("[yellow]No repositories found.[/yellow]")
        for name in self.repositories:
            self.console.print(name, markup=False)
        return 0

    def start(self) -> int:
        return self._execute("start", self._start_workflow)

    def stop(self) -> int:
        return self._execute("stop", self._stop_workflow)

    def status(self) -> int:
        return self._execute("status", self._status_workflow)

    def list_repositories(self) -> int:
        return self._execute("repos", self._repositories_workflow)

    def _execute(self, label: str, workflow) -> int:
        logger.info("Starting workstation %s for %s (%s)", label, self.state.user, self.state.location.describe())
        try:
            return workflow()
        except KeyboardInterrupt:
            self.console.print("[bold red]Operation cancelled by user.[/bold red]")
            logger.info("Operation cancelled by user")
            return 1
        except WorkstationError as exc:
            self.console.print(f"[bold red]Error:[/bold red] {exc.describe()}")
            logger.error(exc.describe())
            return 1
        except Exception as exc:
            self.console.print(f"[bold red]Unexpected error:[/bold red] {exc}")
            logger.exception("Unexpected error")
            return 1
        finally:
            self.close()

    def close(self):
        self.agent.stop()


def _is_absolute(path: str) -> bool:
    return path.startswith("/") or (len(path) > 1 and path[1] == ":")
