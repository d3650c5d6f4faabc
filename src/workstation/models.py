"""Shared domain models for Workstation."""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Union

from workstation.errors import ValidationError


@dataclass(frozen=True)
class Local:
    """The Docker engine runs on this machine."""

    def describe(self) -> str:
        return "local"


@dataclass(frozen=True)
class Remote:
    """The Docker engine runs on ``host``, reached over SSH as ``user``."""

    host: str
    user: str

    @property
    def target(self) -> str:
        return f"{self.user}@{self.host}"

    def describe(self) -> str:
        return f"remote {self.target}"


Location = Union[Local, Remote]


class ChannelMode(str, Enum):
    LOCAL_SOCKET = "local"
    NAMED_CONTEXT = "context"
    DIRECT_SSH = "direct"


@dataclass(frozen=True)
class ChannelDescriptor:
    """How every docker invocation of this session reaches the engine."""

    mode: ChannelMode
    context_name: Optional[str] = None
    docker_host: Optional[str] = None
    ssh_auth_sock: Optional[str] = None

    @classmethod
    def local(cls, context_name: Optional[str] = None) -> "ChannelDescriptor":
        return cls(mode=ChannelMode.LOCAL_SOCKET, context_name=context_name)

    @classmethod
    def named_context(
        cls, context_name: str, docker_host: str, ssh_auth_sock: Optional[str] = None
    ) -> "ChannelDescriptor":
        return cls(
            mode=ChannelMode.NAMED_CONTEXT,
            context_name=context_name,
            docker_host=docker_host,
            ssh_auth_sock=ssh_auth_sock,
        )

    @classmethod
    def direct(cls, docker_host: str, ssh_auth_sock: Optional[str] = None) -> "ChannelDescriptor":
        return cls(mode=ChannelMode.DIRECT_SSH, docker_host=docker_host, ssh_auth_sock=ssh_auth_sock)

    def docker_args(self) -> List[str]:
        if self.mode == ChannelMode.DIRECT_SSH:
            return []
        if self.context_name:
            return ["--context", self.context_name]
        return []

    def env_overrides(self) -> Dict[str, str]:
        env: Dict[str, str] = {}
        if self.mode == ChannelMode.DIRECT_SSH:
            env["DOCKER_HOST"] = self.docker_host or ""
        if self.ssh_auth_sock:
            env["SSH_AUTH_SOCK"] = self.ssh_auth_sock
        return env


@dataclass(frozen=True)
class ContainerInfo:
    name: str
    status: str
    state: str
    ports: str
    image: str

    @property
    def running(self) -> bool:
        return self.state.lower() == "running"


@dataclass
class GitBaseline:
    commit: Optional[str] = None
    dirty: bool = False
    captured_at: Optional[str] = None


@dataclass
class RecoveredSecrets:
    password: Optional[str] = None
    port: Optional[str] = None
    use_volumes: Optional[bool] = None
    source: Optional[str] = None


@dataclass
class MetadataRecord:
    """Recoverable facts of a running container, persisted on the engine host."""

    container: str
    repo: str
    user: str
    password: str
    port: str
    use_volumes: bool
    timestamp: str

    def to_json(self) -> str:
        payload = {
            "container": self.container,
            "repo": self.repo,
            "user": self.user,
            "password": self.password,
            "port": self.port,
            "useVolumes": self.use_volumes,
            "timestamp": self.timestamp,
        }
        return json.dumps(payload, indent=2, sort_keys=True) + "\n"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MetadataRecord":
        return cls(
            container=str(data.get("container", "")),
            repo=str(data.get("repo", "")),
            user=str(data.get("user", "")),
            password=str(data.get("password", "")),
            port=str(data.get("port", "")),
            use_volumes=bool(data.get("useVolumes", False)),
            timestamp=str(data.get("timestamp", "")),
        )


@dataclass
class SessionSnapshot:
    """Start-time facts a later stop needs, kept beside the metadata record."""

    container: str
    repo_path: Optional[str] = None
    output_dir: Optional[str] = None
    synthpop_dir: Optional[str] = None
    volume_names: Dict[str, str] = field(default_factory=dict)
    baseline: GitBaseline = field(default_factory=GitBaseline)

    def to_json(self) -> str:
        payload = {
            "container": self.container,
            "repoPath": self.repo_path,
            "outputDir": self.output_dir,
            "synthpopDir": self.synthpop_dir,
            "volumes": dict(self.volume_names),
            "baseline": {
                "commit": self.baseline.commit,
                "dirty": self.baseline.dirty,
                "capturedAt": self.baseline.captured_at,
            },
        }
        return json.dumps(payload, indent=2, sort_keys=True) + "\n"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionSnapshot":
        baseline = data.get("baseline") or {}
        volumes = data.get("volumes") or {}
        return cls(
            container=str(data.get("container", "")),
            repo_path=data.get("repoPath"),
            output_dir=data.get("outputDir"),
            synthpop_dir=data.get("synthpopDir"),
            volume_names={str(kind): str(name) for kind, name in volumes.items()},
            baseline=GitBaseline(
                commit=baseline.get("commit"),
                dirty=bool(baseline.get("dirty", False)),
                captured_at=baseline.get("capturedAt"),
            ),
        )


@dataclass
class SessionPaths:
    local_repo_base: Optional[str] = None
    remote_repo_base: Optional[str] = None
    repo_path: Optional[str] = None
    output_dir: Optional[str] = None
    synthpop_dir: Optional[str] = None
    private_key: Optional[str] = None
    public_key: Optional[str] = None
    known_hosts: Optional[str] = None
    remote_home: Optional[str] = None


@dataclass
class SessionFlags:
    debug: bool = False
    direct_ssh: bool = False
    use_volumes: bool = False
    rebuild: bool = False
    high_compute: bool = False
    relaunch_guard: bool = False


@dataclass
class SessionPorts:
    requested: Optional[str] = None
    assigned: Optional[str] = None
    used: Set[str] = field(default_factory=set)


@dataclass
class SessionMetadata:
    """Runtime facts recovered or snapshotted during the session.

    Every field carries a default so recovered sessions can be read without
    existence checks.
    """

    build_info: Optional[str] = None
    existing_containers: List[ContainerInfo] = field(default_factory=list)
    running: bool = False
    recovered: RecoveredSecrets = field(default_factory=RecoveredSecrets)
    active_port: Optional[str] = None
    active_use_volumes: bool = False
    active_repo_path: Optional[str] = None
    active_remote: bool = False
    active_output_dir: Optional[str] = None
    active_synthpop_dir: Optional[str] = None
    git_baseline: GitBaseline = field(default_factory=GitBaseline)
    volume_names: Dict[str, str] = field(default_factory=dict)


@dataclass
class SessionState:
    user: str
    location: Location
    password: Optional[str] = None
    repo: Optional[str] = None
    paths: SessionPaths = field(default_factory=SessionPaths)
    flags: SessionFlags = field(default_factory=SessionFlags)
    ports: SessionPorts = field(default_factory=SessionPorts)
    metadata: SessionMetadata = field(default_factory=SessionMetadata)
    channel: Optional[ChannelDescriptor] = None

    @property
    def container_name(self) -> str:
        if not self.repo:
            raise ValidationError("Repository is not selected yet.")
        return container_name(self.repo, self.user)

    @property
    def is_remote(self) -> bool:
        return isinstance(self.location, Remote)


def container_name(repo: str, user: str) -> str:
    return f"{repo}_{user}"


@dataclass
class ChangesSummary:
    repo_path: str
    branch: str
    origin_url: Optional[str]
    changes: List[str]
    baseline_commit: Optional[str] = None
    head_commit: Optional[str] = None

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)

    @property
    def head_moved(self) -> bool:
        return bool(self.baseline_commit and self.head_commit and self.baseline_commit != self.head_commit)


@dataclass(frozen=True)
class CommitDecision:
    message: str
    push: bool


@dataclass
class WorkstationSettings:
    """Resolved CLI/config values threaded into the coordinator."""

    user: str
    remote_host: Optional[str] = None
    remote_user: Optional[str] = None
    repo: Optional[str] = None
    local_repo_base: Optional[str] = None
    remote_repo_base: Optional[str] = None
    port: Optional[str] = None
    password: Optional[str] = None
    use_volumes: bool = False
    rebuild: bool = False
    high_compute: bool = False
    debug: bool = False
    sim_design_file: Optional[str] = None
    docker_setup_dir: Optional[str] = None
    operation_timeout: Optional[float] = None
    bootstrap_attempts: Optional[int] = None
    command_timeout: Optional[float] = None
