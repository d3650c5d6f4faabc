import json

import pytest

import workstation.core as core_module
from workstation.core import Workstation
from workstation.models import ChannelDescriptor, Remote, WorkstationSettings
from workstation.prompts import StaticPrompts
from workstation.services.connectivity import ConnectivityResult

RECORD_PATH = "/home/alice/.workstation/sessions/Foo_alice.json"
SNAPSHOT_PATH = "/home/alice/.workstation/sessions/Foo_alice.session.json"
DESIGN_PATH = "/srv/repos/Foo/inputs/sim_design.yaml"


class Engine:
    """Docker and git behaviour for one fake remote host shared across sessions."""

    def __init__(self, other_ports=""):
        self.running = False
        self.other_ports = other_ports
        self.volumes = []
        self.head = "abc123"
        self.git_status = ""

    def responder(self, cmd, kwargs):
        if cmd[0] == "docker":
            args = cmd[3:] if cmd[1] == "--context" else cmd[1:]
            if args[0] == "ps":
                lines = []
                if self.other_ports:
                    lines.append(
                        json.dumps({"Names": "Bar_bob", "State": "running", "Status": "Up", "Ports": self.other_ports})
                    )
                if self.running:
                    lines.append(
                        json.dumps(
                            {"Names": "Foo_alice", "State": "running", "Status": "Up", "Ports": "0.0.0.0:8788->8787/tcp"}
                        )
                    )
                return 0, "\n".join(lines), ""
            if args[0] == "run" and "-d" in args:
                self.running = True
                self.volumes = [
                    mount.split(":")[0] for mount in args if mount.startswith("workstation_")
                ]
                return 0, "c0ffee\n", ""
            if args[0] == "run" and "sh" in args:
                return 0, "3\n3\n", ""
            if args[0] == "inspect" and "{{json .Mounts}}" in args:
                return 0, json.dumps([{"Type": "volume", "Name": name} for name in self.volumes]), ""
            if args[0] == "stop":
                if not self.running:
                    return 1, "", "Error: No such container: Foo_alice"
                self.running = False
                return 0, "", ""
            return 0, "", ""
        if cmd[0] == "git":
            if cmd[1:] == ["rev-parse", "--abbrev-ref", "HEAD"]:
                return 0, "main\n", ""
            if cmd[1:] == ["rev-parse", "HEAD"]:
                return 0, self.head + "\n", ""
            if cmd[1:] == ["status", "--porcelain"]:
                return 0, self.git_status, ""
            return 0, "", ""
        return 0, "", ""


@pytest.fixture
def engine():
    return Engine()


@pytest.fixture
def remote_host(engine, make_runner, make_memory_host, monkeypatch):
    runner = make_runner(engine.responder)
    host = make_memory_host(
        Remote(host="10.0.0.5", user="alice"),
        runner,
        home="/home/alice",
        directories={"/srv/repos": ["Bar", "Foo"]},
    )
    host.files[DESIGN_PATH] = "output_dir: ~/out\nsynthpop_dir: data/synthpop  # relative\n"

    monkeypatch.setattr(core_module, "CommandRunner", lambda **_kwargs: runner)
    monkeypatch.setattr(core_module, "host_for", lambda *_args, **_kwargs: host)
    return host


def build_workstation(console, repo="Foo", prompts=None, local=False, **overrides):
    values = dict(user="Alice", repo=repo)
    if local:
        values.update(local_repo_base="/srv/repos")
        result = ConnectivityResult(
            channel=ChannelDescriptor.local("local"),
            private_key="/local/.ssh/id_ed25519_alice",
            public_key="/local/.ssh/id_ed25519_alice.pub",
            repositories=["Bar", "Foo"],
            known_hosts="/local/.ssh/known_hosts",
        )
    else:
        values.update(remote_host="10.0.0.5", remote_user="alice", remote_repo_base="/srv/repos")
        result = ConnectivityResult(
            channel=ChannelDescriptor.named_context("workstation-alice-10.0.0.5", "ssh://alice@10.0.0.5"),
            private_key="/local/.ssh/id_ed25519_alice",
            public_key="/local/.ssh/id_ed25519_alice.pub",
            repositories=["Bar", "Foo"],
            remote_home="/home/alice",
            known_hosts="/home/alice/.ssh/known_hosts",
        )
    values.update(overrides)
    workstation = Workstation(
        settings=WorkstationSettings(**values),
        prompts=prompts or StaticPrompts(repository=repo),
        console=console,
    )
    workstation.connectivity_resolver.resolve = lambda state, deadline: result
    return workstation


def test_start_then_stop_round_trip(remote_host, engine, console):
    assert build_workstation(console).start() == 0

    record = json.loads(remote_host.files[RECORD_PATH])
    assert record["container"] == "Foo_alice"
    assert record["user"] == "alice"
    assert record["port"] == "8788"
    assert any("http://10.0.0.5:8788" in line for line in console.lines)

    assert build_workstation(console).stop() == 0

    assert RECORD_PATH not in remote_host.files
    assert engine.running is False


def test_data_dirs_resolve_against_home_and_repository(remote_host, console):
    workstation = build_workstation(console)
    workstation.connect()
    workstation.select_repository()
    workstation.resolve_data_dirs()

    assert workstation.state.paths.repo_path == "/srv/repos/Foo"
    assert workstation.state.paths.output_dir == "/home/alice/out"
    assert workstation.state.paths.synthpop_dir == "/srv/repos/Foo/data/synthpop"


def test_start_reattaches_to_running_container(remote_host, engine, console):
    assert build_workstation(console, password="first-pw").start() == 0
    console.lines.clear()

    assert build_workstation(console).start() == 0

    runs = [cmd for cmd in remote_host.runner.commands() if cmd[0] == "docker" and "-d" in cmd]
    assert len(runs) == 1
    assert any("reattaching" in line for line in console.lines)
    assert any("first-pw" in line for line in console.lines)


def test_start_reports_port_conflict_with_phase(remote_host, engine, console):
    engine.other_ports = "0.0.0.0:8788->8787/tcp"

    assert build_workstation(console).start() == 1

    assert any("[start_container]" in line and "Port 8788" in line for line in console.lines)
    assert RECORD_PATH not in remote_host.files


def test_unknown_repository_is_rejected(remote_host, console):
    assert build_workstation(console, repo="Missing").start() == 1

    assert any("[select_repository]" in line for line in console.lines)


def test_volumes_require_data_directories(remote_host, console):
    remote_host.files[DESIGN_PATH] = "output_dir: /data/out\n"

    assert build_workstation(console, use_volumes=True).start() == 1

    assert any("[resolve_data_dirs]" in line for line in console.lines)


def test_stop_without_running_container_still_succeeds(remote_host, console):
    assert build_workstation(console).stop() == 0

    assert any("is not running" in line for line in console.lines)


def test_repositories_workflow_lists_names(remote_host, console):
    assert build_workstation(console, repo=None).list_repositories() == 0

    assert "Bar" in console.lines
    assert "Foo" in console.lines


def test_status_workflow_prints_session(remote_host, engine, console):
    build_workstation(console, password="pw-1").start()
    console.lines.clear()

    assert build_workstation(console).status() == 0

    assert any("Ports in use: 8788" in line for line in console.lines)
    assert any("pw-1" in line for line in console.lines)


def test_username_is_normalized(remote_host, console):
    workstation = build_workstation(console, user="  Alice ")

    assert workstation.state.user == "alice"
    assert workstation.state.container_name == "Foo_alice"


class RecordingPrompts(StaticPrompts):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.summaries = []

    def decide_commit(self, summary):
        self.summaries.append(summary)
        return None


def volume_copies(runner):
    return [cmd for cmd in runner.commands() if "rsync" in cmd and "/target/" in cmd]


def volume_removals(runner):
    return [cmd[-1] for cmd in runner.commands() if cmd[-3:-1] == ["volume", "rm"]]


def test_local_start_then_stop_round_trip(remote_host, engine, console):
    assert build_workstation(console, local=True).start() == 0

    run = [cmd for cmd in remote_host.runner.commands() if cmd[0] == "docker" and "-d" in cmd][0]
    assert run[1:3] == ["--context", "local"]
    assert "8787:8787" in run
    assert "/local/.ssh/id_ed25519_alice:/home/rstudio/.ssh/id_ed25519_alice:ro" in run
    assert "/local/.ssh/known_hosts:/etc/ssh/ssh_known_hosts:ro" in run
    assert any("http://localhost:8787" in line for line in console.lines)
    assert json.loads(remote_host.files[RECORD_PATH])["port"] == "8787"

    assert build_workstation(console, local=True).stop() == 0

    assert engine.running is False
    assert RECORD_PATH not in remote_host.files
    assert SNAPSHOT_PATH not in remote_host.files


def test_volume_session_copies_data_back_to_start_time_directories(remote_host, engine, console):
    assert build_workstation(console, use_volumes=True).start() == 0
    assert json.loads(remote_host.files[RECORD_PATH])["useVolumes"] is True
    remote_host.files[DESIGN_PATH] = "output_dir: /moved/out\nsynthpop_dir: /moved/synthpop\n"

    assert build_workstation(console).stop() == 0

    copies = volume_copies(remote_host.runner)
    assert "/home/alice/out:/target" in copies[0]
    assert "/srv/repos/Foo/data/synthpop:/target" in copies[1]
    assert volume_removals(remote_host.runner) == ["workstation_output_alice", "workstation_synthpop_alice"]
    assert RECORD_PATH not in remote_host.files
    assert SNAPSHOT_PATH not in remote_host.files


def test_volumes_are_copied_back_when_session_files_are_lost(remote_host, engine, console):
    assert build_workstation(console, use_volumes=True).start() == 0
    del remote_host.files[RECORD_PATH]
    del remote_host.files[SNAPSHOT_PATH]

    assert build_workstation(console).stop() == 0

    copies = volume_copies(remote_host.runner)
    assert len(copies) == 2
    assert "/home/alice/out:/target" in copies[0]
    assert volume_removals(remote_host.runner) == ["workstation_output_alice", "workstation_synthpop_alice"]


def test_stop_in_a_new_process_reports_head_moved_since_start(remote_host, engine, console):
    engine.git_status = " M run.R\n"
    assert build_workstation(console).start() == 0
    engine.head = "def456"
    prompts = RecordingPrompts(repository="Foo")

    assert build_workstation(console, prompts=prompts).stop() == 0

    summary = prompts.summaries[0]
    assert summary.baseline_commit == "abc123"
    assert summary.head_commit == "def456"
    assert summary.head_moved is True


def test_start_refuses_while_volumes_of_a_lost_container_wait_for_stop(remote_host, engine, console):
    assert build_workstation(console, use_volumes=True).start() == 0
    engine.running = False
    console.lines.clear()

    assert build_workstation(console, use_volumes=True).start() == 1

    assert any("[start_container]" in line and "without copying its volumes back" in line for line in console.lines)
    assert len([cmd for cmd in remote_host.runner.commands() if cmd[0] == "docker" and "-d" in cmd]) == 1

    assert build_workstation(console).stop() == 0

    assert len(volume_copies(remote_host.runner)) == 2
    assert SNAPSHOT_PATH not in remote_host.files
