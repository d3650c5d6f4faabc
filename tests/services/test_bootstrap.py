import pytest

from workstation.constants import BOOTSTRAP_MARKER
from workstation.errors import ConnectivityError
from workstation.models import Remote
from workstation.services.bootstrap import (
    KeyBootstrapper,
    ManagedSessionBootstrap,
    build_install_script,
)

PUBLIC_KEY = "ssh-ed25519 AAAAC3Nza alice@workstation"


class FakeSSHException(Exception):
    pass


class FakeStream:
    def __init__(self, data, exit_status=0):
        self.data = data
        self.channel = self
        self.exit_status = exit_status

    def read(self):
        return self.data.encode("utf-8")

    def recv_exit_status(self):
        return self.exit_status


class FakeParamiko:
    """Stands in for the paramiko module: records connections and scripted command results."""

    SSHException = FakeSSHException

    def __init__(self, connect_error=None, stdout="", exit_status=0):
        self.connect_error = connect_error
        self.stdout = stdout
        self.exit_status = exit_status
        self.connections = []
        self.commands = []
        self.closed = 0

    class AutoAddPolicy:
        pass

    def SSHClient(self):
        fake = self

        class Client:
            def load_system_host_keys(self):
                return None

            def set_missing_host_key_policy(self, policy):
                self.policy = policy

            def connect(self, **kwargs):
                fake.connections.append(kwargs)
                if fake.connect_error is not None:
                    raise fake.connect_error

            def exec_command(self, command, timeout=None):
                fake.commands.append(command)
                return None, FakeStream(fake.stdout, fake.exit_status), FakeStream("")

            def close(self):
                fake.closed += 1

        return Client()


LOCATION = Remote(host="build01", user="bob")


def test_install_script_is_idempotent_and_reports_marker():
    script = build_install_script(PUBLIC_KEY + "\n")

    assert "grep -qxF 'ssh-ed25519 AAAAC3Nza alice@workstation'" in script
    assert "chmod 600 ~/.ssh/authorized_keys" in script
    assert script.endswith(f"echo {BOOTSTRAP_MARKER}")


def test_managed_session_installs_key_with_password_only(logger):
    fake = FakeParamiko(stdout=BOOTSTRAP_MARKER + "\n")

    ManagedSessionBootstrap(logger, paramiko_module=fake)(LOCATION, "pw", PUBLIC_KEY)

    connection = fake.connections[0]
    assert connection["hostname"] == "build01"
    assert connection["username"] == "bob"
    assert connection["password"] == "pw"
    assert connection["look_for_keys"] is False
    assert connection["allow_agent"] is False
    assert fake.closed == 1


def test_managed_session_requires_marker(logger):
    fake = FakeParamiko(stdout="", exit_status=1)

    with pytest.raises(ConnectivityError, match="did not complete"):
        ManagedSessionBootstrap(logger, paramiko_module=fake)(LOCATION, "pw", PUBLIC_KEY)


def test_bootstrapper_falls_back_to_terminal_client(make_runner, logger):
    fake = FakeParamiko(connect_error=FakeSSHException("Authentication failed"))
    runner = make_runner(lambda cmd, kwargs: (0, BOOTSTRAP_MARKER + "\n", ""))

    KeyBootstrapper(logger, runner, paramiko_module=fake).bootstrap(LOCATION, "pw", PUBLIC_KEY)

    cmd, kwargs = runner.calls[0]
    assert cmd[:3] == ["sshpass", "-e", "ssh"]
    assert "bob@build01" in cmd
    assert "pw" not in cmd
    assert kwargs["env"] == {"SSHPASS": "pw"}
    assert runner.secrets == []


def test_bootstrapper_raises_single_error_when_all_methods_fail(make_runner, logger):
    fake = FakeParamiko(connect_error=OSError("connection refused"))
    runner = make_runner(lambda cmd, kwargs: (5, "", "Permission denied"))

    with pytest.raises(ConnectivityError, match="key bootstrap strategies failed") as excinfo:
        KeyBootstrapper(logger, runner, paramiko_module=fake).bootstrap(LOCATION, "pw", PUBLIC_KEY)

    assert "managed-ssh-session" in str(excinfo.value)
    assert "terminal-ssh-client" in str(excinfo.value)
    assert runner.secrets == []
