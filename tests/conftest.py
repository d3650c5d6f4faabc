import posixpath
import subprocess

import pytest

from workstation.errors import CommandError


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def info(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None

    def error(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def __init__(self):
        self.lines = []

    def print(self, *args, **_kwargs):
        self.lines.append(" ".join(str(arg) for arg in args))


class FakeRunner:
    """Records commands and answers them through ``responder(cmd, kwargs)``.

    The responder returns ``(returncode, stdout, stderr)``; unmatched commands succeed
    with empty output.
    """

    def __init__(self, responder=None):
        self.calls = []
        self.responder = responder or (lambda cmd, kwargs: (0, "", ""))
        self.secrets = []

    def register_secret(self, value):
        if value and value not in self.secrets:
            self.secrets.append(value)

    def forget_secret(self, value):
        if value in self.secrets:
            self.secrets.remove(value)

    def commands(self):
        return [cmd for cmd, _kwargs in self.calls]

    def run(self, cmd, check=True, capture_output=False, **kwargs):
        self.calls.append((list(cmd), kwargs))
        returncode, stdout, stderr = self.responder(list(cmd), kwargs)
        if returncode != 0 and check:
            raise CommandError(
                f"Command failed ({returncode}): {' '.join(cmd)}",
                command=" ".join(cmd),
                returncode=returncode,
                output=stderr or None,
            )
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def logger():
    return DummyLogger()


@pytest.fixture
def console():
    return DummyConsole()


@pytest.fixture
def make_runner():
    return FakeRunner


class MemoryHost:
    """Engine host double: commands go through a FakeRunner, files live in a dict."""

    def __init__(self, location, runner, home="/home/bob", directories=None):
        self.location = location
        self.runner = runner
        self._home = home
        self.files = {}
        self.modes = {}
        self.directories = directories or {}

    def home(self):
        return self._home

    def join(self, *parts):
        return posixpath.join(*parts)

    def run(self, argv, cwd=None, env=None, check=True, capture_output=True, input_text=None, timeout=None):
        return self.runner.run(argv, check=check, capture_output=capture_output, env=env, cwd=cwd)

    def run_script(self, script, check=True, capture_output=True, input_text=None, timeout=None):
        return self.runner.run(["sh", "-c", script], check=check, capture_output=capture_output)

    def read_text(self, path):
        return self.files.get(path)

    def write_text(self, path, content, mode):
        self.files[path] = content
        self.modes[path] = mode

    def remove(self, path):
        return self.files.pop(path, None) is not None

    def list_dirs(self, path):
        return sorted(self.directories.get(path, []))


@pytest.fixture
def make_memory_host():
    return MemoryHost
