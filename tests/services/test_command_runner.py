import sys

import pytest

from workstation.errors import CommandError, FatalPrerequisiteError
from workstation.services.command_runner import CommandRunner


def test_command_runner_raises_with_stderr(logger):
    runner = CommandRunner(logger=logger)

    with pytest.raises(CommandError, match="Command failed") as excinfo:
        runner.run(
            [sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(1)"],
            check=True,
            capture_output=True,
        )

    assert excinfo.value.returncode == 1
    assert excinfo.value.output == "boom"


def test_command_runner_returns_when_check_disabled(logger):
    runner = CommandRunner(logger=logger)

    result = runner.run(
        [sys.executable, "-c", "import sys; sys.exit(1)"],
        check=False,
        capture_output=True,
    )

    assert result.returncode == 1


def test_command_runner_retries_before_success(tmp_path, monkeypatch, logger):
    runner = CommandRunner(logger=logger)
    monkeypatch.chdir(tmp_path)

    command = [
        sys.executable,
        "-c",
        (
            "from pathlib import Path;"
            "p=Path('retry-counter.txt');"
            "n=int(p.read_text()) if p.exists() else 0;"
            "p.write_text(str(n+1));"
            "import sys; sys.exit(1 if n == 0 else 0)"
        ),
    ]

    result = runner.run(
        command,
        check=True,
        capture_output=True,
        retry_count=1,
        retry_backoff_seconds=0.0,
    )

    assert result.returncode == 0


def test_command_runner_timeout_raises_error(logger):
    runner = CommandRunner(logger=logger)

    with pytest.raises(CommandError, match="timed out") as excinfo:
        runner.run(
            [sys.executable, "-c", "import time; time.sleep(2)"],
            check=True,
            capture_output=True,
            timeout=0.1,
        )

    assert excinfo.value.returncode == -1


def test_command_runner_reports_missing_tool(logger):
    runner = CommandRunner(logger=logger)

    with pytest.raises(FatalPrerequisiteError, match="Required command not found"):
        runner.run(["workstation-definitely-missing-tool"], capture_output=True)


def test_command_runner_masks_registered_secrets(logger):
    runner = CommandRunner(logger=logger)
    runner.register_secret("s3cret")

    with pytest.raises(CommandError) as excinfo:
        runner.run(
            [sys.executable, "-c", "import sys; sys.stderr.write('bad s3cret'); sys.exit(2)", "s3cret"],
            capture_output=True,
        )

    assert "s3cret" not in excinfo.value.command
    assert "s3cret" not in excinfo.value.output
    assert "******" in excinfo.value.output


def test_command_runner_forgets_secrets(logger):
    runner = CommandRunner(logger=logger)
    runner.register_secret("hunter2")
    runner.forget_secret("hunter2")

    assert runner.mask("hunter2") == "hunter2"


def test_command_runner_merges_env_over_process_environment(logger, monkeypatch):
    monkeypatch.setenv("WORKSTATION_BASE", "base")
    runner = CommandRunner(logger=logger)

    result = runner.run(
        [
            sys.executable,
            "-c",
            "import os; print(os.environ['WORKSTATION_BASE'] + ':' + os.environ['WORKSTATION_EXTRA'])",
        ],
        capture_output=True,
        env={"WORKSTATION_EXTRA": "extra"},
    )

    assert result.stdout.strip() == "base:extra"


def test_command_runner_passes_input_text(logger):
    runner = CommandRunner(logger=logger)

    result = runner.run(
        [sys.executable, "-c", "import sys; print(sys.stdin.read().upper())"],
        capture_output=True,
        input_text="hello",
    )

    assert result.stdout.strip() == "HELLO"
