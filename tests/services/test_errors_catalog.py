import pytest

from workstation.errors import CommandError, DockerError, WorkstationError, reclassify
from workstation.errors_catalog import actionable_error


def test_actionable_error_formats_message_with_suggested_action():
    message = actionable_error("port_in_use", port="8788")

    assert "Port 8788 is already published" in message
    assert "Suggested action:" in message


def test_actionable_error_rejects_unknown_code():
    with pytest.raises(KeyError, match="Unknown error catalog key"):
        actionable_error("not_a_code")


def test_describe_includes_phase_command_and_output():
    error = WorkstationError("Build failed.", phase="start_container", command="docker build", output="oops\n")

    assert error.describe() == "[start_container] Build failed.\nCommand: docker build\nOutput: oops"


def test_reclassify_keeps_command_context():
    original = CommandError("Command failed (1): docker run", command="docker run", returncode=1, output="denied")

    converted = reclassify(original, DockerError, "Container failed to start.")

    assert isinstance(converted, DockerError)
    assert converted.message == "Container failed to start."
    assert converted.command == "docker run"
    assert converted.output == "denied"
