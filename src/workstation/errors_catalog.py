"""Actionable error catalog for Workstation."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "invalid_username": {
        "what": "Username '{user}' contains no usable characters.",
        "next": "Use letters, digits, `.`, `_` or `-` for `--user`.",
    },
    "port_in_use": {
        "what": "Port {port} is already published on the Docker engine.",
        "next": "Pick a free port with `--port` or stop the container using it.",
    },
    "container_name_conflict": {
        "what": "A container named {container} already exists on the engine.",
        "next": "Run `workstation status` to reattach, or `workstation stop` before starting again.",
    },
    "engine_unreachable": {
        "what": "Docker engine is not reachable{where}.",
        "next": "Start Docker (Docker Desktop or the docker service) and retry.",
    },
    "bootstrap_failed": {
        "what": "Could not install the SSH key for {target}.",
        "next": "Check the remote password, or append `{public_key}` to ~/.ssh/authorized_keys manually.",
    },
    "build_failed": {
        "what": "Image {image} could not be built.",
        "next": "Inspect the build output above and fix the Dockerfiles in `{setup_dir}`.",
    },
    "volume_empty": {
        "what": "Volume {volume} is empty after copying {source}.",
        "next": "Check free disk space on the engine host, remove the volume and start again.",
    },
    "unsynced_volumes": {
        "what": "A previous session of {container} ended without copying its volumes back.",
        "next": "Run `workstation stop` to copy the volume data back before starting again.",
    },
    "push_failed": {
        "what": "Push of branch {branch} to {remote} failed.",
        "next": "Register the public key with the git host, then push manually from {path}.",
    },
    "missing_tool": {
        "what": "Required command not found: {tool}.",
        "next": "Install it and make sure it is on PATH.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
