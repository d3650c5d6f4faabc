"""Configuration loading for Workstation."""

import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from workstation.errors import ValidationError


class ConfigLoader:
    """Loads YAML configuration files for CLI defaults."""

    SUPPORTED_KEYS = {
        "user",
        "remote_host",
        "remote_user",
        "local_repo_base",
        "remote_repo_base",
        "repo",
        "port",
        "use_volumes",
        "rebuild",
        "high_compute",
        "debug",
        "log_file",
        "sim_design_file",
        "docker_setup_dir",
        "operation_timeout",
        "bootstrap_attempts",
        "command_timeout",
    }

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise ValidationError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise ValidationError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise ValidationError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise ValidationError(f"Unknown configuration keys: {unknown_list}")

        return parsed


class ConfigLookup:
    """Resolves single-line ``key: value`` scalars from a project file on the engine host."""

    def __init__(self, host, logger):
        self.host = host
        self.logger = logger

    def get_config_value(self, path: str, key: str) -> Optional[str]:
        content = self.host.read_text(path)
        if content is None:
            self.logger.debug("Config file %s is not readable.", path)
            return None
        return parse_scalar(content, key)


def parse_scalar(content: str, key: str) -> Optional[str]:
    pattern = re.compile(rf"^{re.escape(key)}\s*:\s*(.*)$")
    for line in content.splitlines():
        match = pattern.match(line)
        if not match:
            continue
        value = _strip_comment(match.group(1)).strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]
        return value or None
    return None


def _strip_comment(value: str) -> str:
    quote = None
    for index, char in enumerate(value):
        if char in ("'", '"'):
            if quote is None:
                quote = char
            elif quote == char:
                quote = None
        elif char == "#" and quote is None and (index == 0 or value[index - 1].isspace()):
            return value[:index]
    return value
