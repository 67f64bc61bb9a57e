"""
Configuration file parsing.

Settings are layered, highest precedence first: command-line options, the
project config (.maketree-config.yml, found by walking up from the working
directory), the user config, the machine config and the built-in defaults.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Optional

import platformdirs
import yaml

from maketree.logging import LogLevel
from maketree.parser import Shell
from maketree.process_runner import TaskOutputTypes

__all__ = [
    "PROJECT_CONFIG_FILENAME",
    "Config",
    "ConfigError",
    "find_project_config",
    "get_machine_config_path",
    "get_user_config_path",
    "load_config",
    "parse_config_file",
]

PROJECT_CONFIG_FILENAME = ".maketree-config.yml"


class ConfigError(Exception):
    """Raised when a configuration file is invalid."""

    pass


@dataclass(frozen=True)
class Config:
    """Effective settings for one invocation."""

    log_level: LogLevel = LogLevel.INFO
    task_output: TaskOutputTypes = TaskOutputTypes.ALL
    timeout: Optional[float] = None
    shell: Optional[Shell] = None


def get_machine_config_path() -> Path:
    """
    Get the path to the machine-level (system-wide) configuration file.

    Returns:
        Path to the machine config file (may not exist)
    """
    config_dir = Path(platformdirs.site_config_dir("maketree"))
    return config_dir / "config.yml"


def get_user_config_path() -> Path:
    """
    Get the path to the user-level configuration file.

    Returns:
        Path to the user config file (may not exist)
    """
    config_dir: Path = Path(platformdirs.user_config_dir("maketree"))
    return config_dir / "config.yml"


def find_project_config(start_dir: Path) -> Optional[Path]:
    """
    Walk up the directory tree from start_dir to find .maketree-config.yml.

    Returns:
        Path to the config file if found, None otherwise
    """
    try:
        current = start_dir.resolve()
    except (OSError, RuntimeError):
        # Invalid path or symlink loop
        return None

    max_depth = 100
    for _ in range(max_depth):
        config_path = current / PROJECT_CONFIG_FILENAME
        try:
            if config_path.exists():
                return config_path
        except OSError:
            pass

        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def _parse_shell(path: Path, value: Any) -> Shell:
    if isinstance(value, str) and value:
        return Shell(value, ("-c",))
    if not isinstance(value, dict) or not isinstance(value.get("shell"), str):
        raise ConfigError(
            f"Error in config file '{path}': 'shell' must be a string or a mapping with 'shell'"
        )
    args = value.get("args", [])
    if not isinstance(args, list):
        raise ConfigError(f"Error in config file '{path}': Field 'shell.args' must be a list")
    return Shell(value["shell"], tuple(str(arg) for arg in args))


def parse_config_file(path: Path) -> dict[str, Any]:
    """
    Parse a maketree configuration file.

    Example:
        ```yaml
        log_level: debug
        task_output: out
        timeout: 600
        shell:
          shell: zsh
          args: [-c]
        ```

    Returns:
        The settings present in the file, keyed by Config field name. A
        missing or empty file yields an empty dict.

    Raises:
        ConfigError: If the file is unreadable, malformed or holds invalid values
    """
    if not path.exists():
        return {}

    try:
        with open(path, "r") as f:
            content = f.read()
    except OSError as e:
        raise ConfigError(f"Error reading config file '{path}': {e}") from e

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML in config file '{path}': {e}") from e

    if data is None:
        return {}

    if not isinstance(data, dict):
        raise ConfigError(f"Error in config file '{path}': top level must be a mapping")

    known = {f.name for f in fields(Config)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(
            f"Error in config file '{path}': unknown keys: {', '.join(sorted(unknown))}"
        )

    settings: dict[str, Any] = {}

    if "log_level" in data:
        try:
            settings["log_level"] = LogLevel.from_name(str(data["log_level"]))
        except ValueError as e:
            raise ConfigError(f"Error in config file '{path}': {e}") from e

    if "task_output" in data:
        try:
            settings["task_output"] = TaskOutputTypes(str(data["task_output"]).lower())
        except ValueError as e:
            valid = ", ".join(t.value for t in TaskOutputTypes)
            raise ConfigError(
                f"Error in config file '{path}': Field 'task_output' must be one of: {valid}"
            ) from e

    if "timeout" in data:
        timeout = data["timeout"]
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ConfigError(
                f"Error in config file '{path}': Field 'timeout' must be a positive number"
            )
        settings["timeout"] = float(timeout)

    if "shell" in data:
        settings["shell"] = _parse_shell(path, data["shell"])

    return settings


def load_config(start_dir: Path, **cli_settings: Any) -> Config:
    """
    Merge all configuration layers into the effective Config.

    Args:
        start_dir: Directory from which to search for the project config
        **cli_settings: Command-line values; None means "not given"

    Raises:
        ConfigError: If any config file is invalid
    """
    config = Config()

    layers = [get_machine_config_path(), get_user_config_path()]
    project_config = find_project_config(start_dir)
    if project_config is not None:
        layers.append(project_config)

    for path in layers:
        config = replace(config, **parse_config_file(path))

    given = {key: value for key, value in cli_settings.items() if value is not None}
    return replace(config, **given)
