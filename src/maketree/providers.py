"""Built-in value providers for recipe variables."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Mapping, Optional

from maketree.logging import Logger
from maketree.parser import Recipe, RecipeError, Shell, VariableSpec, platform_default_shell
from maketree.variables import Provider, VariableEnvironment

__all__ = [
    "GIT_FIELDS",
    "build_variable_environment",
    "env_provider",
    "file_provider",
    "git_provider",
    "make_provider",
    "shell_provider",
]


def _capture(cmd: list[str], cwd: Path | None) -> tuple[int, str]:
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            check=False,
        )
    except (FileNotFoundError, PermissionError):
        return 127, ""
    return result.returncode, result.stdout


def shell_provider(command: str, cwd: Path | None = None, shell: Shell | None = None) -> Provider:
    """
    Provider that runs a shell command and yields its output.

    Like make's $(shell ...), trailing newlines are stripped, remaining
    newlines become spaces and the output is used whatever the exit code.
    """
    shell = shell or platform_default_shell()

    def provide(env: VariableEnvironment) -> str:
        expanded = env.expand(command)
        _, output = _capture([shell.shell, *shell.args, expanded], cwd)
        return " ".join(output.rstrip("\r\n").splitlines())

    return provide


def file_provider(path: str, cwd: Path | None = None) -> Provider:
    """Provider yielding a file's stripped content, or "" if it is unreadable."""

    def provide(env: VariableEnvironment) -> str:
        file_path = Path(env.expand(path))
        if cwd is not None and not file_path.is_absolute():
            file_path = cwd / file_path
        try:
            return file_path.read_text().strip()
        except OSError:
            return ""

    return provide


def env_provider(name: str, default: str = "") -> Provider:
    """Provider copying another environment variable's value."""

    def provide(env: VariableEnvironment) -> str:
        return env.environ.get(name, default)

    return provide


GIT_FIELDS: dict[str, list[str]] = {
    "tag": ["git", "describe", "--tags", "--abbrev=0"],
    "describe": ["git", "describe", "--tags", "--always", "--dirty"],
    "commit": ["git", "rev-parse", "HEAD"],
    "commit_short": ["git", "rev-parse", "--short", "HEAD"],
    "branch": ["git", "rev-parse", "--abbrev-ref", "HEAD"],
    "user_name": ["git", "config", "user.name"],
    "user_email": ["git", "config", "user.email"],
}


def git_provider(field: str, cwd: Path | None = None, version_variable: str = "VERSION") -> Provider:
    """
    Provider asking git about the working copy.

    Supported fields are those in GIT_FIELDS plus ``is_dirty`` ("true" or
    "false") and ``is_released`` ("true" when a ``v<VERSION>`` tag exists,
    otherwise ""). Any git failure yields "".

    Raises:
        ValueError: If the field is not supported
    """
    if field not in GIT_FIELDS and field not in ("is_dirty", "is_released"):
        valid = ", ".join(sorted([*GIT_FIELDS, "is_dirty", "is_released"]))
        raise ValueError(f"Unknown git field '{field}'. Valid fields: {valid}")

    def provide(env: VariableEnvironment) -> str:
        if field == "is_dirty":
            code, output = _capture(["git", "status", "--porcelain"], cwd)
            if code != 0:
                return ""
            return "true" if output.strip() else "false"

        if field == "is_released":
            version = env.resolve(version_variable)
            if not version:
                return ""
            code, _ = _capture(["git", "show-ref", "--tags", "--quiet", f"refs/tags/v{version}"], cwd)
            return "true" if code == 0 else ""

        code, output = _capture(GIT_FIELDS[field], cwd)
        return output.strip() if code == 0 else ""

    return provide


def make_provider(spec: VariableSpec, project_root: Path, shell: Shell | None = None) -> Provider:
    """
    Build the provider for a non-static recipe variable.

    Raises:
        RecipeError: If the variable kind has no provider or names an unknown git field
    """
    match spec.kind:
        case "eval":
            return shell_provider(spec.value, cwd=project_root, shell=shell)
        case "read":
            return file_provider(spec.value, cwd=project_root)
        case "git":
            try:
                return git_provider(spec.value, cwd=project_root)
            except ValueError as e:
                raise RecipeError(f"Variable '{spec.name}': {e}") from e
        case "env":
            return env_provider(spec.value)
        case _:
            raise RecipeError(f"Variable '{spec.name}' of kind '{spec.kind}' has no provider")


def build_variable_environment(
    recipe: Recipe,
    overrides: Optional[Mapping[str, str]] = None,
    environ: Optional[Mapping[str, str]] = None,
    logger: Optional[Logger] = None,
) -> VariableEnvironment:
    """
    Create the variable environment for one invocation of a recipe.

    Static recipe values become defaults; eval/read/git/env entries become
    providers, and their `default:` is used when the provider yields nothing.
    """
    defaults: dict[str, str] = {}
    providers: dict[str, Provider] = {}
    for name, spec in recipe.variables.items():
        if spec.kind == "value":
            defaults[name] = spec.value
        else:
            providers[name] = make_provider(spec, recipe.project_root, recipe.shell)
            if spec.default:
                defaults[name] = spec.default

    return VariableEnvironment(
        overrides=overrides,
        providers=providers,
        defaults=defaults,
        environ=environ,
        logger=logger,
    )
