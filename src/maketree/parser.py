"""Parse recipe YAML files."""

from __future__ import annotations

import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from maketree.variables import VariableEnvironment

RECIPE_FILENAMES = ["maketree.yaml", "maketree.yml", "mt.yaml"]

# Top-level keys that are never task names
RESERVED_KEYS = ("shell", "variables", "tasks", "default")

# Leading characters of an action string that act as flags
ALLOW_FAILURE_PREFIX = "-"
SILENT_PREFIX = "@"

VARIABLE_KINDS = ("eval", "read", "git", "env")


class RecipeError(ValueError):
    """Raised when a recipe file is malformed."""
    pass


@dataclass(frozen=True)
class Shell:
    """Shell used to run string actions: ``[shell, *args, command]``."""

    shell: str
    args: tuple[str, ...] = ()

    def command_line(self, command: str) -> list[str]:
        return [self.shell, *self.args, command]


def platform_default_shell() -> Shell:
    """Get default shell for current platform (bash on Unix, cmd on Windows)."""
    if platform.system() == "Windows":
        return Shell("cmd", ("/c",))
    return Shell("bash", ("-c",))


@dataclass(frozen=True)
class Guard:
    """Condition deciding whether an action runs.

    With neither ``equals`` nor ``not_equals`` the guard passes when the
    variable resolves to a non-empty string.
    """

    variable: str
    equals: str | None = None
    not_equals: str | None = None

    def evaluate(self, env: VariableEnvironment) -> bool:
        value = env.resolve(self.variable)
        if self.equals is not None:
            return value == env.expand(self.equals)
        if self.not_equals is not None:
            return value != env.expand(self.not_equals)
        return value != ""

    def describe(self) -> str:
        if self.equals is not None:
            return f"{self.variable} == {self.equals!r}"
        if self.not_equals is not None:
            return f"{self.variable} != {self.not_equals!r}"
        return f"{self.variable} is set"


@dataclass(frozen=True)
class Action:
    """A single command of a task.

    Exactly one of ``argv`` (run directly) or ``script`` (run through the
    shell) is set.
    """

    argv: tuple[str, ...] = ()
    script: str = ""
    allow_failure: bool = False
    silent: bool = False
    guard: Guard | None = None
    timeout: float | None = None

    def __post_init__(self):
        if bool(self.argv) == bool(self.script):
            raise RecipeError("An action needs either an argument list or a shell command")

    @property
    def is_shell(self) -> bool:
        return bool(self.script)

    def display(self) -> str:
        """Human-readable form of the command."""
        return self.script if self.is_shell else " ".join(self.argv)

    @classmethod
    def from_string(cls, text: str, **kwargs: Any) -> "Action":
        """Create a shell action, honouring leading ``-`` and ``@`` flags.

        Examples:
            >>> Action.from_string("-rm -rf dist").allow_failure
            True
            >>> Action.from_string("@echo hi").script
            'echo hi'
        """
        allow_failure = kwargs.pop("allow_failure", False)
        silent = kwargs.pop("silent", False)

        script = text.lstrip()
        while script[:1] in (ALLOW_FAILURE_PREFIX, SILENT_PREFIX) and script:
            if script[0] == ALLOW_FAILURE_PREFIX:
                allow_failure = True
            else:
                silent = True
            script = script[1:].lstrip()

        return cls(script=script, allow_failure=allow_failure, silent=silent, **kwargs)


@dataclass
class Task:
    """Represents a task definition."""

    name: str
    deps: list[str] = field(default_factory=list)
    actions: list[Action] = field(default_factory=list)
    phony: bool = False
    desc: str = ""
    file: str = ""  # Backing file, defaults to the task name
    working_dir: str = "."
    source_file: str = ""

    def __post_init__(self):
        if isinstance(self.deps, str):
            self.deps = [self.deps]
        else:
            self.deps = list(self.deps)
        self.actions = list(self.actions)
        if not self.file:
            self.file = self.name


@dataclass(frozen=True)
class VariableSpec:
    """A variable as declared in the recipe.

    ``kind`` is "value" for static defaults, otherwise the provider to use:
    "eval" (shell command), "read" (file), "git" (git query) or "env"
    (another environment variable).
    """

    name: str
    kind: str
    value: str
    default: str = ""


@dataclass
class Recipe:
    """Represents a parsed recipe file."""

    tasks: dict[str, Task]
    project_root: Path
    variables: dict[str, VariableSpec] = field(default_factory=dict)
    shell: Shell | None = None
    default_target: str = ""
    recipe_path: Path | None = None

    def get_task(self, name: str) -> Task | None:
        return self.tasks.get(name)

    def task_names(self) -> list[str]:
        return list(self.tasks.keys())


def find_recipe_file(start_dir: Path | None = None) -> Path | None:
    """Find a recipe file in the current or parent directories.

    Args:
        start_dir: Directory to start searching from (defaults to cwd)

    Returns:
        Path to recipe file if found, None otherwise
    """
    if start_dir is None:
        start_dir = Path.cwd()

    current = start_dir.resolve()

    while True:
        for filename in RECIPE_FILENAMES:
            recipe_path = current / filename
            if recipe_path.exists():
                return recipe_path

        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def _scalar_to_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def _parse_variable(name: str, data: Any) -> VariableSpec:
    if not isinstance(data, dict):
        if isinstance(data, list):
            raise RecipeError(f"Variable '{name}' must be a scalar or a mapping")
        return VariableSpec(name=name, kind="value", value=_scalar_to_str(data))

    kinds = [kind for kind in VARIABLE_KINDS if kind in data]
    if len(kinds) != 1:
        raise RecipeError(
            f"Variable '{name}' must specify exactly one of: {', '.join(VARIABLE_KINDS)}"
        )

    kind = kinds[0]
    unknown = set(data) - {kind, "default"}
    if unknown:
        raise RecipeError(f"Variable '{name}' has unknown keys: {', '.join(sorted(unknown))}")

    value = data[kind]
    if not isinstance(value, str) or not value:
        raise RecipeError(f"Variable '{name}': '{kind}' must be a non-empty string")

    return VariableSpec(
        name=name, kind=kind, value=value, default=_scalar_to_str(data.get("default", ""))
    )


def _parse_guard(task_name: str, data: Any) -> Guard:
    if isinstance(data, str) and data:
        return Guard(variable=data)

    if not isinstance(data, dict) or not isinstance(data.get("var"), str):
        raise RecipeError(
            f"Task '{task_name}': 'when' must be a variable name or a mapping with 'var'"
        )

    if "equals" in data and "not_equals" in data:
        raise RecipeError(f"Task '{task_name}': 'when' cannot use both 'equals' and 'not_equals'")

    equals = _scalar_to_str(data["equals"]) if "equals" in data else None
    not_equals = _scalar_to_str(data["not_equals"]) if "not_equals" in data else None
    return Guard(variable=data["var"], equals=equals, not_equals=not_equals)


def _parse_timeout(task_name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise RecipeError(f"Task '{task_name}': 'timeout' must be a positive number")
    return float(value)


def _parse_action(task_name: str, data: Any) -> Action:
    """Parse one entry of a task's action list.

    Accepted forms:
        - "cmd args"                     shell command, with -/@ prefixes
        - [cmd, arg, ...]                argument vector
        - {run: ..., allow_failure, silent, when, timeout}
    """
    if isinstance(data, str):
        if not data.strip():
            raise RecipeError(f"Task '{task_name}' has an empty action")
        return Action.from_string(data)

    if isinstance(data, list):
        if not data:
            raise RecipeError(f"Task '{task_name}' has an empty action")
        return Action(argv=tuple(_scalar_to_str(arg) for arg in data))

    if not isinstance(data, dict):
        raise RecipeError(f"Task '{task_name}': actions must be strings, lists or mappings")

    if "run" not in data:
        raise RecipeError(f"Task '{task_name}': action mapping missing required 'run' field")

    unknown = set(data) - {"run", "allow_failure", "silent", "when", "timeout"}
    if unknown:
        raise RecipeError(
            f"Task '{task_name}': action has unknown keys: {', '.join(sorted(unknown))}"
        )

    options: dict[str, Any] = {
        "allow_failure": bool(data.get("allow_failure", False)),
        "silent": bool(data.get("silent", False)),
    }
    if "when" in data:
        options["guard"] = _parse_guard(task_name, data["when"])
    if "timeout" in data:
        options["timeout"] = _parse_timeout(task_name, data["timeout"])

    run = data["run"]
    if isinstance(run, str) and run.strip():
        return Action.from_string(run, **options)
    if isinstance(run, list) and run:
        return Action(argv=tuple(_scalar_to_str(arg) for arg in run), **options)

    raise RecipeError(f"Task '{task_name}': 'run' must be a non-empty string or list")


def _parse_task(name: str, data: Any, file_path: Path) -> Task:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise RecipeError(f"Task '{name}' must be a dictionary")

    if "cmd" in data and "actions" in data:
        raise RecipeError(f"Task '{name}' cannot define both 'cmd' and 'actions'")

    if "cmd" in data:
        raw_actions = [data["cmd"]]
    else:
        raw_actions = data.get("actions") or []
        if not isinstance(raw_actions, list):
            raise RecipeError(f"Task '{name}': 'actions' must be a list")

    deps = data.get("deps", [])
    if isinstance(deps, str):
        deps = [deps]
    if not isinstance(deps, list) or not all(isinstance(dep, str) for dep in deps):
        raise RecipeError(f"Task '{name}': 'deps' must be a list of task names")

    phony = data.get("phony", False)
    if not isinstance(phony, bool):
        raise RecipeError(f"Task '{name}': 'phony' must be true or false")

    return Task(
        name=name,
        deps=deps,
        actions=[_parse_action(name, action) for action in raw_actions],
        phony=phony,
        desc=_scalar_to_str(data.get("desc", "")),
        file=_scalar_to_str(data.get("file", "")),
        working_dir=_scalar_to_str(data.get("working_dir", ".")) or ".",
        source_file=str(file_path),
    )


def _parse_shell(data: Any) -> Shell:
    if isinstance(data, str) and data:
        return Shell(data, ("-c",))
    if isinstance(data, dict) and isinstance(data.get("shell"), str) and data["shell"]:
        args = data.get("args", [])
        if isinstance(args, str):
            args = [args]
        if not isinstance(args, list):
            raise RecipeError("'shell.args' must be a list")
        return Shell(data["shell"], tuple(str(arg) for arg in args))
    raise RecipeError("'shell' must be a shell name or a mapping with 'shell' and 'args'")


def parse_recipe(recipe_path: Path) -> Recipe:
    """Parse a recipe file.

    Tasks can be declared either at the root of the file or under a
    ``tasks:`` key.

    Raises:
        FileNotFoundError: If recipe file doesn't exist
        RecipeError: If the YAML is invalid or the recipe structure is wrong
    """
    if not recipe_path.exists():
        raise FileNotFoundError(f"Recipe file not found: {recipe_path}")

    try:
        with open(recipe_path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise RecipeError(f"Invalid YAML in {recipe_path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise RecipeError(f"Recipe {recipe_path} must be a mapping")

    variables_data = data.get("variables") or {}
    if not isinstance(variables_data, dict):
        raise RecipeError("'variables' must be a mapping")
    variables = {
        str(name): _parse_variable(str(name), value) for name, value in variables_data.items()
    }

    shell = _parse_shell(data["shell"]) if data.get("shell") is not None else None

    if "tasks" in data:
        tasks_data = data["tasks"] or {}
        if not isinstance(tasks_data, dict):
            raise RecipeError("'tasks' must be a mapping")
    else:
        tasks_data = {k: v for k, v in data.items() if k not in RESERVED_KEYS}

    tasks: dict[str, Task] = {}
    for task_name, task_data in tasks_data.items():
        task_name = str(task_name)
        tasks[task_name] = _parse_task(task_name, task_data, recipe_path)

    default_target = _scalar_to_str(data.get("default", ""))
    if default_target and default_target not in tasks:
        raise RecipeError(f"Default target '{default_target}' is not defined")

    return Recipe(
        tasks=tasks,
        project_root=recipe_path.parent,
        variables=variables,
        shell=shell,
        default_target=default_target,
        recipe_path=recipe_path,
    )
