from __future__ import annotations

from typing import Any, Mapping, Optional

import typer
import yaml
from rich.markup import escape
from rich.syntax import Syntax

from maketree.cli_commands import load_project
from maketree.logging import Logger
from maketree.parser import ALLOW_FAILURE_PREFIX, SILENT_PREFIX, Action, Task


class _LiteralDumper(yaml.SafeDumper):
    pass


def _literal_presenter(dumper: yaml.SafeDumper, data: str) -> yaml.ScalarNode:
    """Use literal block style (|) for strings containing newlines."""
    if "\n" in data:
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", data)


_LiteralDumper.add_representer(str, _literal_presenter)


def action_to_yaml(action: Action) -> Any:
    """Render an action back into the recipe syntax it was declared with."""
    if action.is_shell:
        prefix = (ALLOW_FAILURE_PREFIX if action.allow_failure else "") + (
            SILENT_PREFIX if action.silent else ""
        )
        run: Any = prefix + action.script
    else:
        run = list(action.argv)

    if action.guard is None and action.timeout is None and (action.is_shell or not (
        action.allow_failure or action.silent
    )):
        return run

    data: dict[str, Any] = {"run": run}
    if not action.is_shell:
        if action.allow_failure:
            data["allow_failure"] = True
        if action.silent:
            data["silent"] = True
    if action.guard is not None:
        when: dict[str, Any] = {"var": action.guard.variable}
        if action.guard.equals is not None:
            when["equals"] = action.guard.equals
        if action.guard.not_equals is not None:
            when["not_equals"] = action.guard.not_equals
        data["when"] = when
    if action.timeout is not None:
        data["timeout"] = action.timeout
    return data


def task_to_yaml(task: Task) -> dict[str, Any]:
    task_dict = {
        "desc": task.desc,
        "phony": task.phony,
        "file": task.file if task.file != task.name else "",
        "working_dir": task.working_dir if task.working_dir != "." else "",
        "deps": task.deps,
        "actions": [action_to_yaml(action) for action in task.actions],
    }
    # Remove empty fields for cleaner display
    return {task.name: {k: v for k, v in task_dict.items() if v}}


def show_task(
    logger: Logger,
    task_name: str,
    tasks_file: Optional[str] = None,
    overrides: Optional[Mapping[str, str]] = None,
):
    """
    Show task definition with syntax highlighting.
    """
    _, _, graph = load_project(logger, tasks_file, overrides)

    task = graph.get_task(task_name)
    if task is None:
        logger.error(f"[red]Task not found: {escape(task_name)}[/red]")
        raise typer.Exit(2)

    logger.info(f"[bold]Task: {escape(task_name)}[/bold]")
    if task.source_file:
        logger.info(f"Source: {escape(task.source_file)}\n")

    yaml_str = yaml.dump(
        task_to_yaml(task), Dumper=_LiteralDumper, default_flow_style=False, sort_keys=False
    )
    syntax = Syntax(yaml_str, "yaml", theme="ansi_light", line_numbers=False)
    logger.info(syntax)
