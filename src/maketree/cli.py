"""Command-line interface for maketree."""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console

from maketree import __version__
from maketree.cli_commands.init_recipe import init_recipe
from maketree.cli_commands.list_tasks import list_tasks
from maketree.cli_commands.show_task import show_task
from maketree.cli_commands.show_tree import show_tree
from maketree.config import ConfigError, load_config
from maketree.console_logger import ConsoleLogger
from maketree.invoke import EXIT_RECIPE_ERROR, run
from maketree.logging import LogLevel
from maketree.process_runner import TaskOutputTypes

app = typer.Typer(
    help="maketree - a Makefile-style task runner",
    add_completion=False,
    no_args_is_help=False,
)


def split_invocation_args(args: list[str]) -> tuple[Optional[str], dict[str, str]]:
    """Split trailing arguments into the target and NAME=value overrides.

    Raises:
        typer.BadParameter: If more than one target is given
    """
    target = None
    overrides: dict[str, str] = {}
    for arg in args:
        if "=" in arg:
            name, value = arg.split("=", 1)
            if name.isidentifier():
                overrides[name] = value
                continue
        if target is not None:
            raise typer.BadParameter(f"Only one target may be given, got '{target}' and '{arg}'")
        target = arg
    return target, overrides


def _parse_log_level(value: Optional[str]) -> Optional[LogLevel]:
    if value is None:
        return None
    try:
        return LogLevel.from_name(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def _parse_task_output(value: Optional[str]) -> Optional[TaskOutputTypes]:
    if value is None:
        return None
    try:
        return TaskOutputTypes(value.lower())
    except ValueError:
        valid = ", ".join(t.value for t in TaskOutputTypes)
        raise typer.BadParameter(f"Invalid task output '{value}'. Valid values: {valid}")


@app.command(
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)
def main(
    args: Optional[List[str]] = typer.Argument(None, help="Target to run, then any NAME=value overrides"),
    version: bool = typer.Option(False, "--version", "-v", help="Show version and exit"),
    list_opt: bool = typer.Option(False, "--list", "-l", help="List all available targets"),
    show: Optional[str] = typer.Option(None, "--show", help="Show task definition"),
    tree: Optional[str] = typer.Option(None, "--tree", help="Show dependency tree"),
    init: bool = typer.Option(False, "--init", help="Create a blank maketree.yaml"),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Show what would run without running it"),
    force: bool = typer.Option(False, "--force", "-f", help="Run all tasks regardless of freshness"),
    only: bool = typer.Option(False, "--only", "-o", help="Run only the target, skip its prerequisites"),
    tasks_file: Optional[str] = typer.Option(None, "--tasks", "-T", help="Path to the recipe file"),
    directory: Optional[Path] = typer.Option(None, "--directory", "-C", help="Change to this directory first"),
    timeout: Optional[float] = typer.Option(None, "--timeout", min=0.001, help="Per-action timeout in seconds"),
    task_output: Optional[str] = typer.Option(
        None, "--task-output", "-O", help="Action output to show: all, out, err or none"
    ),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", "-L", help="Log verbosity: fatal, error, warn, info, debug or trace"
    ),
):
    """Run a target and its prerequisites."""
    console = Console()

    if version:
        console.print(f"maketree version {__version__}")
        raise typer.Exit()

    level = _parse_log_level(log_level)
    output = _parse_task_output(task_output)
    target, overrides = split_invocation_args(args or [])

    if directory is not None:
        if not directory.is_dir():
            console.print(f"[red]Directory not found: {directory}[/red]")
            raise typer.Exit(EXIT_RECIPE_ERROR)
        os.chdir(directory)
    working_dir = Path.cwd()

    try:
        config = load_config(working_dir, log_level=level, task_output=output, timeout=timeout)
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(EXIT_RECIPE_ERROR)

    logger = ConsoleLogger(console, config.log_level)

    if init:
        init_recipe(logger, working_dir)
        return

    if list_opt:
        list_tasks(logger, tasks_file, overrides)
        return

    if show:
        show_task(logger, show, tasks_file, overrides)
        return

    if tree:
        show_tree(logger, tree, tasks_file, overrides)
        return

    exit_code = run(
        target,
        overrides,
        working_dir,
        logger=logger,
        recipe_file=Path(tasks_file) if tasks_file else None,
        force=force,
        only=only,
        dry_run=dry_run,
        config=config,
    )
    if exit_code != 0:
        raise typer.Exit(exit_code)


if __name__ == "__main__":
    app()
