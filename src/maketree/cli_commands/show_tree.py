from __future__ import annotations

from typing import Mapping, Optional

import typer
from rich.markup import escape
from rich.tree import Tree

from maketree.cli_commands import load_project
from maketree.executor import Executor, TaskStatus
from maketree.graph import UnknownTargetError, build_dependency_tree, resolve_execution_order
from maketree.logging import Logger


def show_tree(
    logger: Logger,
    task_name: str,
    tasks_file: Optional[str] = None,
    overrides: Optional[Mapping[str, str]] = None,
):
    """
    Show dependency tree with freshness indicators.
    """
    _, variables, graph = load_project(logger, tasks_file, overrides)

    try:
        dep_tree = build_dependency_tree(graph, task_name)
    except UnknownTargetError as e:
        logger.error(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(2)

    statuses: dict[str, TaskStatus] = {}
    try:
        plan = resolve_execution_order(graph, task_name)
        statuses = Executor(graph, variables, logger).dry_run(plan)
    except UnknownTargetError as e:
        # A missing file prerequisite still leaves a tree worth drawing
        logger.warn(f"[yellow]{escape(str(e))}[/yellow]")

    logger.info(_build_rich_tree(dep_tree, statuses))


def _build_rich_tree(dep_tree: dict, statuses: dict[str, TaskStatus]) -> Tree:
    """
    Build a Rich Tree from a dependency tree and planned statuses.
    """
    task_name = dep_tree["name"]
    status = statuses.get(task_name)
    name = escape(task_name)

    if dep_tree.get("file"):
        label = f"[dim]{name} (file)[/dim]"
    elif status is None:
        label = name
    elif not status.will_run:
        label = f"[green]{name} (fresh)[/green]"
    elif status.reason == "dependency_triggered":
        label = f"[yellow]{name} (triggered by dependency)[/yellow]"
    else:
        label = f"[red]{name} (stale: {status.reason})[/red]"

    tree = Tree(label)
    for dep in dep_tree.get("deps", []):
        tree.add(_build_rich_tree(dep, statuses))

    return tree
