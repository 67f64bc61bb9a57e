from __future__ import annotations

from typing import Mapping, Optional

from rich.markup import escape
from rich.table import Table

from maketree.cli_commands import load_project
from maketree.logging import Logger


def list_tasks(
    logger: Logger,
    tasks_file: Optional[str] = None,
    overrides: Optional[Mapping[str, str]] = None,
):
    """
    List all available targets with descriptions.
    """
    recipe, _, graph = load_project(logger, tasks_file, overrides)

    max_task_name_len = max((len(name) for name in graph.task_names()), default=0)

    table = Table(title="Available Tasks", show_edge=False, box=None, padding=(0, 2))
    table.add_column("Target", style="bold cyan", no_wrap=True, min_width=max_task_name_len)
    table.add_column("Kind", style="dim", no_wrap=True)
    table.add_column("Description", style="white", max_width=80)

    for task_name in sorted(graph.task_names()):
        task = graph.lookup(task_name)
        kind = "phony" if task.phony else "file"
        label = escape(task_name)
        if task_name == recipe.default_target:
            label += " [dim](default)[/dim]"
        table.add_row(label, kind, escape(task.desc))

    logger.info(table)
