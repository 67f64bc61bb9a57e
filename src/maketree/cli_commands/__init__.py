"""CLI command implementations and shared utilities."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Mapping, Optional

import typer
from rich.markup import escape

from maketree.graph import CycleDetectedError, TargetGraph, build_graph
from maketree.logging import Logger
from maketree.parser import Recipe, RecipeError, find_recipe_file, parse_recipe
from maketree.providers import build_variable_environment
from maketree.variables import RecursiveVariableError, VariableEnvironment


def _supports_unicode() -> bool:
    """
    Check if the terminal supports Unicode characters.

    Returns:
        True if terminal supports UTF-8, False otherwise
    """
    # Classic Windows console (conhost)
    if os.name == "nt" and "WT_SESSION" not in os.environ:
        return False

    encoding = sys.stdout.encoding
    if not encoding:
        return False

    try:
        "✓✗".encode(encoding)
        return True
    except UnicodeEncodeError:
        return False


def get_action_success_string() -> str:
    """Unicode tick if the terminal supports it, otherwise "[ OK ]"."""
    return "✓" if _supports_unicode() else "[ OK ]"


def get_action_failure_string() -> str:
    """Unicode cross if the terminal supports it, otherwise "[ FAIL ]"."""
    return "✗" if _supports_unicode() else "[ FAIL ]"


def load_project(
    logger: Logger,
    tasks_file: Optional[str] = None,
    overrides: Optional[Mapping[str, str]] = None,
    start_dir: Optional[Path] = None,
) -> tuple[Recipe, VariableEnvironment, TargetGraph]:
    """
    Find and parse the recipe, then build its variables and target graph.

    Raises:
        typer.Exit: If no recipe is found or it cannot be loaded
    """
    if tasks_file:
        recipe_path = Path(tasks_file)
        if not recipe_path.exists():
            logger.error(f"[red]Recipe file not found: {escape(tasks_file)}[/red]")
            raise typer.Exit(2)
    else:
        recipe_path = find_recipe_file(start_dir)
        if recipe_path is None:
            logger.error("[red]No recipe file found (maketree.yaml, maketree.yml or mt.yaml)[/red]")
            logger.info("Run [cyan]mt --init[/cyan] to create a blank recipe file")
            raise typer.Exit(2)

    try:
        recipe = parse_recipe(recipe_path)
        variables = build_variable_environment(recipe, overrides, logger=logger)
        graph = build_graph(recipe, variables)
    except (RecipeError, RecursiveVariableError, CycleDetectedError) as e:
        logger.error(f"[red]Error parsing recipe: {escape(str(e))}[/red]")
        raise typer.Exit(2)

    return recipe, variables, graph
