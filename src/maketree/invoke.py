"""Run a target and translate the outcome into a process exit code."""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, Optional

from rich.console import Console
from rich.markup import escape

from maketree.cli_commands import get_action_failure_string, get_action_success_string
from maketree.config import Config, ConfigError, load_config
from maketree.console_logger import ConsoleLogger
from maketree.executor import (
    ActionFailedError,
    ActionTimeoutError,
    ExecutionError,
    Executor,
    TaskStatus,
)
from maketree.graph import CycleDetectedError, UnknownTargetError, build_graph
from maketree.logging import Logger
from maketree.parser import RecipeError, find_recipe_file, parse_recipe
from maketree.process_runner import ProcessRunnerFactory, TaskOutputTypes, make_process_runner
from maketree.providers import build_variable_environment
from maketree.variables import RecursiveVariableError

__all__ = [
    "EXIT_SUCCESS",
    "EXIT_RECIPE_ERROR",
    "EXIT_TIMEOUT",
    "run",
]

EXIT_SUCCESS = 0
# Unknown targets, cycles and malformed recipes or configs, as with make
EXIT_RECIPE_ERROR = 2
# Same code as coreutils timeout(1)
EXIT_TIMEOUT = 124


def _log_plan(logger: Logger, target: str, statuses: dict[str, TaskStatus]) -> None:
    logger.info(f"[bold]Execution plan for '{escape(target)}':[/bold]\n")

    will_run = [name for name, status in statuses.items() if status.will_run]
    will_skip = [name for name, status in statuses.items() if not status.will_run]

    if will_run:
        logger.info(f"[yellow]Will execute ({len(will_run)} tasks):[/yellow]")
        for i, name in enumerate(will_run, 1):
            status = statuses[name]
            logger.info(f"  {i}. [cyan]{escape(name)}[/cyan]")
            logger.info(f"     - {status.reason}")
            if status.changed_files:
                logger.info(f"     - changed files: {escape(', '.join(status.changed_files))}")
        logger.info()

    if will_skip:
        logger.info(f"[green]Will skip ({len(will_skip)} tasks):[/green]")
        for name in will_skip:
            logger.info(f"  - {escape(name)} (fresh)")


def run(
    target: Optional[str],
    overrides: Optional[Mapping[str, str]] = None,
    working_dir: Optional[Path] = None,
    *,
    logger: Optional[Logger] = None,
    recipe_file: Optional[Path] = None,
    force: bool = False,
    only: bool = False,
    dry_run: bool = False,
    task_output: Optional[TaskOutputTypes] = None,
    timeout: Optional[float] = None,
    config: Optional[Config] = None,
    environ: Optional[Mapping[str, str]] = None,
    process_runner_factory: ProcessRunnerFactory = make_process_runner,
) -> int:
    """
    Run a target of the recipe found from working_dir.

    Args:
        target: Target to run; None runs the recipe's default target, or
            lists the targets when there is no default
        overrides: Invocation-time variable values
        working_dir: Directory to search for the recipe from (defaults to cwd)
        logger: Logger for all output (a console logger if None)
        recipe_file: Explicit recipe path, skipping the search
        force: Run every task in the plan regardless of freshness
        only: Run only the target, without its prerequisites
        dry_run: Report what would run without running it
        task_output: Which action output streams to show (overrides config)
        timeout: Per-action timeout in seconds (overrides config)
        config: Pre-loaded configuration (loaded from files if None)
        environ: Process environment (defaults to os.environ)
        process_runner_factory: Creates the runner used for actions

    Returns:
        0 on success, the failing action's exit code, EXIT_TIMEOUT when an
        action timed out, or EXIT_RECIPE_ERROR for unknown targets, cycles and
        invalid recipes or configuration.
    """
    working_dir = Path(working_dir) if working_dir is not None else Path.cwd()

    try:
        if config is None:
            config = load_config(working_dir)
    except ConfigError as e:
        if logger is None:
            logger = ConsoleLogger(Console())
        logger.fatal(f"[red]{escape(str(e))}[/red]")
        return EXIT_RECIPE_ERROR

    if logger is None:
        logger = ConsoleLogger(Console(), config.log_level)

    recipe_path = Path(recipe_file) if recipe_file is not None else find_recipe_file(working_dir)
    if recipe_path is None:
        logger.fatal("[red]No recipe file found (maketree.yaml, maketree.yml or mt.yaml)[/red]")
        return EXIT_RECIPE_ERROR

    graph = None
    try:
        recipe = parse_recipe(recipe_path)
        variables = build_variable_environment(recipe, overrides, environ=environ, logger=logger)
        graph = build_graph(recipe, variables)

        target = target or (variables.expand(recipe.default_target) if recipe.default_target else None)
        if not target:
            logger.info("[bold]Available tasks:[/bold]")
            for name in sorted(graph.task_names()):
                logger.info(f"  - {escape(name)}")
            logger.info("\nUse [cyan]mt <target>[/cyan] to run a target")
            return EXIT_SUCCESS

        executor = Executor(
            graph,
            variables,
            logger,
            process_runner_factory,
            shell=recipe.shell or config.shell,
            timeout=timeout if timeout is not None else config.timeout,
        )

        if dry_run:
            plan = executor.plan_for(target, only=only)
            _log_plan(logger, target, executor.dry_run(plan, force=force or only))
            return EXIT_SUCCESS

        executor.execute_task(
            target,
            force=force,
            only=only,
            task_output=task_output or config.task_output,
        )
    except FileNotFoundError as e:
        logger.fatal(f"[red]{escape(str(e))}[/red]")
        return EXIT_RECIPE_ERROR
    except UnknownTargetError as e:
        logger.fatal(f"[red]{escape(str(e))}[/red]")
        if e.required_by is None and graph is not None:
            logger.info("\nAvailable tasks:")
            for name in sorted(graph.task_names()):
                logger.info(f"  - {escape(name)}")
        return EXIT_RECIPE_ERROR
    except (CycleDetectedError, RecipeError, RecursiveVariableError) as e:
        logger.fatal(f"[red]{escape(str(e))}[/red]")
        return EXIT_RECIPE_ERROR
    except ActionTimeoutError as e:
        logger.error(f"[red]{get_action_failure_string()} {escape(str(e))}[/red]")
        return EXIT_TIMEOUT
    except ActionFailedError as e:
        logger.error(f"[red]{get_action_failure_string()} {escape(str(e))}[/red]")
        # Killed by a signal: report 128 + signal number like a shell
        return e.exit_code if e.exit_code > 0 else 128 - e.exit_code
    except ExecutionError as e:
        logger.error(f"[red]{get_action_failure_string()} {escape(str(e))}[/red]")
        return 1

    logger.info(
        f"[green]{get_action_success_string()} Task '{escape(target)}' completed successfully[/green]"
    )
    return EXIT_SUCCESS
