"""Task execution and staleness detection."""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from rich.markup import escape

from maketree.graph import ExecutionPlan, TargetGraph, resolve_execution_order
from maketree.logging import Logger
from maketree.parser import Action, Shell, Task, platform_default_shell
from maketree.process_runner import (
    ProcessRunner,
    ProcessRunnerFactory,
    TaskOutputTypes,
    make_process_runner,
)
from maketree.variables import VariableEnvironment

# Shell conventions for commands that could not be started
EXIT_NOT_EXECUTABLE = 126
EXIT_COMMAND_NOT_FOUND = 127


@dataclass(frozen=True)
class ActionResult:
    """Outcome of a single action."""

    action: Action
    command: str
    exit_code: int | None = None
    timed_out: bool = False
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.skipped or (self.exit_code == 0 and not self.timed_out)


@dataclass
class TaskStatus:
    """Status of a task for execution planning."""

    task_name: str
    will_run: bool
    reason: str  # "forced", "phony", "dependency_triggered", "missing",
    # "prerequisite_newer", "fresh"
    changed_files: list[str] = field(default_factory=list)
    action_results: list[ActionResult] = field(default_factory=list)


class ExecutionError(Exception):
    """Raised when task execution fails."""

    def __init__(self, task_name: str, message: str):
        self.task_name = task_name
        super().__init__(message)


class ActionFailedError(ExecutionError):
    """An action exited with a non-zero code and was not allowed to fail."""

    def __init__(self, task_name: str, command: str, exit_code: int):
        self.command = command
        self.exit_code = exit_code
        super().__init__(
            task_name,
            f"Task '{task_name}' failed with exit code {exit_code}: {command}",
        )


class ActionTimeoutError(ExecutionError):
    """An action ran longer than its timeout and was killed."""

    def __init__(self, task_name: str, command: str, timeout: float | None):
        self.command = command
        self.timeout = timeout
        after = f" after {timeout:g}s" if timeout is not None else ""
        super().__init__(task_name, f"Task '{task_name}' timed out{after}: {command}")


class Executor:
    """Executes tasks with make-style incremental execution logic."""

    def __init__(
        self,
        graph: TargetGraph,
        variables: VariableEnvironment,
        logger: Logger,
        process_runner_factory: ProcessRunnerFactory = make_process_runner,
        shell: Shell | None = None,
        timeout: float | None = None,
    ):
        """Initialize executor.

        Args:
            graph: Target graph containing all tasks
            variables: Variable environment for this invocation
            logger: Logger for progress and diagnostics
            process_runner_factory: Creates the runner used for actions
            shell: Shell for string actions (platform default if None)
            timeout: Default per-action timeout in seconds
        """
        self.graph = graph
        self.variables = variables
        self.logger = logger
        self._process_runner_factory = process_runner_factory
        self.shell = shell or platform_default_shell()
        self.timeout = timeout
        self._environ: dict[str, str] | None = None

    def _backing_path(self, task: Task) -> Path:
        return self.graph.path_for(task.file, task.working_dir)

    def _prerequisite_path(self, name: str) -> Path:
        task = self.graph.get_task(name)
        if task is None:
            return self.graph.path_for(name)
        return self._backing_path(task)

    def check_task_status(
        self,
        task: Task,
        dep_statuses: dict[str, TaskStatus],
        force: bool = False,
    ) -> TaskStatus:
        """Check if a task needs to run.

        A task is skipped only when it is not phony, no prerequisite task will
        run, its backing file exists and that file is newer than every
        prerequisite file.

        Args:
            task: Task to check
            dep_statuses: Status of dependencies already planned
            force: If True, ignore freshness and force execution
        """
        if force:
            return TaskStatus(task_name=task.name, will_run=True, reason="forced")

        if task.phony:
            return TaskStatus(task_name=task.name, will_run=True, reason="phony")

        if any(status.will_run for status in dep_statuses.values()):
            return TaskStatus(
                task_name=task.name,
                will_run=True,
                reason="dependency_triggered",
            )

        target_path = self._backing_path(task)
        if not target_path.exists():
            return TaskStatus(
                task_name=task.name,
                will_run=True,
                reason="missing",
                changed_files=[task.file],
            )

        target_mtime = target_path.stat().st_mtime
        changed_files = []
        for dep in task.deps:
            dep_path = self._prerequisite_path(dep)
            if not dep_path.exists() or dep_path.stat().st_mtime >= target_mtime:
                changed_files.append(dep)

        if changed_files:
            return TaskStatus(
                task_name=task.name,
                will_run=True,
                reason="prerequisite_newer",
                changed_files=changed_files,
            )

        return TaskStatus(task_name=task.name, will_run=False, reason="fresh")

    def plan_statuses(self, plan: ExecutionPlan, force: bool = False) -> dict[str, TaskStatus]:
        """Compute the status of every task in the plan, in plan order."""
        statuses: dict[str, TaskStatus] = {}
        for task in plan:
            dep_statuses = {dep: statuses[dep] for dep in task.deps if dep in statuses}
            status = self.check_task_status(task, dep_statuses, force=force)
            self.logger.debug(f"{escape(task.name)}: {status.reason}")
            statuses[task.name] = status
        return statuses

    def dry_run(self, plan: ExecutionPlan, force: bool = False) -> dict[str, TaskStatus]:
        """Statuses for the plan without running anything."""
        return self.plan_statuses(plan, force=force)

    def execute(
        self,
        plan: ExecutionPlan,
        force: bool = False,
        task_output: TaskOutputTypes | None = None,
    ) -> dict[str, TaskStatus]:
        """Execute every task of a plan that is not up to date.

        Returns:
            Dictionary of task names to their execution status

        Raises:
            ActionFailedError: If an action that may not fail exits non-zero
            ActionTimeoutError: If an action that may not fail times out
            ExecutionError: If a task's working directory does not exist
        """
        statuses = self.plan_statuses(plan, force=force)
        runner = self._process_runner_factory(task_output or TaskOutputTypes.ALL, self.logger)

        for task in plan:
            status = statuses[task.name]
            if not status.will_run:
                self.logger.info(f"[green]'{escape(task.name)}' is up to date[/green]")
                continue

            status.action_results = self._run_task(task, runner)

        return statuses

    def plan_for(self, task_name: str, only: bool = False) -> ExecutionPlan:
        """Plan for a target: the target alone when only is set, else with its prerequisites.

        Raises:
            UnknownTargetError: If the target or a needed prerequisite is undefined
            CycleDetectedError: If a dependency cycle is detected
        """
        if only:
            return ExecutionPlan(target=task_name, tasks=(self.graph.lookup(task_name),))
        return resolve_execution_order(self.graph, task_name)

    def execute_task(
        self,
        task_name: str,
        force: bool = False,
        only: bool = False,
        task_output: TaskOutputTypes | None = None,
    ) -> dict[str, TaskStatus]:
        """Execute a task and its dependencies.

        Args:
            task_name: Name of task to execute
            force: If True, ignore freshness and re-run all tasks
            only: If True, run only the specified task without dependencies (implies force=True)
            task_output: Which action output streams to show
        """
        plan = self.plan_for(task_name, only=only)
        self.logger.trace(f"Execution plan: {', '.join(plan.names())}")
        return self.execute(plan, force=force or only, task_output=task_output)

    def _subprocess_environ(self) -> dict[str, str]:
        if self._environ is None:
            self._environ = self.variables.as_environ()
        return self._environ

    def _automatic_variables(self, task: Task, working_dir: Path) -> dict[str, str]:
        """Values of $@, $< and $^, as paths relative to the action's working directory."""
        prerequisites = [
            os.path.relpath(self._prerequisite_path(dep), working_dir) for dep in task.deps
        ]
        return {
            "@": task.file,
            "<": prerequisites[0] if prerequisites else "",
            "^": " ".join(prerequisites),
        }

    def _run_task(self, task: Task, runner: ProcessRunner) -> list[ActionResult]:
        """Run a task's actions in order, stopping at the first hard failure.

        Raises:
            ActionFailedError: If an action exits non-zero without allow_failure
            ActionTimeoutError: If an action times out without allow_failure
            ExecutionError: If the working directory does not exist
        """
        working_dir = self.graph.project_root / task.working_dir
        if not working_dir.is_dir():
            raise ExecutionError(
                task.name, f"Task '{task.name}': working directory not found: {working_dir}"
            )

        self.logger.info(f"[bold]Running: {escape(task.name)}[/bold]")

        automatic = self._automatic_variables(task, working_dir)
        results: list[ActionResult] = []
        for action in task.actions:
            result = self._run_action(task, action, runner, working_dir, automatic)
            results.append(result)

            if result.ok:
                continue

            if action.allow_failure:
                outcome = "timed out" if result.timed_out else f"exited with code {result.exit_code}"
                self.logger.warn(
                    f"[yellow]'{escape(task.name)}': {escape(result.command)} {outcome} (ignored)[/yellow]"
                )
                continue

            if result.timed_out:
                raise ActionTimeoutError(task.name, result.command, self._action_timeout(action))
            raise ActionFailedError(task.name, result.command, result.exit_code)

        return results

    def _action_timeout(self, action: Action) -> float | None:
        return action.timeout if action.timeout is not None else self.timeout

    def _run_action(
        self,
        task: Task,
        action: Action,
        runner: ProcessRunner,
        working_dir: Path,
        automatic: dict[str, str],
    ) -> ActionResult:
        if action.guard is not None and not action.guard.evaluate(self.variables):
            self.logger.debug(
                f"'{escape(task.name)}': skipping {escape(action.display())} "
                f"(guard {escape(action.guard.describe())} failed)"
            )
            return ActionResult(action=action, command=action.display(), skipped=True)

        if action.is_shell:
            command = self.variables.expand(action.script, automatic)
            cmd = self.shell.command_line(command)
        else:
            cmd = [self.variables.expand(arg, automatic) for arg in action.argv]
            command = " ".join(cmd)

        if not action.silent:
            self.logger.info(command, markup=False, highlight=False)

        try:
            completed = runner.run(
                cmd,
                cwd=working_dir,
                env=self._subprocess_environ(),
                check=False,
                timeout=self._action_timeout(action),
            )
        except subprocess.TimeoutExpired:
            return ActionResult(action=action, command=command, timed_out=True)
        except PermissionError as e:
            self.logger.error(f"[red]{escape(str(e))}[/red]")
            return ActionResult(action=action, command=command, exit_code=EXIT_NOT_EXECUTABLE)
        except FileNotFoundError as e:
            self.logger.error(f"[red]{escape(str(e))}[/red]")
            return ActionResult(action=action, command=command, exit_code=EXIT_COMMAND_NOT_FOUND)

        return ActionResult(action=action, command=command, exit_code=completed.returncode)
