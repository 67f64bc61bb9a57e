"""Target graph and dependency resolution."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator

from maketree.parser import Action, Recipe, Task
from maketree.variables import VariableEnvironment


class UnknownTargetError(Exception):
    """Raised when a target, or a prerequisite that is not a file, is undefined."""

    def __init__(self, name: str, required_by: str | None = None):
        self.name = name
        self.required_by = required_by
        if required_by:
            message = f"No rule to make target '{name}', needed by '{required_by}'"
        else:
            message = f"Task not found: {name}"
        super().__init__(message)


class CycleDetectedError(Exception):
    """Raised when a task transitively depends on itself.

    ``cycle`` holds the offending path, starting and ending with the same task.
    """

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Dependency cycle detected: {' -> '.join(cycle)}")


class TargetGraph:
    """Mapping from target name to its task definition."""

    def __init__(self, project_root: Path | None = None):
        self.project_root = project_root if project_root is not None else Path.cwd()
        self._tasks: dict[str, Task] = {}

    def define(
        self,
        name: str,
        prerequisites: Iterable[str] = (),
        actions: Iterable[Action] = (),
        phony: bool = False,
        **details,
    ) -> Task:
        """Define a task, silently replacing any earlier definition of the same name.

        Extra keyword arguments (desc, file, working_dir, source_file) are
        passed through to Task.
        """
        task = Task(
            name=name,
            deps=list(prerequisites),
            actions=list(actions),
            phony=phony,
            **details,
        )
        self._tasks[name] = task
        return task

    def lookup(self, name: str) -> Task:
        """
        Raises:
            UnknownTargetError: If no task with this name is defined
        """
        task = self._tasks.get(name)
        if task is None:
            raise UnknownTargetError(name)
        return task

    def get_task(self, name: str) -> Task | None:
        return self._tasks.get(name)

    def task_names(self) -> list[str]:
        return list(self._tasks.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def path_for(self, name: str, working_dir: str = ".") -> Path:
        return self.project_root / working_dir / name

    def is_file_prerequisite(self, name: str) -> bool:
        """True if name is not a task but exists on disk (a plain source file)."""
        return name not in self._tasks and self.path_for(name).exists()

    def validate(self) -> None:
        """
        Check that no task transitively depends on itself.

        Every task is visited, not just those reachable from one target.
        Prerequisites that are not tasks are skipped here; whether they exist
        as files is checked when a plan needs them.

        Raises:
            CycleDetectedError: For the first cycle found, in definition order
        """
        done: set[str] = set()
        path: list[str] = []

        def visit(name: str) -> None:
            if name in done:
                return
            if name in path:
                start = path.index(name)
                raise CycleDetectedError(path[start:] + [name])

            path.append(name)
            for dep in self._tasks[name].deps:
                if dep in self._tasks:
                    visit(dep)
            path.pop()
            done.add(name)

        for name in self._tasks:
            visit(name)


def build_graph(recipe: Recipe, variables: VariableEnvironment) -> TargetGraph:
    """Build the target graph for a recipe.

    Variable references in task names, prerequisites and backing-file names
    are expanded, so targets such as ``dist/$(NAME)`` work as they do in make.

    Raises:
        CycleDetectedError: If any task transitively depends on itself
    """
    graph = TargetGraph(recipe.project_root)
    for task in recipe.tasks.values():
        name = variables.expand(task.name)
        graph.define(
            name,
            prerequisites=[variables.expand(dep) for dep in task.deps],
            actions=task.actions,
            phony=task.phony,
            desc=task.desc,
            file=variables.expand(task.file) if task.file != task.name else name,
            working_dir=variables.expand(task.working_dir),
            source_file=task.source_file,
        )
    graph.validate()
    return graph


@dataclass(frozen=True)
class ExecutionPlan:
    """Immutable, ordered list of tasks to execute for a target."""

    target: str
    tasks: tuple[Task, ...]

    def names(self) -> list[str]:
        return [task.name for task in self.tasks]

    def __iter__(self) -> Iterator[Task]:
        return iter(self.tasks)

    def __len__(self) -> int:
        return len(self.tasks)


def resolve_execution_order(graph: TargetGraph, target_task: str) -> ExecutionPlan:
    """Resolve execution order for a task and its dependencies.

    Depth-first post-order: each task's prerequisites are visited in
    declaration order before the task itself, and every task appears once.
    Prerequisites that are not tasks but exist as files are leaves and are not
    part of the plan.

    Raises:
        UnknownTargetError: If the target or a non-file prerequisite doesn't exist
        CycleDetectedError: If a dependency cycle is detected
    """
    root = graph.lookup(target_task)

    order: list[Task] = []
    done: set[str] = set()
    path: list[str] = []

    def visit(task: Task) -> None:
        if task.name in done:
            return
        if task.name in path:
            start = path.index(task.name)
            raise CycleDetectedError(path[start:] + [task.name])

        path.append(task.name)
        for dep in task.deps:
            dep_task = graph.get_task(dep)
            if dep_task is None:
                if graph.is_file_prerequisite(dep):
                    continue
                raise UnknownTargetError(dep, required_by=task.name)
            visit(dep_task)
        path.pop()

        done.add(task.name)
        order.append(task)

    visit(root)
    return ExecutionPlan(target=target_task, tasks=tuple(order))


def build_dependency_tree(graph: TargetGraph, target_task: str) -> dict:
    """Build a tree structure representing dependencies for visualization.

    Returns:
        Nested dictionary with "name", "deps" and, for file prerequisites,
        "file": True; a node that would close a cycle has "cycle": True
    """
    graph.lookup(target_task)

    visiting: set[str] = set()

    def build_tree(name: str) -> dict:
        task = graph.get_task(name)
        if task is None:
            return {"name": name, "deps": [], "file": True}

        # Prevent infinite recursion on cycles
        if name in visiting:
            return {"name": name, "deps": [], "cycle": True}

        visiting.add(name)
        tree = {
            "name": name,
            "deps": [build_tree(dep) for dep in task.deps],
        }
        visiting.remove(name)

        return tree

    return build_tree(target_task)
