"""maketree - a Makefile-style task runner with incremental execution."""

__version__ = "0.1.0"

from maketree.executor import (
    ActionFailedError,
    ActionResult,
    ActionTimeoutError,
    ExecutionError,
    Executor,
    TaskStatus,
)
from maketree.graph import (
    CycleDetectedError,
    ExecutionPlan,
    TargetGraph,
    UnknownTargetError,
    build_dependency_tree,
    build_graph,
    resolve_execution_order,
)
from maketree.invoke import EXIT_RECIPE_ERROR, EXIT_TIMEOUT, run
from maketree.parser import Action, Guard, Recipe, RecipeError, Shell, Task, find_recipe_file, parse_recipe
from maketree.variables import RecursiveVariableError, VariableEnvironment

__all__ = [
    "__version__",
    "Action",
    "ActionFailedError",
    "ActionResult",
    "ActionTimeoutError",
    "CycleDetectedError",
    "EXIT_RECIPE_ERROR",
    "EXIT_TIMEOUT",
    "ExecutionError",
    "ExecutionPlan",
    "Executor",
    "Guard",
    "Recipe",
    "RecipeError",
    "RecursiveVariableError",
    "Shell",
    "TargetGraph",
    "Task",
    "TaskStatus",
    "UnknownTargetError",
    "VariableEnvironment",
    "build_dependency_tree",
    "build_graph",
    "find_recipe_file",
    "parse_recipe",
    "resolve_execution_order",
    "run",
]
