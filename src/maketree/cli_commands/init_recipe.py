"""Initialize a new maketree recipe file."""

from __future__ import annotations

from pathlib import Path

import typer

from maketree.logging import Logger

TEMPLATE = """# maketree recipe

# Variables: plain values are defaults. Anything set in the environment
# or given on the command line (NAME=value) takes precedence.
variables:
  NAME: {read: NAME}
  # VERSION: {git: tag}
  # GOOS: {eval: go env GOOS}
  # XCOMPILE: "false"

# default: build

tasks:
  # build:
  #   desc: Build binary
  #   phony: true
  #   deps: [fmt]
  #   actions:
  #     - "@echo Building $(NAME)"
  #     - run: [go, build, -o, "dist/$(NAME)", "./cmd/$(NAME)"]
  #     - run: GOOS=linux go build -o dist/$(NAME)_linux .
  #       when: {var: XCOMPILE, equals: "true"}

  # clean:
  #   desc: Reset project to original state
  #   phony: true
  #   actions:
  #     - "-rm -rf dist reports tmp"

# Uncomment and modify the examples above to define your tasks
"""


def init_recipe(logger: Logger, directory: Path | None = None):
    """
    Create a blank recipe file with commented examples.
    """
    recipe_path = (directory or Path.cwd()) / "maketree.yaml"
    if recipe_path.exists():
        logger.error(f"[red]{recipe_path.name} already exists[/red]")
        raise typer.Exit(1)

    recipe_path.write_text(TEMPLATE)
    logger.info(f"[green]Created {recipe_path}[/green]")
    logger.info("Edit the file to define your tasks")
