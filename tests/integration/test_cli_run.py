"""Integration tests for running targets through the CLI."""

import os
import time
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from typer.testing import CliRunner

from helpers.io import plain_output
from maketree.cli import app

RECIPE = """
variables:
  MODE: debug
  GREETING: hello $(MODE)

tasks:
  lint:
    phony: true
    cmd: echo lint >> order.txt

  build:
    phony: true
    deps: [lint]
    cmd: echo build >> order.txt

  test:
    phony: true
    deps: [build]
    cmd: echo test >> order.txt

  greet:
    phony: true
    cmd: echo "$(GREETING)" > greeting.txt

  tolerant:
    phony: true
    actions:
      - exit 0
      - -exit 1
      - echo done > tolerant.txt

  broken:
    phony: true
    actions:
      - exit 0
      - exit 3
      - echo unreachable > broken.txt

  dangling:
    deps: [generate]
"""


class CliTestCase(unittest.TestCase):
    recipe = RECIPE

    def setUp(self):
        self.runner = CliRunner()
        self.env = {"NO_COLOR": "1"}
        self._tmpdir = TemporaryDirectory()
        self.project_root = Path(self._tmpdir.name)
        (self.project_root / "maketree.yaml").write_text(self.recipe)
        self._original_cwd = os.getcwd()
        os.chdir(self.project_root)

    def tearDown(self):
        os.chdir(self._original_cwd)
        self._tmpdir.cleanup()

    def invoke(self, *args: str):
        result = self.runner.invoke(app, list(args), env=self.env)
        result.plain_output = plain_output(result)
        return result

    def read(self, name: str) -> str:
        return (self.project_root / name).read_text()


class TestRunTargets(CliTestCase):
    def test_prerequisites_run_in_order(self):
        result = self.invoke("test")

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(self.read("order.txt").split(), ["lint", "build", "test"])
        self.assertIn("completed successfully", result.plain_output)

    def test_commands_are_echoed(self):
        result = self.invoke("lint")

        self.assertIn("echo lint >> order.txt", result.plain_output)

    def test_variables_expand(self):
        result = self.invoke("greet")

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(self.read("greeting.txt").strip(), "hello debug")

    def test_command_line_override(self):
        result = self.invoke("greet", "MODE=release")

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(self.read("greeting.txt").strip(), "hello release")

    def test_override_before_target(self):
        result = self.invoke("GREETING=hi", "greet")

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(self.read("greeting.txt").strip(), "hi")

    def test_allowed_failure_continues(self):
        result = self.invoke("tolerant")

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(self.read("tolerant.txt").strip(), "done")
        self.assertIn("(ignored)", result.plain_output)

    def test_failure_exit_code_is_propagated(self):
        result = self.invoke("broken")

        self.assertEqual(result.exit_code, 3)
        self.assertFalse((self.project_root / "broken.txt").exists())
        self.assertIn("failed with exit code 3", result.plain_output)

    def test_unknown_target(self):
        result = self.invoke("deploy")

        self.assertEqual(result.exit_code, 2)
        self.assertIn("Task not found: deploy", result.plain_output)
        self.assertIn("Available tasks", result.plain_output)

    def test_dangling_prerequisite(self):
        result = self.invoke("dangling")

        self.assertEqual(result.exit_code, 2)
        self.assertIn("No rule to make target 'generate'", result.plain_output)

    def test_two_targets_rejected(self):
        result = self.invoke("lint", "build")

        self.assertNotEqual(result.exit_code, 0)
        self.assertFalse((self.project_root / "order.txt").exists())

    def test_dry_run_runs_nothing(self):
        result = self.invoke("--dry-run", "test")

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertFalse((self.project_root / "order.txt").exists())
        self.assertIn("Will execute (3 tasks)", result.plain_output)

    def test_only_skips_prerequisites(self):
        result = self.invoke("--only", "test")

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(self.read("order.txt").split(), ["test"])

    def test_no_target_without_default_lists_tasks(self):
        result = self.invoke()

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Available tasks", result.plain_output)
        self.assertIn("greet", result.plain_output)


class TestFileTargets(CliTestCase):
    recipe = """
default: app

app:
  deps: [main.c]
  cmd: cat $< > $@
"""

    def setUp(self):
        super().setUp()
        (self.project_root / "main.c").write_text("int main() {}\n")

    def test_default_target_builds_and_then_is_fresh(self):
        result = self.invoke()
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(self.read("app"), "int main() {}\n")

        past = time.time() - 100
        os.utime(self.project_root / "main.c", (past, past))
        result = self.invoke()
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("'app' is up to date", result.plain_output)

    def test_newer_source_rebuilds(self):
        self.invoke("app")
        now = time.time()
        os.utime(self.project_root / "app", (now - 100, now - 100))
        (self.project_root / "main.c").write_text("int main() { return 1; }\n")
        os.utime(self.project_root / "main.c", (now, now))

        result = self.invoke("app")

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(self.read("app"), "int main() { return 1; }\n")

    def test_force_rebuilds_fresh_target(self):
        self.invoke("app")
        (self.project_root / "app").write_text("stale")
        now = time.time()
        os.utime(self.project_root / "main.c", (now - 100, now - 100))

        result = self.invoke("--force", "app")

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(self.read("app"), "int main() {}\n")


class TestInspectionCommands(CliTestCase):
    def test_version(self):
        result = self.invoke("--version")

        self.assertEqual(result.exit_code, 0)
        self.assertIn("maketree version", result.plain_output)

    def test_list(self):
        result = self.invoke("--list")

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Available Tasks", result.plain_output)
        for name in ("lint", "build", "greet", "tolerant"):
            self.assertIn(name, result.plain_output)

    def test_show(self):
        result = self.invoke("--show", "tolerant")

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Task: tolerant", result.plain_output)
        self.assertIn("-exit 1", result.plain_output)

    def test_show_unknown(self):
        result = self.invoke("--show", "deploy")

        self.assertEqual(result.exit_code, 2)

    def test_tree(self):
        result = self.invoke("--tree", "test")

        self.assertEqual(result.exit_code, 0, result.output)
        for name in ("test", "build", "lint"):
            self.assertIn(name, result.plain_output)

    def test_tree_marks_missing_file_prerequisite(self):
        result = self.invoke("--tree", "dangling")

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("generate (file)", result.plain_output)
        self.assertIn("No rule to make target 'generate'", result.plain_output)


class TestCyclicRecipe(CliTestCase):
    recipe = """
loop-a:
  deps: [loop-b]
loop-b:
  deps: [loop-a]

hello:
  phony: true
  cmd: echo hello > hello.txt
"""

    def test_cycle_in_requested_target(self):
        result = self.invoke("loop-a")

        self.assertEqual(result.exit_code, 2)
        self.assertIn("loop-a -> loop-b -> loop-a", result.plain_output)

    def test_cycle_fails_unrelated_target(self):
        result = self.invoke("hello")

        self.assertEqual(result.exit_code, 2)
        self.assertIn("Dependency cycle detected", result.plain_output)
        self.assertFalse((self.project_root / "hello.txt").exists())

    def test_inspection_commands_reject_cycle(self):
        for args in (["--list"], ["--show", "hello"], ["--tree", "hello"]):
            result = self.invoke(*args)
            self.assertEqual(result.exit_code, 2, args)
            self.assertIn("loop-a -> loop-b -> loop-a", result.plain_output)


class TestInspectionOverrides(CliTestCase):
    recipe = """
variables:
  NAME: tool

bin/$(NAME):
  deps: [$(NAME).go]
  cmd: go build -o $@ $<
"""

    def test_list_uses_overrides(self):
        result = self.invoke("--list", "NAME=server")

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("bin/server", result.plain_output)
        self.assertNotIn("bin/tool", result.plain_output)

    def test_show_and_tree_use_overrides(self):
        result = self.invoke("--show", "bin/server", "NAME=server")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Task: bin/server", result.plain_output)

        result = self.invoke("--tree", "bin/server", "NAME=server")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("server.go (file)", result.plain_output)


class TestInit(unittest.TestCase):
    def test_init_creates_recipe_once(self):
        runner = CliRunner()
        with TemporaryDirectory() as tmpdir:
            original_cwd = os.getcwd()
            try:
                os.chdir(tmpdir)

                result = runner.invoke(app, ["--init"], env={"NO_COLOR": "1"})
                self.assertEqual(result.exit_code, 0, result.output)
                self.assertTrue((Path(tmpdir) / "maketree.yaml").exists())

                result = runner.invoke(app, ["--list"], env={"NO_COLOR": "1"})
                self.assertEqual(result.exit_code, 0, result.output)

                result = runner.invoke(app, ["--init"], env={"NO_COLOR": "1"})
                self.assertEqual(result.exit_code, 1)
            finally:
                os.chdir(original_cwd)


class TestRecipeErrors(unittest.TestCase):
    def test_missing_recipe(self):
        runner = CliRunner()
        original_cwd = os.getcwd()
        with TemporaryDirectory() as tmpdir:
            try:
                result = runner.invoke(app, ["--directory", tmpdir, "build"], env={"NO_COLOR": "1"})
            finally:
                os.chdir(original_cwd)
        self.assertEqual(result.exit_code, 2)
        self.assertIn("No recipe file found", plain_output(result))

    def test_invalid_yaml(self):
        runner = CliRunner()
        with TemporaryDirectory() as tmpdir:
            (Path(tmpdir) / "maketree.yaml").write_text("build: [unclosed\n")
            result = runner.invoke(
                app, ["--tasks", str(Path(tmpdir) / "maketree.yaml"), "build"], env={"NO_COLOR": "1"}
            )
        self.assertEqual(result.exit_code, 2)
        self.assertIn("Invalid YAML", plain_output(result))


if __name__ == "__main__":
    unittest.main()
