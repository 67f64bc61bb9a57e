"""Tests for variables module."""

import unittest

from helpers.logging import RecordingLogger
from maketree.logging import LogLevel
from maketree.variables import RecursiveVariableError, VariableEnvironment


class TestResolve(unittest.TestCase):
    def test_override_beats_everything(self):
        """Test invocation overrides win over environment, providers and defaults."""
        env = VariableEnvironment(
            overrides={"MODE": "override"},
            providers={"MODE": lambda env: "provider"},
            defaults={"MODE": "default"},
            environ={"MODE": "environment"},
        )
        self.assertEqual(env.resolve("MODE"), "override")

    def test_environment_beats_provider_and_default(self):
        env = VariableEnvironment(
            providers={"MODE": lambda env: "provider"},
            defaults={"MODE": "default"},
            environ={"MODE": "environment"},
        )
        self.assertEqual(env.resolve("MODE"), "environment")

    def test_provider_beats_default(self):
        env = VariableEnvironment(
            providers={"MODE": lambda env: "provider"},
            defaults={"MODE": "default"},
            environ={},
        )
        self.assertEqual(env.resolve("MODE"), "provider")

    def test_empty_provider_falls_through_to_default(self):
        """Test a provider yielding nothing leaves the static default in force."""
        env = VariableEnvironment(
            providers={"VERSION": lambda env: "", "EMPTY": lambda env: ""},
            defaults={"VERSION": "$(MAJOR).0.1", "MAJOR": "0"},
            environ={},
        )
        self.assertEqual(env.resolve("VERSION"), "0.0.1")
        self.assertEqual(env.resolve("EMPTY"), "")

    def test_default_used_last(self):
        env = VariableEnvironment(defaults={"MODE": "default"}, environ={})
        self.assertEqual(env.resolve("MODE"), "default")

    def test_unknown_name_is_empty(self):
        """Test a name found in no tier resolves to the empty string."""
        env = VariableEnvironment(environ={})
        self.assertEqual(env.resolve("NOPE"), "")

    def test_empty_override_is_still_an_override(self):
        env = VariableEnvironment(overrides={"V": ""}, defaults={"V": "x"}, environ={})
        self.assertEqual(env.resolve("V"), "")

    def test_provider_runs_once(self):
        """Test resolved values are memoised."""
        calls = []

        def provider(env):
            calls.append(1)
            return f"value-{len(calls)}"

        env = VariableEnvironment(providers={"V": provider}, environ={})

        self.assertEqual(env.resolve("V"), "value-1")
        self.assertEqual(env.resolve("V"), "value-1")
        self.assertEqual(len(calls), 1)

    def test_defaults_can_reference_other_variables(self):
        env = VariableEnvironment(
            defaults={"NAME": "tool", "BINARY": "bin/$(NAME)-$(VERSION)"},
            overrides={"VERSION": "1.2"},
            environ={},
        )
        self.assertEqual(env.resolve("BINARY"), "bin/tool-1.2")

    def test_provider_can_resolve_other_variables(self):
        env = VariableEnvironment(
            providers={"TAG": lambda env: "v" + env.resolve("VERSION")},
            defaults={"VERSION": "2.0"},
            environ={},
        )
        self.assertEqual(env.resolve("TAG"), "v2.0")

    def test_self_reference_is_recursive(self):
        env = VariableEnvironment(defaults={"A": "x$(A)"}, environ={})

        with self.assertRaises(RecursiveVariableError) as cm:
            env.resolve("A")
        self.assertEqual(cm.exception.chain, ["A", "A"])

    def test_indirect_recursion_reports_chain(self):
        env = VariableEnvironment(defaults={"A": "$(B)", "B": "$(C)", "C": "$(A)"}, environ={})

        with self.assertRaises(RecursiveVariableError) as cm:
            env.resolve("A")
        self.assertEqual(cm.exception.chain, ["A", "B", "C", "A"])
        self.assertIn("A -> B -> C -> A", str(cm.exception))

    def test_resolution_is_logged_at_debug(self):
        logger = RecordingLogger()
        env = VariableEnvironment(defaults={"V": "1"}, environ={}, logger=logger)

        env.resolve("V")

        self.assertEqual(logger.at(LogLevel.DEBUG), ["Variable V = '1' (default)"])

    def test_register_provider_replaces_memoised_value(self):
        env = VariableEnvironment(providers={"V": lambda env: "old"}, environ={})
        self.assertEqual(env.resolve("V"), "old")

        env.register_provider("V", lambda env: "new")

        self.assertEqual(env.resolve("V"), "new")


class TestExpand(unittest.TestCase):
    def setUp(self):
        self.env = VariableEnvironment(defaults={"NAME": "tool", "OUT": "dist"}, environ={})

    def test_paren_and_brace_forms(self):
        self.assertEqual(self.env.expand("$(OUT)/${NAME}"), "dist/tool")

    def test_text_without_tokens_is_unchanged(self):
        self.assertEqual(self.env.expand("go build ./..."), "go build ./...")

    def test_unknown_reference_expands_to_empty(self):
        self.assertEqual(self.env.expand("a$(MISSING)b"), "ab")

    def test_double_dollar_is_literal_dollar(self):
        self.assertEqual(self.env.expand("echo $$HOME $$(NAME)"), "echo $HOME $(NAME)")

    def test_shell_style_references_are_left_alone(self):
        """Test $VAR without parentheses or braces is passed through to the shell."""
        self.assertEqual(self.env.expand("echo $HOME"), "echo $HOME")

    def test_automatic_variables_left_verbatim_without_values(self):
        self.assertEqual(self.env.expand("cp $< $@"), "cp $< $@")

    def test_automatic_variables_substituted(self):
        automatic = {"@": "bin/tool", "<": "main.go", "^": "main.go util.go"}
        self.assertEqual(
            self.env.expand("go build -o $@ $^ # first: $<", automatic),
            "go build -o bin/tool main.go util.go # first: main.go",
        )

    def test_expansion_is_not_rescanned(self):
        """Test substituted values are not themselves expanded again."""
        env = VariableEnvironment(overrides={"V": "$$(X)"}, defaults={"X": "no"}, environ={})
        self.assertEqual(env.expand("$(V)"), "$$(X)")


class TestAsEnviron(unittest.TestCase):
    def test_declared_variables_layered_over_process_environment(self):
        env = VariableEnvironment(
            overrides={"MODE": "release"},
            defaults={"NAME": "tool"},
            environ={"PATH": "/usr/bin", "NAME": "from-env"},
        )

        environ = env.as_environ()

        self.assertEqual(environ["PATH"], "/usr/bin")
        self.assertEqual(environ["MODE"], "release")
        self.assertEqual(environ["NAME"], "from-env")

    def test_names_lists_each_declared_name_once(self):
        env = VariableEnvironment(
            overrides={"A": "1"},
            providers={"B": lambda env: "2", "A": lambda env: "x"},
            defaults={"C": "3", "B": "y"},
            environ={},
        )
        self.assertEqual(env.names(), ["A", "B", "C"])


if __name__ == "__main__":
    unittest.main()
