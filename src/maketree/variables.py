"""Layered variable resolution and $(NAME) substitution.

Variables are looked up in three tiers, highest precedence first:

1. Overrides: values given at invocation time, then the process environment
2. Providers: functions computing a value on demand (e.g. asking git for the
   current tag)
3. Static defaults declared in the recipe

Names that are not found in any tier expand to the empty string.
"""

from __future__ import annotations

import os
import re
from typing import Callable, Mapping, Optional

from maketree.logging import Logger

__all__ = [
    "TOKEN_PATTERN",
    "Provider",
    "RecursiveVariableError",
    "VariableEnvironment",
]

# Matches $(NAME), ${NAME}, the automatic variables $@ $< $^, and $$
# Groups: paren, brace, auto
TOKEN_PATTERN = re.compile(
    r"\$(?:\((?P<paren>[A-Za-z_][A-Za-z0-9_]*)\)"
    r"|\{(?P<brace>[A-Za-z_][A-Za-z0-9_]*)\}"
    r"|(?P<auto>[@<^$]))"
)

Provider = Callable[["VariableEnvironment"], str]


class RecursiveVariableError(ValueError):
    """Raised when a variable's value refers back to itself."""

    def __init__(self, chain: list[str]):
        self.chain = chain
        super().__init__(
            f"Recursive variable reference: {' -> '.join(chain)}"
        )


class VariableEnvironment:
    """Resolves variables for a single invocation.

    Resolved values are memoised, so asking for the same name twice always
    returns the same value and runs a provider at most once.
    """

    def __init__(
        self,
        overrides: Optional[Mapping[str, str]] = None,
        providers: Optional[Mapping[str, Provider]] = None,
        defaults: Optional[Mapping[str, str]] = None,
        environ: Optional[Mapping[str, str]] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        """
        Args:
            overrides: Invocation-time values (e.g. NAME=value on the command line)
            providers: Provider functions keyed by variable name
            defaults: Static default values, which may reference other variables
            environ: Process environment (defaults to os.environ)
            logger: Optional logger for diagnostic output
        """
        self._overrides = {k: str(v) for k, v in (overrides or {}).items()}
        self._environ = dict(os.environ if environ is None else environ)
        self._providers: dict[str, Provider] = dict(providers or {})
        self._defaults = {k: str(v) for k, v in (defaults or {}).items()}
        self._resolved: dict[str, str] = {}
        self._resolving: list[str] = []
        self.logger = logger

    @property
    def environ(self) -> Mapping[str, str]:
        return self._environ

    def register_provider(self, name: str, provider: Provider) -> None:
        """Register (or replace) the provider function for a variable."""
        self._providers[name] = provider
        self._resolved.pop(name, None)

    def names(self) -> list[str]:
        """Names declared through overrides, providers or defaults."""
        names = list(self._overrides)
        for name in (*self._providers, *self._defaults):
            if name not in names:
                names.append(name)
        return names

    def resolve(self, name: str) -> str:
        """
        Resolve a single variable.

        Raises:
            RecursiveVariableError: If the value depends on itself
        """
        if name in self._resolved:
            return self._resolved[name]

        if name in self._resolving:
            start = self._resolving.index(name)
            raise RecursiveVariableError(self._resolving[start:] + [name])

        self._resolving.append(name)
        try:
            value, tier = self._lookup(name)
        finally:
            self._resolving.pop()

        if self.logger:
            self.logger.debug(f"Variable {name} = {value!r} ({tier})")
        self._resolved[name] = value
        return value

    def _lookup(self, name: str) -> tuple[str, str]:
        if name in self._overrides:
            return self._overrides[name], "override"
        if name in self._environ:
            return self._environ[name], "environment"
        if name in self._providers:
            value = str(self._providers[name](self))
            # An empty provider result falls through to the static default
            if value or name not in self._defaults:
                return value, "provider"
        if name in self._defaults:
            return self.expand(self._defaults[name]), "default"
        return "", "unset"

    def expand(self, text: str, automatic: Optional[Mapping[str, str]] = None) -> str:
        """
        Substitute variable references in text.

        Args:
            text: Text containing $(NAME) or ${NAME} tokens
            automatic: Values for the automatic variables ($@, $<, $^). When
                not given those tokens are left untouched.

        Returns:
            Text with all references replaced. ``$$`` becomes a literal ``$``.
        """
        def replace_match(match: re.Match) -> str:
            name = match.group("paren") or match.group("brace")
            if name:
                return self.resolve(name)

            auto = match.group("auto")
            if auto == "$":
                return "$"
            if automatic is None or auto not in automatic:
                return match.group(0)
            return automatic[auto]

        return TOKEN_PATTERN.sub(replace_match, text)

    def as_environ(self) -> dict[str, str]:
        """Process environment with every declared variable resolved on top."""
        environ = dict(self._environ)
        for name in self.names():
            environ[name] = self.resolve(name)
        return environ
