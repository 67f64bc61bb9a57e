from rich.console import Console

from maketree.logging import Logger, LogLevel


class ConsoleLogger(Logger):
    """Logger printing through a Rich console.

    A message is printed when the active level is at least as verbose as the
    message's level. The active level is the top of a stack, so a component
    can turn verbosity up for a while and restore it afterwards.
    """

    def __init__(self, console: Console, level: LogLevel = LogLevel.INFO) -> None:
        self._console = console
        self._levels = [level]

    @property
    def level(self) -> LogLevel:
        return self._levels[-1]

    def enabled(self, level: LogLevel) -> bool:
        return level.value <= self.level.value

    def log(self, level: LogLevel = LogLevel.INFO, *args, **kwargs) -> None:
        """Print args (strings with Rich markup, or renderables) if level is enabled.

        Keyword arguments go to Console.print() unchanged, e.g. markup=False
        for text that must not be parsed as markup.
        """
        if self.enabled(level):
            self._console.print(*args, **kwargs)

    def push_level(self, level: LogLevel) -> None:
        self._levels.append(level)

    def pop_level(self) -> LogLevel:
        """
        Raises:
            RuntimeError: If only the level given at construction is left
        """
        if len(self._levels) == 1:
            raise RuntimeError("Cannot pop the base log level")
        return self._levels.pop()
