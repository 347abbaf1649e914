"""Exception types raised by deskfix.

Every error maps to a process exit status through ``exit_code``; the CLI
catches :class:`DeskfixError` once and exits with it.
"""

import shlex
from typing import Sequence


class DeskfixError(Exception):
    """Base class for fatal deskfix errors."""

    @property
    def exit_code(self) -> int:
        return 1


class UnsupportedEnvironmentError(DeskfixError):
    pass


class LogUnavailableError(DeskfixError):
    pass


class ConfigError(DeskfixError, ValueError):
    pass


class ElevationError(DeskfixError):
    pass


class ActionFailedError(DeskfixError):
    """A non-tolerated filesystem action raised OSError."""

    def __init__(self, description: str, error: Exception):
        self.description = description
        self.error = error
        super().__init__(f"{description}: {error}")


class CommandFailedError(DeskfixError):
    """A non-tolerated external command exited non-zero."""

    def __init__(self, argv: Sequence[str], returncode: int):
        self.argv = list(argv)
        self.returncode = returncode
        super().__init__(f"Command failed ({returncode}): {shlex.join(self.argv)}")

    @property
    def exit_code(self) -> int:
        return self.returncode or 1


class InterruptedRunError(DeskfixError):
    """Raised from the SIGTERM handler (SIGINT arrives as KeyboardInterrupt)."""

    def __init__(self, signum: int):
        self.signum = signum
        super().__init__(f"interrupted by signal {signum}")

    @property
    def exit_code(self) -> int:
        return 128 + self.signum
