"""
Typed external commands and the single executor every phase goes through.

The executor applies dry-run short-circuiting, ``RUN:``/``DRY:`` logging and
the tolerate-or-raise failure policy uniformly.
"""

import shlex
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from deskfix.errors import ActionFailedError, CommandFailedError
from deskfix.interfaces.process import ProcessResult, ProcessRunner
from deskfix.logging import get_logger

log = get_logger(__name__)

# Shell exit statuses for a program that could not be found or executed.
NOT_FOUND = 127
NOT_EXECUTABLE = 126


class StepOutcome(Enum):
    """Outcome of a single step."""

    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"
    SIMULATED = "simulated"

    @property
    def ok(self) -> bool:
        return self is not StepOutcome.FAILED


@dataclass(frozen=True)
class Command:
    """One external program invocation."""

    argv: Tuple[str, ...]
    tolerate: bool = False
    as_user: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    unset: Tuple[str, ...] = ()

    @classmethod
    def of(cls, *argv: str, **kwargs) -> "Command":
        return cls(argv=tuple(argv), **kwargs)

    def render(self) -> List[str]:
        """Full argv including the ``sudo -u`` and ``env`` prefixes."""
        prefix: List[str] = []
        if self.as_user and self.as_user != "root":
            prefix += ["sudo", "-u", self.as_user]
        if self.env or self.unset:
            prefix.append("env")
            for name in self.unset:
                prefix += ["-u", name]
            prefix += [f"{k}={v}" for k, v in self.env.items()]
        return prefix + list(self.argv)

    def __str__(self) -> str:
        text = shlex.join(self.render())
        return f"{text} || true" if self.tolerate else text


def apt(*args: str, tolerate: bool = False) -> Command:
    """apt-get with a non-interactive frontend."""
    return Command.of(
        "apt-get", *args, tolerate=tolerate, env={"DEBIAN_FRONTEND": "noninteractive"}
    )


class CommandExecutor:
    """Run commands and in-process actions with dry-run and failure policy."""

    def __init__(self, runner: ProcessRunner, dry_run: bool = False):
        self.runner = runner
        self.dry_run = dry_run

    def run(self, cmd: Command) -> StepOutcome:
        if self.dry_run:
            log.info(f"DRY: {cmd}")
            return StepOutcome.SIMULATED

        log.info(f"RUN: {cmd}")
        argv = cmd.render()
        try:
            result = self.runner.run(argv, capture_output=False)
            returncode = result.returncode
        except FileNotFoundError:
            returncode = NOT_FOUND
        except OSError as e:
            log.debug("run.exec_failed", argv=argv, error=str(e))
            returncode = NOT_EXECUTABLE

        if returncode == 0:
            return StepOutcome.DONE

        log.error(f"Command failed: {cmd}")
        if cmd.tolerate:
            return StepOutcome.FAILED
        raise CommandFailedError(argv, returncode)

    def apply(
        self,
        description: str,
        action: Callable[[], None],
        tolerate: bool = False,
    ) -> StepOutcome:
        """Run an in-process filesystem action under the same policy as run()."""
        if self.dry_run:
            log.info(f"DRY: {description}")
            return StepOutcome.SIMULATED

        log.info(f"RUN: {description}")
        try:
            action()
        except OSError as e:
            log.error(f"Action failed: {description}: {e}")
            if tolerate:
                return StepOutcome.FAILED
            raise ActionFailedError(description, e) from e
        return StepOutcome.DONE

    def query(self, argv: Sequence[str], timeout: Optional[int] = 60) -> Optional[ProcessResult]:
        """Read-only query; runs in dry-run too and never raises."""
        try:
            return self.runner.run(list(argv), capture_output=True, timeout=timeout)
        except FileNotFoundError:
            return None
        except Exception as e:
            log.debug("query.failed", argv=list(argv), error=str(e))
            return None

    def query_output(self, argv: Sequence[str]) -> str:
        """stdout of a successful query, else an empty string."""
        result = self.query(argv)
        if result is None or not result.success:
            return ""
        return result.stdout.strip()

    def launch(self, cmd: Command) -> StepOutcome:
        """Start a detached background process."""
        if self.dry_run:
            log.info(f"DRY: {cmd} &")
            return StepOutcome.SIMULATED

        log.info(f"RUN: {cmd} &")
        try:
            self.runner.spawn(cmd.render())
        except OSError as e:
            log.warning(f"Could not launch {cmd.argv[0]}: {e}")
            return StepOutcome.FAILED
        return StepOutcome.DONE
