"""Abstract interface for process execution."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional


@dataclass
class ProcessResult:
    """Result of process execution."""

    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


class ProcessRunner(ABC):
    """Abstract interface for process execution."""

    @abstractmethod
    def run(
        self,
        command: List[str],
        capture_output: bool = True,
        timeout: Optional[int] = None,
    ) -> ProcessResult:
        """Run a command to completion.

        Raises FileNotFoundError when the program does not exist.
        """
        pass

    @abstractmethod
    def spawn(self, command: List[str]) -> None:
        """Start a command detached from this process and do not wait."""
        pass
