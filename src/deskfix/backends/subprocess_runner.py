"""Subprocess process runner implementation."""

import subprocess
from typing import List, Optional

from ..interfaces.process import ProcessResult, ProcessRunner


class SubprocessRunner(ProcessRunner):
    """Run processes using the subprocess module."""

    def run(
        self,
        command: List[str],
        capture_output: bool = True,
        timeout: Optional[int] = None,
    ) -> ProcessResult:
        """Run a command."""
        result = subprocess.run(
            command,
            capture_output=capture_output,
            timeout=timeout,
            check=False,
            text=True,
        )
        return ProcessResult(
            returncode=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
        )

    def spawn(self, command: List[str]) -> None:
        """Start a detached command in its own session, output discarded."""
        subprocess.Popen(
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
