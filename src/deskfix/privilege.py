"""Re-invoke deskfix under sudo when not running as root."""

import os
import sys
from typing import List, Optional, Sequence

from deskfix.errors import ElevationError
from deskfix.logging import get_logger
from deskfix.models import RunConfig

log = get_logger(__name__)

# Session variables the repairs need after sudo resets the environment.
SESSION_ENV = ("DISPLAY", "XAUTHORITY", "DBUS_SESSION_BUS_ADDRESS")


def is_root() -> bool:
    return os.geteuid() == 0


def self_command(script: Optional[str] = None) -> List[str]:
    """How to run deskfix again: the installed script if that is what ran, else ``-m``."""
    script = sys.argv[0] if script is None else script
    if script and os.path.basename(script) == "deskfix":
        path = os.path.abspath(script)
        if os.path.isfile(path) and os.access(path, os.X_OK):
            return [path]
    return [sys.executable, "-m", "deskfix"]


def elevation_argv(config: RunConfig, argv: Sequence[str], script: Optional[str] = None) -> List[str]:
    preserved = sorted(config.to_env()) + list(SESSION_ENV)
    return [
        "sudo",
        f"--preserve-env={','.join(preserved)}",
        *self_command(script),
        *argv,
    ]


def ensure_root(config: RunConfig, argv: Sequence[str], environ: Optional[dict] = None) -> None:
    """Return if already root; otherwise replace this process with a sudo re-run.

    The re-run receives the same arguments plus the parsed flags as DESKFIX_*
    variables, so it reproduces this invocation exactly.
    """
    if is_root():
        return

    log.info("Elevating to root...")
    env = dict(os.environ if environ is None else environ)
    env.update(config.to_env())
    cmd = elevation_argv(config, argv)
    try:
        os.execvpe(cmd[0], cmd, env)
    except OSError as e:
        raise ElevationError(f"Could not run sudo: {e}")
