"""
Invoking-user context and canonical paths for a deskfix run.

Every phase that needs the user's home, backup directory, log file or D-Bus
session address reads it from the :class:`RunContext` built here instead of
computing paths inline.
"""

import getpass
import os
import pwd
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Mapping, Optional

import structlog

from deskfix.errors import LogUnavailableError
from deskfix.models import RepairSettings

log = structlog.get_logger("deskfix.paths")

LOG_PREFIX = "fix-desktop"


@dataclass(frozen=True)
class RunContext:
    """Who the repairs are for and where artifacts go."""

    user: str
    uid: int
    home: Path
    backup_dir: Path
    log_file: Path
    timestamp: str
    dbus_address: Optional[str] = None

    @property
    def is_root_user(self) -> bool:
        return self.uid == 0


# ── invoking user ────────────────────────────────────────────────────────────

def invoking_user(environ: Mapping[str, str]) -> str:
    """The human behind sudo, or the current user when not under sudo."""
    return environ.get("SUDO_USER") or getpass.getuser()


def user_home(user: str) -> Path:
    """Home directory from the passwd database, falling back to ~user."""
    try:
        return Path(pwd.getpwnam(user).pw_dir)
    except KeyError:
        return Path(os.path.expanduser(f"~{user}"))


def user_uid(user: str) -> int:
    try:
        return pwd.getpwnam(user).pw_uid
    except KeyError:
        return os.getuid()


def session_bus_address(uid: int, environ: Mapping[str, str]) -> Optional[str]:
    """Existing D-Bus session address, or the user's systemd bus socket."""
    if environ.get("DBUS_SESSION_BUS_ADDRESS"):
        return environ["DBUS_SESSION_BUS_ADDRESS"]
    bus = Path(f"/run/user/{uid}/bus")
    if bus.exists():
        return f"unix:path={bus}"
    return None


# ── log file ─────────────────────────────────────────────────────────────────

def _touch(path: Path) -> bool:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8"):
            pass
        return True
    except OSError as exc:
        log.debug("log_path_unwritable", path=str(path), error=str(exc))
        return False


def resolve_log_file(primary_dir: Path, fallback_dir: Path, timestamp: str) -> Path:
    """Create the log file, preferring *primary_dir*.

    Resolution order:
      1. ``<primary_dir>/fix-desktop-<ts>.log``
      2. ``<fallback_dir>/fix-desktop-<ts>.log``
    """
    name = f"{LOG_PREFIX}-{timestamp}.log"
    primary = primary_dir / name
    if os.access(primary_dir, os.W_OK) and _touch(primary):
        return primary

    fallback = fallback_dir / name
    if _touch(fallback):
        return fallback
    raise LogUnavailableError(f"Cannot write log {primary} or {fallback}")


def build_context(
    settings: RepairSettings,
    environ: Optional[Mapping[str, str]] = None,
    now: Optional[datetime] = None,
) -> RunContext:
    """Derive the run context once at startup."""
    environ = os.environ if environ is None else environ
    timestamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    user = invoking_user(environ)
    home = user_home(user)
    uid = user_uid(user)

    log_file = resolve_log_file(
        settings.log_dir,
        home / settings.fallback_log_subdir,
        timestamp,
    )
    return RunContext(
        user=user,
        uid=uid,
        home=home,
        backup_dir=home / settings.backup_subdir,
        log_file=log_file,
        timestamp=timestamp,
        dbus_address=session_bus_address(uid, environ),
    )
