"""
Pytest fixtures and configuration for deskfix tests.
"""
import io
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import pytest

from deskfix.interfaces.process import ProcessResult, ProcessRunner
from deskfix.logging import LOGGER_NAME, configure_logging, shutdown_logging
from deskfix.models import RepairSettings, RunConfig
from deskfix.paths import RunContext


class FakeRunner(ProcessRunner):
    """Records every command instead of running it.

    ``responses`` maps a substring of the joined command line to
    ``(returncode, stdout)``; the first matching key wins. Programs listed in
    ``missing`` raise FileNotFoundError like a real missing binary.
    """

    def __init__(
        self,
        responses: Optional[Dict[str, Tuple[int, str]]] = None,
        missing: Iterable[str] = (),
    ):
        self.responses = responses or {}
        self.missing = set(missing)
        self.calls: List[List[str]] = []
        self.spawned: List[List[str]] = []

    def run(self, command, capture_output=True, timeout=None):
        self.calls.append(list(command))
        if command[0] in self.missing:
            raise FileNotFoundError(command[0])
        line = " ".join(command)
        for key, (returncode, stdout) in self.responses.items():
            if key in line:
                return ProcessResult(returncode=returncode, stdout=stdout, stderr="")
        return ProcessResult(returncode=0, stdout="", stderr="")

    def spawn(self, command):
        self.spawned.append(list(command))

    def lines(self) -> List[str]:
        return [" ".join(c) for c in self.calls]


def make_which(*available: str):
    """shutil.which replacement that only knows *available* programs."""
    def which(name):
        return f"/usr/bin/{name}" if name in available else None
    return which


ALL_TOOLS = (
    "apt-get", "lsb_release", "python3.12", "gsettings", "dconf", "ubuntu-drivers",
)


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    shutdown_logging()
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)


@pytest.fixture
def console_log():
    """Route deskfix console lines into a buffer (no colors, no log file)."""
    buf = io.StringIO()
    configure_logging(color=False, stream=buf)
    return buf


@pytest.fixture
def fake_runner():
    return FakeRunner(responses={"lsb_release -is": (0, "Ubuntu\n"), "lsb_release -rs": (0, "24.04\n")})


@pytest.fixture
def home(tmp_path):
    h = tmp_path / "home" / "alice"
    (h / ".cache").mkdir(parents=True)
    return h


@pytest.fixture
def gdm_conf(tmp_path):
    conf = tmp_path / "gdm3" / "custom.conf"
    conf.parent.mkdir()
    conf.write_text("[daemon]\n#WaylandEnable=false\n\n[security]\n")
    return conf


@pytest.fixture
def settings(tmp_path, gdm_conf):
    return RepairSettings(
        log_dir=tmp_path / "log",
        gdm_conf=gdm_conf,
        launch_wait_seconds=0,
    )


@pytest.fixture
def context(tmp_path, home):
    return RunContext(
        user="alice",
        uid=1000,
        home=home,
        backup_dir=home / ".fix_desktop_backups",
        log_file=tmp_path / "log" / "fix-desktop-20261016-120000.log",
        timestamp="20261016-120000",
        dbus_address="unix:path=/run/user/1000/bus",
    )


@pytest.fixture
def config():
    return RunConfig()
