#!/usr/bin/env python3
"""Tests for sudo re-invocation."""

import sys
from unittest.mock import patch

import pytest

from deskfix.errors import ElevationError
from deskfix.models import RunConfig
from deskfix.privilege import elevation_argv, ensure_root, self_command


class TestElevation:
    def test_noop_when_root(self):
        with patch("deskfix.privilege.is_root", return_value=True), \
             patch("deskfix.privilege.os.execvpe") as mock_exec:
            ensure_root(RunConfig(), ["--dry-run"])
        mock_exec.assert_not_called()

    def test_reexecs_with_flags_forwarded(self):
        config = RunConfig(with_nvidia=False, dry_run=True)
        with patch("deskfix.privilege.is_root", return_value=False), \
             patch("deskfix.privilege.os.execvpe") as mock_exec:
            ensure_root(config, ["--no-nvidia", "--dry-run"], environ={"DISPLAY": ":0"})

        program, argv, env = mock_exec.call_args[0]
        assert program == "sudo"
        assert argv[0] == "sudo"
        assert argv[2:] == [sys.executable, "-m", "deskfix", "--no-nvidia", "--dry-run"]
        assert env["DESKFIX_WITH_NVIDIA"] == "0"
        assert env["DESKFIX_DRY_RUN"] == "1"
        assert env["DISPLAY"] == ":0"

    def test_preserve_env_lists_flags_and_session(self):
        preserve = elevation_argv(RunConfig(), [])[1]
        assert preserve.startswith("--preserve-env=")
        names = preserve.split("=", 1)[1].split(",")
        assert "DESKFIX_FORCE_XORG" in names
        assert "DBUS_SESSION_BUS_ADDRESS" in names
        assert "DISPLAY" in names

    def test_sudo_missing(self):
        with patch("deskfix.privilege.is_root", return_value=False), \
             patch("deskfix.privilege.os.execvpe", side_effect=FileNotFoundError("sudo")):
            with pytest.raises(ElevationError):
                ensure_root(RunConfig(), [])


class TestSelfCommand:
    def test_installed_script_is_reused(self, tmp_path):
        script = tmp_path / "bin" / "deskfix"
        script.parent.mkdir()
        script.write_text("#!/bin/sh\n")
        script.chmod(0o755)
        assert self_command(str(script)) == [str(script)]
        assert elevation_argv(RunConfig(), ["--dry-run"], script=str(script))[2:] == [
            str(script), "--dry-run",
        ]

    def test_module_run_falls_back_to_interpreter(self, tmp_path):
        main_file = tmp_path / "__main__.py"
        main_file.write_text("")
        assert self_command(str(main_file)) == [sys.executable, "-m", "deskfix"]

    def test_missing_script_falls_back(self, tmp_path):
        assert self_command(str(tmp_path / "deskfix")) == [sys.executable, "-m", "deskfix"]
