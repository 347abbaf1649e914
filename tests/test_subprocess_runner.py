#!/usr/bin/env python3
"""Tests for the subprocess-backed runner."""

import subprocess
from unittest.mock import MagicMock, patch

from deskfix.backends.subprocess_runner import SubprocessRunner


class TestSubprocessRunner:
    @patch("subprocess.run")
    def test_run_captures_output(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="Ubuntu\n", stderr="")
        result = SubprocessRunner().run(["lsb_release", "-is"], timeout=5)

        assert result.success
        assert result.stdout == "Ubuntu\n"
        args, kwargs = mock_run.call_args
        assert args[0] == ["lsb_release", "-is"]
        assert kwargs["capture_output"] is True
        assert kwargs["check"] is False
        assert kwargs["timeout"] == 5

    @patch("subprocess.run")
    def test_uncaptured_output_is_empty_string(self, mock_run):
        mock_run.return_value = MagicMock(returncode=3, stdout=None, stderr=None)
        result = SubprocessRunner().run(["apt-get", "update"], capture_output=False)
        assert not result.success
        assert result.stdout == ""
        assert result.stderr == ""

    @patch("subprocess.Popen")
    def test_spawn_detaches(self, mock_popen):
        SubprocessRunner().spawn(["kgx"])
        args, kwargs = mock_popen.call_args
        assert args[0] == ["kgx"]
        assert kwargs["start_new_session"] is True
        assert kwargs["stdout"] is subprocess.DEVNULL
