#!/usr/bin/env python3
"""Tests for the GDM WaylandEnable edit."""

import pytest

from deskfix.display_config import WaylandState, disable_wayland, wayland_state


class TestWaylandState:
    def test_disabled(self):
        assert wayland_state("[daemon]\nWaylandEnable=false\n") is WaylandState.DISABLED

    @pytest.mark.parametrize(
        "text",
        [
            "[daemon]\n#WaylandEnable=false\n",
            "[daemon]\nWaylandEnable=true\n",
            "[daemon]\n##WaylandEnable=\n",
        ],
    )
    def test_present(self, text):
        assert wayland_state(text) is WaylandState.PRESENT

    def test_absent(self):
        assert wayland_state("[daemon]\nAutomaticLoginEnable=true\n") is WaylandState.ABSENT

    def test_indented_key_is_not_matched(self):
        assert wayland_state("[daemon]\n  WaylandEnable=false\n") is WaylandState.ABSENT


class TestDisableWayland:
    def test_already_disabled_is_unchanged(self):
        text = "[daemon]\nWaylandEnable=false\n"
        assert disable_wayland(text) == text

    def test_uncomments_existing_line(self):
        text = "[daemon]\n# GDM configuration\n#WaylandEnable=false\n\n[security]\n"
        assert disable_wayland(text) == (
            "[daemon]\n# GDM configuration\nWaylandEnable=false\n\n[security]\n"
        )

    def test_rewrites_true(self):
        assert disable_wayland("[daemon]\nWaylandEnable=true\n") == "[daemon]\nWaylandEnable=false\n"

    def test_appends_when_missing(self):
        assert disable_wayland("[daemon]\n") == "[daemon]\n\nWaylandEnable=false\n"

    def test_result_is_idempotent(self):
        once = disable_wayland("[daemon]\nWaylandEnable=true\n")
        assert disable_wayland(once) == once
