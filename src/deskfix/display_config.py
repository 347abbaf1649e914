"""GDM ``WaylandEnable`` handling for forcing the Xorg session."""

import re
from enum import Enum

WAYLAND_KEY = "WaylandEnable"
DISABLED_LINE = f"{WAYLAND_KEY}=false"

_DISABLED_RE = re.compile(rf"^{WAYLAND_KEY}=false", re.MULTILINE)
_KEY_RE = re.compile(rf"^#*{WAYLAND_KEY}=", re.MULTILINE)
_KEY_LINE_RE = re.compile(rf"^#*{WAYLAND_KEY}=.*$", re.MULTILINE)


class WaylandState(Enum):
    DISABLED = "disabled"
    PRESENT = "present"  # key set to something else, or commented out
    ABSENT = "absent"


def wayland_state(text: str) -> WaylandState:
    if _DISABLED_RE.search(text):
        return WaylandState.DISABLED
    if _KEY_RE.search(text):
        return WaylandState.PRESENT
    return WaylandState.ABSENT


def disable_wayland(text: str) -> str:
    """Return *text* with Wayland disabled; unchanged if already disabled."""
    state = wayland_state(text)
    if state is WaylandState.DISABLED:
        return text
    if state is WaylandState.PRESENT:
        return _KEY_LINE_RE.sub(DISABLED_LINE, text)
    return f"{text}\n{DISABLED_LINE}\n"
