#!/usr/bin/env python3
"""
Pydantic models for deskfix run configuration and repair settings.
"""

from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from deskfix.errors import ConfigError

DEFAULT_SETTINGS_FILE = Path("/etc/deskfix.yaml")


class RunConfig(BaseModel):
    """Flags for a single run, parsed once from the command line."""

    model_config = ConfigDict(frozen=True)

    with_nvidia: bool = Field(default=True, description="Reinstall the recommended NVIDIA driver")
    force_xorg: bool = Field(default=True, description="Disable Wayland in GDM")
    kernel_latest: bool = Field(default=False, description="Install the latest kernel meta")
    dry_run: bool = Field(default=False, description="Log actions without executing them")
    skip_fallback: bool = Field(default=False, description="Never install fallback terminals")
    color: bool = Field(default=True, description="Color console output")
    config_path: Optional[Path] = Field(default=None, description="YAML settings file")

    def to_env(self) -> Dict[str, str]:
        """Flags as DESKFIX_* variables, for re-invocation under sudo."""
        env = {
            "DESKFIX_WITH_NVIDIA": _flag(self.with_nvidia),
            "DESKFIX_FORCE_XORG": _flag(self.force_xorg),
            "DESKFIX_KERNEL_LATEST": _flag(self.kernel_latest),
            "DESKFIX_DRY_RUN": _flag(self.dry_run),
            "DESKFIX_SKIP_FALLBACK": _flag(self.skip_fallback),
            "DESKFIX_COLOR": _flag(self.color),
        }
        if self.config_path:
            env["DESKFIX_CONFIG"] = str(self.config_path.expanduser().resolve())
        return env


def _flag(value: bool) -> str:
    return "1" if value else "0"


class RepairSettings(BaseModel):
    """Tunable constants used by the repair phases."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    log_dir: Path = Field(default=Path("/var/log"), description="Primary log directory")
    fallback_log_subdir: str = Field(
        default=".local/state/deskfix", description="Log directory under the user's home"
    )
    backup_subdir: str = Field(default=".fix_desktop_backups", description="Backups under home")
    gdm_conf: Path = Field(default=Path("/etc/gdm3/custom.conf"), description="GDM config file")

    preferred_python: str = Field(default="python3.12", description="Interpreter to pin")
    conflicting_python: str = Field(default="python3.13", description="Interpreter to unregister")
    alternative_priority: int = Field(default=10, ge=0, description="update-alternatives priority")

    binding_package: str = Field(default="python3-apt")
    terminal_packages: List[str] = Field(
        default_factory=lambda: [
            "gnome-terminal",
            "gnome-terminal-data",
            "libvte-2.91-0",
            "libgtk-3-0",
            "gsettings-desktop-schemas",
            "gnome-tweaks",
            "dbus-x11",
        ]
    )
    fallback_terminals: List[str] = Field(default_factory=lambda: ["kgx", "tilix"])

    gtk_theme: str = "Adwaita"
    icon_theme: str = "Yaru"
    cursor_theme: str = "Yaru"
    color_scheme: str = "default"
    terminal_shortcut: str = "<Primary><Alt>t"

    launch_wait_seconds: float = Field(default=3.0, ge=0)
    default_release: str = Field(default="24.04", description="Used when lsb_release is missing")
    expected_distro: str = "Ubuntu"

    @field_validator("terminal_packages", "fallback_terminals")
    @classmethod
    def packages_must_be_names(cls, v: List[str]) -> List[str]:
        for name in v:
            if not name or name.startswith("-") or any(c.isspace() for c in name):
                raise ValueError(f"invalid package name: {name!r}")
        return v

    @classmethod
    def load(cls, path: Path) -> "RepairSettings":
        try:
            raw = yaml.safe_load(path.read_text())
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to read settings file {path}: {e}")

        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ConfigError(f"Settings file {path} must be a YAML mapping")

        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            raise ConfigError(f"Invalid settings in {path}: {e}")


def load_settings(config_path: Optional[Path] = None) -> RepairSettings:
    """Load settings from *config_path*, else /etc/deskfix.yaml, else defaults."""
    if config_path is not None:
        return RepairSettings.load(config_path.expanduser())

    if DEFAULT_SETTINGS_FILE.exists():
        return RepairSettings.load(DEFAULT_SETTINGS_FILE)
    return RepairSettings()
