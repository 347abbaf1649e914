#!/usr/bin/env python3
"""
Desktop repair phases for Ubuntu GNOME after an upgrade conflict.

Phases run strictly in order; each returns a PhaseResult and the only state
carried between them is whether GNOME Terminal launched (phase 8), which
gates the fallback-terminal phase.

Nothing is retried and nothing is rolled back. The GDM config backup written
by the Xorg phase is the only recovery aid and is never restored here.

Programmatic:
    from deskfix.repair import run_repairs
    report = run_repairs(config, settings, context)
"""

import os
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from rich.console import Console
from rich.table import Table

from deskfix.backends.subprocess_runner import SubprocessRunner
from deskfix.display_config import WaylandState, disable_wayland, wayland_state
from deskfix.errors import ActionFailedError, UnsupportedEnvironmentError
from deskfix.executor import Command, CommandExecutor, StepOutcome, apt
from deskfix.interfaces.process import ProcessRunner
from deskfix.logging import get_logger, log_ok, log_phase
from deskfix.models import RepairSettings, RunConfig
from deskfix.paths import RunContext

log = get_logger(__name__)

TERMINAL_SERVER = "gnome-terminal-server"
DEBUG_HINT = "G_MESSAGES_DEBUG=all gnome-terminal --wait 2>&1 | tee $HOME/gt-debug.log"


# ─── data types ──────────────────────────────────────────────────────────────

@dataclass
class PhaseResult:
    """Outcome of a single phase."""
    name: str
    outcome: StepOutcome
    detail: str = ""


@dataclass
class RepairReport:
    """Aggregate report from all phases."""
    results: List[PhaseResult] = field(default_factory=list)
    terminal_ok: bool = False

    def add(self, result: PhaseResult) -> PhaseResult:
        self.results.append(result)
        return result

    def get(self, name: str) -> Optional[PhaseResult]:
        for r in self.results:
            if r.name == name:
                return r
        return None

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if r.outcome is StepOutcome.FAILED)

    @property
    def skipped_count(self) -> int:
        return sum(1 for r in self.results if r.outcome is StepOutcome.SKIPPED)

    def render(self, console: Optional[Console] = None) -> None:
        """Print the per-phase table."""
        console = console or Console()
        table = Table(title="deskfix phases", show_lines=False)
        table.add_column("#", justify="right", style="dim")
        table.add_column("Phase", style="cyan")
        table.add_column("Outcome")
        table.add_column("Detail", style="dim")

        styles = {
            StepOutcome.DONE: "green",
            StepOutcome.FAILED: "red",
            StepOutcome.SKIPPED: "yellow",
            StepOutcome.SIMULATED: "blue",
        }
        for i, r in enumerate(self.results, 1):
            style = styles[r.outcome]
            table.add_row(str(i), r.name, f"[{style}]{r.outcome.value}[/]", r.detail)
        console.print(table)


def combine(outcomes: Iterable[StepOutcome]) -> StepOutcome:
    """Fold step outcomes into one phase outcome."""
    outcomes = list(outcomes)
    if not outcomes:
        return StepOutcome.SKIPPED
    if StepOutcome.FAILED in outcomes:
        return StepOutcome.FAILED
    if StepOutcome.SIMULATED in outcomes:
        return StepOutcome.SIMULATED
    return StepOutcome.DONE


# ─── repair context ──────────────────────────────────────────────────────────

class _RepairCtx:
    """Everything a phase needs: flags, settings, user context, executor."""

    def __init__(
        self,
        config: RunConfig,
        settings: RepairSettings,
        context: RunContext,
        executor: CommandExecutor,
        environ: Mapping[str, str],
        which: Callable[[str], Optional[str]] = shutil.which,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.settings = settings
        self.context = context
        self.executor = executor
        self.environ = environ
        self.which = which
        self.sleep = sleep

    @property
    def user(self) -> str:
        return self.context.user

    def session_env(self) -> Dict[str, str]:
        """Variables a GUI program needs when started through sudo -u."""
        env: Dict[str, str] = {}
        if self.environ.get("DISPLAY"):
            env["DISPLAY"] = self.environ["DISPLAY"]
        if self.context.dbus_address:
            env["DBUS_SESSION_BUS_ADDRESS"] = self.context.dbus_address
        return env

    def as_user(self, *argv: str, tolerate: bool = True, **kwargs) -> Command:
        return Command.of(*argv, tolerate=tolerate, as_user=self.user, **kwargs)

    def terminal_running(self) -> bool:
        result = self.executor.query(["pgrep", "-u", self.user, "-f", TERMINAL_SERVER])
        return result is not None and result.success


# ─── parsers for query output ────────────────────────────────────────────────

def recommended_driver(devices_output: str) -> str:
    """Package name from the ``recommended`` line of ``ubuntu-drivers devices``."""
    for line in devices_output.splitlines():
        if "recommended" in line:
            fields = line.split()
            return fields[2] if len(fields) > 2 else ""
    return ""


def has_candidate(policy_output: str) -> bool:
    """True when ``apt-cache policy`` reports an installable candidate."""
    for line in policy_output.splitlines():
        line = line.strip()
        if line.startswith("Candidate:"):
            value = line.split(":", 1)[1].strip()
            return bool(value) and value != "(none)"
    return False


# ═════════════════════════════════════════════════════════════════════════════
#  PHASES (each returns a PhaseResult)
# ═════════════════════════════════════════════════════════════════════════════


def _phase_preflight(ctx: _RepairCtx) -> PhaseResult:
    if not ctx.environ.get("DISPLAY"):
        log.warning(
            "DISPLAY not set. Running outside graphical session; "
            "GNOME Terminal launch test may fail."
        )
    if not ctx.which("apt-get"):
        log.error("apt-get not found. Unsupported environment.")
        raise UnsupportedEnvironmentError("apt-get not found")

    if not ctx.which("lsb_release"):
        log.warning("lsb_release not found; cannot verify distribution.")
        return PhaseResult("pre-flight", StepOutcome.DONE, "distribution unknown")

    distro = ctx.executor.query_output(["lsb_release", "-is"])
    release = ctx.executor.query_output(["lsb_release", "-rs"])
    log.info(f"Detected distribution: {distro or '?'} {release}".rstrip())
    if distro != ctx.settings.expected_distro:
        log.warning(
            f"Distribution '{distro}' is not {ctx.settings.expected_distro}; "
            "commands may not apply."
        )
    return PhaseResult("pre-flight", StepOutcome.DONE, f"{distro} {release}".strip())


def _phase_python_alternative(ctx: _RepairCtx) -> PhaseResult:
    s = ctx.settings
    outcomes = []
    if ctx.which(s.preferred_python):
        outcomes.append(ctx.executor.run(Command.of(
            "update-alternatives", "--install", "/usr/bin/python3", "python3",
            f"/usr/bin/{s.preferred_python}", str(s.alternative_priority),
        )))

    removed = False
    if ctx.which(s.conflicting_python):
        display = ctx.executor.query_output(["update-alternatives", "--display", "python3"])
        if f"/usr/bin/{s.conflicting_python}" in display:
            outcomes.append(ctx.executor.run(Command.of(
                "update-alternatives", "--remove", "python3",
                f"/usr/bin/{s.conflicting_python}", tolerate=True,
            )))
            removed = True
        else:
            log.info(f"No {s.conflicting_python} alternative registered for python3.")

    ctx.executor.run(Command.of("python3", "--version", tolerate=True))

    detail = f"pinned {s.preferred_python}" if outcomes else f"{s.preferred_python} not found"
    if removed:
        detail += f", unregistered {s.conflicting_python}"
    return PhaseResult("python-alternative", combine(outcomes) if outcomes else StepOutcome.SKIPPED, detail)


def _phase_apt_bindings(ctx: _RepairCtx) -> PhaseResult:
    outcomes = [
        ctx.executor.run(apt("update", "-y", tolerate=True)),
        ctx.executor.run(apt("install", "-y", "--reinstall", ctx.settings.binding_package)),
    ]
    return PhaseResult("apt-bindings", combine(outcomes), f"reinstalled {ctx.settings.binding_package}")


def _phase_terminal_stack(ctx: _RepairCtx) -> PhaseResult:
    packages = ctx.settings.terminal_packages
    outcome = ctx.executor.run(apt("install", "-y", "--reinstall", *packages))
    return PhaseResult("terminal-stack", outcome, f"{len(packages)} packages")


def _copy_backup(source: Path, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(source, target)


def _phase_force_xorg(ctx: _RepairCtx) -> PhaseResult:
    conf = ctx.settings.gdm_conf
    if not conf.is_file():
        log.warning(f"{conf} not found; skipping Xorg enforcement.")
        return PhaseResult("force-xorg", StepOutcome.SKIPPED, f"{conf} not found")

    backup = ctx.context.backup_dir / f"{conf.name}.{ctx.context.timestamp}.bak"
    ctx.executor.apply(
        f"cp -a {conf} {backup}",
        lambda: _copy_backup(conf, backup),
        tolerate=True,
    )

    try:
        text = conf.read_text()
    except (OSError, UnicodeDecodeError) as e:
        raise ActionFailedError(f"read {conf}", e) from e
    state = wayland_state(text)
    if state is WaylandState.DISABLED:
        log_ok(log, f"Wayland already disabled in {conf}")
        return PhaseResult("force-xorg", StepOutcome.DONE, "already disabled")

    if state is WaylandState.PRESENT:
        description = f"rewrite WaylandEnable line to WaylandEnable=false in {conf}"
    else:
        description = f"append WaylandEnable=false to {conf}"
    updated = disable_wayland(text)
    outcome = ctx.executor.apply(description, lambda: conf.write_text(updated))
    log.info("Wayland disabled (reboot to apply).")
    return PhaseResult("force-xorg", outcome, f"backup: {backup}")


def _phase_reset_settings(ctx: _RepairCtx) -> PhaseResult:
    if not ctx.which("gsettings") and not ctx.which("dconf"):
        log.warning("Neither gsettings nor dconf found; skipping settings reset.")
        return PhaseResult("reset-settings", StepOutcome.SKIPPED, "no settings tool")

    s = ctx.settings
    env = {}
    if ctx.context.dbus_address:
        env["DBUS_SESSION_BUS_ADDRESS"] = ctx.context.dbus_address

    interface = "org.gnome.desktop.interface"
    steps = [
        ("dconf", "reset", "-f", "/org/gnome/terminal/"),
        ("gsettings", "set", interface, "gtk-theme", s.gtk_theme),
        ("gsettings", "set", interface, "icon-theme", s.icon_theme),
        ("gsettings", "set", interface, "cursor-theme", s.cursor_theme),
        ("gsettings", "set", interface, "color-scheme", s.color_scheme),
        ("gsettings", "set", "org.gnome.settings-daemon.plugins.media-keys",
         "terminal", s.terminal_shortcut),
    ]
    outcomes = [ctx.executor.run(ctx.as_user(*argv, env=env)) for argv in steps]
    failed = outcomes.count(StepOutcome.FAILED)
    detail = f"{len(steps) - failed}/{len(steps)} settings applied"
    return PhaseResult("reset-settings", combine(outcomes), detail)


def _cache_targets(home: Path) -> List[Path]:
    cache = home / ".cache"
    targets = [cache / "gnome-terminal"]
    targets += sorted(cache.glob("vte*"))
    targets += sorted((cache / "fontconfig").glob("*"))
    return targets


def _phase_clean_caches(ctx: _RepairCtx) -> PhaseResult:
    targets = _cache_targets(ctx.context.home)
    outcomes = [
        ctx.executor.run(Command.of("rm", "-rf", *(str(p) for p in targets), tolerate=True)),
        ctx.executor.run(ctx.as_user("fc-cache", "-f")),
    ]
    return PhaseResult("clean-caches", combine(outcomes), f"{len(targets)} cache paths")


def _phase_launch_test(ctx: _RepairCtx) -> PhaseResult:
    if ctx.config.dry_run:
        log.info("DRY: Skipping actual launch.")
        return PhaseResult("launch-test", StepOutcome.SIMULATED, "not confirmed")

    env = ctx.session_env()
    env["LANG"] = "en_US.UTF-8"
    ctx.executor.launch(ctx.as_user(
        "gnome-terminal", env=env, unset=("GTK_MODULES", "GTK3_MODULES"),
    ))
    ctx.sleep(ctx.settings.launch_wait_seconds)

    if ctx.terminal_running():
        log_ok(log, "GNOME Terminal server is running.")
        return PhaseResult("launch-test", StepOutcome.DONE, "terminal running")
    log.warning("GNOME Terminal not persisting.")
    return PhaseResult("launch-test", StepOutcome.FAILED, "terminal not running")


def _phase_fallback_terminals(ctx: _RepairCtx) -> PhaseResult:
    terminals = ctx.settings.fallback_terminals
    outcome = ctx.executor.run(apt("install", "-y", *terminals))
    if not ctx.config.dry_run:
        for name in terminals:
            ctx.executor.launch(ctx.as_user(name, env=ctx.session_env()))
    return PhaseResult("fallback-terminals", outcome, ", ".join(terminals))


def _phase_nvidia(ctx: _RepairCtx) -> PhaseResult:
    outcomes = []
    if not ctx.which("ubuntu-drivers"):
        outcomes.append(ctx.executor.run(apt("install", "-y", "ubuntu-drivers-common")))

    package = recommended_driver(ctx.executor.query_output(["ubuntu-drivers", "devices"]))
    if not package:
        log.warning("Could not auto-detect recommended driver (maybe no NVIDIA GPU?).")
        return PhaseResult("nvidia", combine(outcomes) if outcomes else StepOutcome.SKIPPED,
                           "no recommended driver")

    log.info(f"Recommended NVIDIA package: {package}")
    outcomes.append(ctx.executor.run(apt("install", "-y", "--reinstall", package)))
    return PhaseResult("nvidia", combine(outcomes), package)


def _phase_kernel(ctx: _RepairCtx) -> PhaseResult:
    release = ctx.executor.query_output(["lsb_release", "-rs"]) or ctx.settings.default_release
    hwe_meta = f"linux-generic-hwe-{release}"

    if has_candidate(ctx.executor.query_output(["apt-cache", "policy", hwe_meta])):
        log.info(f"Installing HWE kernel meta: {hwe_meta}")
        package = hwe_meta
    else:
        log.info("Installing generic kernel meta")
        package = "linux-generic"
    outcome = ctx.executor.run(apt("install", "-y", package))
    return PhaseResult("kernel", outcome, package)


def _phase_diagnostics(ctx: _RepairCtx) -> PhaseResult:
    outcomes = [
        ctx.executor.run(Command.of("update-alternatives", "--display", "python3", tolerate=True)),
    ]
    apt_check = ctx.executor.run(Command.of(
        "python3", "-c", 'import apt_pkg; print("apt_pkg import OK")', tolerate=True,
    ))
    outcomes.append(apt_check)
    if apt_check is StepOutcome.FAILED:
        log.warning("apt_pkg is still not importable by python3.")

    detail = "dry run"
    if not ctx.config.dry_run:
        if ctx.terminal_running():
            log_ok(log, "GNOME Terminal operational.")
            detail = "terminal operational"
        else:
            log.warning(f"GNOME Terminal still failing; capture debug with:\n      {DEBUG_HINT}")
            detail = "terminal still failing"
    return PhaseResult("diagnostics", combine(outcomes), detail)


def log_summary(config: RunConfig, report: RepairReport) -> None:
    log.info("Summary:")
    if config.with_nvidia:
        log.info(" - NVIDIA driver processed")
    if config.force_xorg:
        log.info(" - Wayland disabled (reboot to apply)")
    if config.kernel_latest:
        log.info(" - Kernel meta installed/updated (reboot required)")
    if config.skip_fallback:
        log.info(" - Fallback terminals skipped")
    elif report.get("fallback-terminals") is not None:
        log.info(" - Fallback terminals installed")
    if config.dry_run:
        log.info(" - DRY RUN (no changes applied)")

    if config.with_nvidia or config.kernel_latest or config.force_xorg:
        log.info("Reboot recommended if NVIDIA driver, kernel, or Xorg changes were applied.")


# ═════════════════════════════════════════════════════════════════════════════
#  MAIN ENTRY POINT
# ═════════════════════════════════════════════════════════════════════════════

def run_repairs(
    config: RunConfig,
    settings: RepairSettings,
    context: RunContext,
    runner: Optional[ProcessRunner] = None,
    environ: Optional[Mapping[str, str]] = None,
    which: Callable[[str], Optional[str]] = shutil.which,
    sleep: Callable[[float], None] = time.sleep,
) -> RepairReport:
    """Run every repair phase in order.

    Args:
        config: Parsed flags.
        settings: Package lists, themes and paths.
        context: Invoking user, backup dir and log file.
        runner: Process runner (default: subprocess).
        environ: Environment for DISPLAY detection (default: os.environ).

    Returns:
        RepairReport with one PhaseResult per phase that ran or was skipped.

    Raises:
        DeskfixError: on the first non-tolerated failure.
    """
    executor = CommandExecutor(runner or SubprocessRunner(), dry_run=config.dry_run)
    ctx = _RepairCtx(
        config, settings, context, executor,
        environ=os.environ if environ is None else environ,
        which=which,
        sleep=sleep,
    )
    report = RepairReport()

    phases = [
        ("Pre-flight checks", True, _phase_preflight),
        ("Fix python3 alternative (prefer 3.12)", True, _phase_python_alternative),
        ("APT health + python3-apt reinstall", True, _phase_apt_bindings),
        ("Reinstall GNOME Terminal stack", True, _phase_terminal_stack),
        ("Force Xorg (disable Wayland)", config.force_xorg, _phase_force_xorg),
        ("Reset GNOME Terminal + theme", True, _phase_reset_settings),
        ("Clean caches", True, _phase_clean_caches),
        ("Test GNOME Terminal launch", True, _phase_launch_test),
    ]
    for title, enabled, phase in phases:
        _run_phase(report, title, enabled, phase, ctx)

    report.terminal_ok = report.get("launch-test").outcome is StepOutcome.DONE

    later = [
        ("Install fallback terminals", not report.terminal_ok and not config.skip_fallback,
         _phase_fallback_terminals),
        ("NVIDIA driver (auto-detect recommended)", config.with_nvidia, _phase_nvidia),
        ("Kernel latest meta install", config.kernel_latest, _phase_kernel),
        ("Final diagnostics", True, _phase_diagnostics),
    ]
    for title, enabled, phase in later:
        _run_phase(report, title, enabled, phase, ctx)

    log_summary(config, report)
    return report


_PHASE_NAMES = {
    _phase_force_xorg: "force-xorg",
    _phase_fallback_terminals: "fallback-terminals",
    _phase_nvidia: "nvidia",
    _phase_kernel: "kernel",
}


def _run_phase(report: RepairReport, title: str, enabled: bool, phase, ctx: _RepairCtx) -> None:
    if not enabled:
        report.add(PhaseResult(_PHASE_NAMES[phase], StepOutcome.SKIPPED, "not run"))
        return
    with log_phase(log, title):
        report.add(phase(ctx))
