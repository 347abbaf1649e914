#!/usr/bin/env python3
"""
Command-line entry point for deskfix.
"""

import argparse
import os
import signal
import sys
from pathlib import Path
from typing import List, Mapping, Optional

from rich.console import Console

from deskfix import __version__
from deskfix.errors import DeskfixError, InterruptedRunError
from deskfix.logging import configure_logging, get_logger, shutdown_logging
from deskfix.models import RunConfig, load_settings
from deskfix.paths import build_context
from deskfix.privilege import ensure_root
from deskfix.repair import run_repairs

log = get_logger(__name__)

EXAMPLES = """Examples:
  sudo deskfix
  sudo deskfix --kernel-latest
  sudo deskfix --no-nvidia --dry-run
"""

_ENV_FLAGS = {
    "with_nvidia": "DESKFIX_WITH_NVIDIA",
    "force_xorg": "DESKFIX_FORCE_XORG",
    "kernel_latest": "DESKFIX_KERNEL_LATEST",
    "dry_run": "DESKFIX_DRY_RUN",
    "skip_fallback": "DESKFIX_SKIP_FALLBACK",
    "color": "DESKFIX_COLOR",
}

INFO_FLAGS = ("-h", "--help", "--version")


class UsageError(Exception):
    pass


class _ArgumentParser(argparse.ArgumentParser):
    """Reports errors with exit status 1 and the full usage text."""

    def error(self, message: str):
        print(message, file=sys.stderr)
        self.print_help(sys.stderr)
        self.exit(1)


def defaults_from_env(environ: Mapping[str, str]) -> RunConfig:
    """Flag defaults, overridden by DESKFIX_* variables (set by the sudo re-run)."""
    values = {}
    for name, var in _ENV_FLAGS.items():
        raw = environ.get(var)
        if raw is not None and raw.strip():
            values[name] = raw.strip().lower() in ("1", "true", "yes", "on")
    if environ.get("DESKFIX_CONFIG"):
        values["config_path"] = Path(environ["DESKFIX_CONFIG"])
    return RunConfig(**values)


def build_parser(
    defaults: Optional[RunConfig] = None, info_flags: bool = True
) -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="deskfix",
        description="Repair and reset an Ubuntu GNOME desktop after an upgrade conflict",
        epilog=EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,
        add_help=info_flags,
    )
    if info_flags:
        parser.add_argument("--version", action="version", version=f"deskfix {__version__}")

    parser.add_argument(
        "--with-nvidia", dest="with_nvidia", action="store_true",
        help="Reinstall the recommended NVIDIA driver (default: enabled)",
    )
    parser.add_argument(
        "--no-nvidia", dest="with_nvidia", action="store_false",
        help="Skip the NVIDIA driver reinstall",
    )
    parser.add_argument(
        "--force-xorg", dest="force_xorg", action="store_true",
        help="Disable Wayland in GDM (default: enabled)",
    )
    parser.add_argument(
        "--no-force-xorg", dest="force_xorg", action="store_false",
        help="Leave the GDM Wayland setting alone",
    )
    parser.add_argument(
        "--kernel-latest", action="store_true",
        help="Install the latest HWE/generic kernel meta package",
    )
    parser.add_argument("--dry-run", action="store_true", help="Show actions only")
    parser.add_argument(
        "--skip-fallback", action="store_true", help="Do not install fallback terminals"
    )
    parser.add_argument(
        "--no-color", dest="color", action="store_false", help="Disable colored log output"
    )
    parser.add_argument(
        "--config", dest="config_path", type=Path, metavar="PATH",
        help="YAML file overriding package lists, themes and paths",
    )

    defaults = defaults or RunConfig()
    parser.set_defaults(**defaults.model_dump())
    return parser


def parse_config(argv: List[str], environ: Optional[Mapping[str, str]] = None) -> RunConfig:
    """Parse flags left to right; the last of a conflicting pair wins.

    Raises UsageError on the first unknown token. ``--help`` and ``--version``
    exit through argparse, but only when no unknown token comes before them.
    """
    environ = os.environ if environ is None else environ
    defaults = defaults_from_env(environ)
    args, unknown = build_parser(defaults, info_flags=False).parse_known_args(argv)
    if unknown and unknown[0] not in INFO_FLAGS:
        raise UsageError(unknown[0])
    if unknown:
        args = build_parser(defaults).parse_args(argv)
    return RunConfig(**vars(args))


def _raise_interrupted(signum, frame):
    raise InterruptedRunError(signum)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    argv = list(sys.argv[1:] if argv is None else argv)

    try:
        config = parse_config(argv)
    except UsageError as e:
        print(f"Unknown option: {e}", file=sys.stderr)
        build_parser().print_help(sys.stderr)
        return 1

    configure_logging(color=config.color)
    try:
        ensure_root(config, argv)
        settings = load_settings(config.config_path)
        context = build_context(settings)
    except KeyboardInterrupt:
        log.error("Interrupted.")
        shutdown_logging()
        return InterruptedRunError(signal.SIGINT).exit_code
    except DeskfixError as e:
        log.error(str(e))
        shutdown_logging()
        return e.exit_code

    configure_logging(context.log_file, color=config.color)
    previous = signal.signal(signal.SIGTERM, _raise_interrupted)
    log.info(f"Log file: {context.log_file}")
    log.info(f"User context: {context.user} (home: {context.home})")

    try:
        report = run_repairs(config, settings, context)
        report.render(Console(no_color=not config.color, highlight=False))
        log.info(f"Run finished. Log: {context.log_file}")
        return 0
    except KeyboardInterrupt:
        error = InterruptedRunError(signal.SIGINT)
        log.error(f"Run aborted (interrupted). See {context.log_file}")
        return error.exit_code
    except DeskfixError as e:
        log.error(f"Run aborted ({e}). See {context.log_file}")
        return e.exit_code
    except Exception as e:
        log.error(f"Run aborted (unexpected {type(e).__name__}: {e}). See {context.log_file}")
        return 1
    finally:
        signal.signal(signal.SIGTERM, previous)
        shutdown_logging()


if __name__ == "__main__":
    sys.exit(main())
