"""
deskfix - Repair an Ubuntu GNOME desktop after an upgrade conflict.

Re-pins the python3 alternative, reinstalls the apt bindings and the GNOME
Terminal stack, resets themes, optionally forces Xorg and reinstalls the
NVIDIA driver or the latest kernel meta package.
"""

__version__ = "0.3.0"
__author__ = "deskfix Team"

from deskfix.models import RepairSettings, RunConfig
from deskfix.repair import RepairReport, run_repairs

__all__ = ["RepairReport", "RepairSettings", "RunConfig", "run_repairs", "__version__"]
