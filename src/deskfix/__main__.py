"""Allow ``python -m deskfix``."""

import sys

from deskfix.cli import main

if __name__ == "__main__":
    sys.exit(main())
