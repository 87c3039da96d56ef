"""Veritaminal — launcher for running from a source checkout."""

import sys

from veritaminal.cli import main

if __name__ == "__main__":
    sys.exit(main())
