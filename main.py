#!/usr/bin/env python3
"""
OverlaySync Entry Point Script

This script initializes the CLI handler and syncs one document with its audio.
"""

import sys
from overlaysync.cli import CLIHandler

if __name__ == "__main__":
    if sys.version_info < (3, 9):
        sys.stderr.write("OverlaySync requires Python 3.9 or later.\n")
        sys.exit(1)

    cli = CLIHandler()
    cli.run()
