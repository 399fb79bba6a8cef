#!/usr/bin/env python3
"""
Main entry point for the archiver.
"""

import sys

from oasis_archive.cli import main


if __name__ == '__main__':
    sys.exit(main())
