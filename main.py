#!/usr/bin/env python3
"""
Main entry point for the link validator.
"""

import sys

from link_validator.cli import main


if __name__ == '__main__':
    sys.exit(main())
