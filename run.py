#!/usr/bin/env python3
"""Backup service runner"""
import sys

from pgbackup.cli import main

if __name__ == '__main__':
    # Default to the scheduled daemon when no command is given
    if len(sys.argv) == 1:
        sys.argv.append('run')

    main()
