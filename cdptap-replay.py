#!/usr/bin/env python3
"""
CDPTap - replay recorded DevTools protocol logs

This is a convenience wrapper that calls the modular implementation.
The actual implementation is in src/cdptap/cli.py

Usage:
    python cdptap-replay.py replay logs/lh-log-cli.json --port 9222

For more information, see README.md
"""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent / 'src'))

from cdptap.cli import main

if __name__ == '__main__':
    main()
