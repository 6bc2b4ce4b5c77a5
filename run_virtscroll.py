#!/usr/bin/env python3
"""
virtscroll demo launcher.

Run this from the project root to open a 5,000,000-row virtual list.
"""

import sys
from pathlib import Path

# Make the package importable without installing it
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

if __name__ == '__main__':
    from virtscroll.run_demo import install_crash_handlers, run_demo, suppress_warnings
    suppress_warnings()
    install_crash_handlers()
    sys.exit(run_demo())
