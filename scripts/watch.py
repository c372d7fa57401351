#!/usr/bin/env python3
"""
Rewatch Script.

Runs rewatch from a source checkout without installing it.
Requires Python 3.11+.

Usage:
    python scripts/watch.py -p src make test
"""

import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

from app.main import main


if __name__ == "__main__":
    main()
