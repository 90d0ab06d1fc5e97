#!/usr/bin/env python3
"""
Reflector entry point for running from a checkout.

Usage:
    uv run python scripts/reflect.py scan --dry-run
    uv run python scripts/reflect.py pipeline --limit 10
    uv run python scripts/reflect.py report --verified
"""

from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from reflector.cli import main  # noqa: E402

if __name__ == "__main__":
    sys.exit(main())
