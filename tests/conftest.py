"""Pytest configuration shared by the engine tests."""

from __future__ import annotations

import sys
from pathlib import Path


# ``app`` lives at the project root; make it importable without an install.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
