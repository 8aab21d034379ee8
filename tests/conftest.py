"""Shared pytest setup for the Entertainment Hub suite."""

from __future__ import annotations

import sys
from pathlib import Path

# The suite imports ``app`` straight from the checkout, so put the project
# root on the path when the package is not installed.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))
