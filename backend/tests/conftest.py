"""
backend/tests/conftest.py

Purpose:
    Shared pytest bootstrap: import paths for the backend package and the
    in-memory fakes module, plus the required settings the app needs at import.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

# app.config builds its Settings on import; JWT_SECRET has no default.
os.environ.setdefault("JWT_SECRET", "test-only-jwt-secret-0123456789abcdef")

_THIS_FILE = Path(__file__).resolve()
_TESTS_DIR = _THIS_FILE.parent
_BACKEND_DIR = _THIS_FILE.parents[1]

for candidate in (str(_BACKEND_DIR), str(_TESTS_DIR)):
    if candidate not in sys.path:
        sys.path.insert(0, candidate)
