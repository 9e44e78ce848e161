"""Test helper that normalizes sys.path and environment defaults."""

from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


_DEFAULT_ENV_VARS: dict[str, str] = {
    "UPSTREAM_CLIENT_ID": "test-upstream-client",
    "UPSTREAM_CLIENT_SECRET": "test-upstream-secret",
    "BASE_URL": "https://bridge.example.com",
    "JWT_SECRET": "test-jwt-secret-with-enough-length-for-hs256",
    "TOKEN_ENCRYPTION_SECRET": "test-secret",
    "DATABASE_PATH": str(Path(tempfile.gettempdir()) / "oauth-bridge-tests" / "app.db"),
}

for key, value in _DEFAULT_ENV_VARS.items():
    os.environ.setdefault(key, value)
