"""Root pytest configuration (kept intentionally minimal).

The application package resides in the nested `receipt_capture/` directory.
Test-wide environment defaults are set here, before any test module
imports the package and its settings singleton.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("STORAGE_BACKEND", "filesystem")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.pop("TELEMETRY_URL", None)
os.environ.pop("SENTRY_DSN", None)
