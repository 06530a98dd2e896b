"""
Repository-level pytest configuration.

Provides the repo root and keeps the runner's environment-variable overrides
(REPORTS_DIR, LOGGING_LEVEL, ...) from leaking into unit tests.
"""

from __future__ import annotations

from pathlib import Path
from typing import Generator

import pytest


# Environment variables ConfigLoader would treat as overrides
_OVERRIDE_VARIABLES = (
    "REPORTS_DIR",
    "REPORTS_PREFIX",
    "LOGGING_LEVEL",
    "LOGGING_FILE",
    "COLLECTION_PATH",
    "COLLECTION_DATA",
    "ENVIRONMENTS_DIR",
    "OAUTH_TOKEN_URL",
)


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return repo root path."""
    return Path(__file__).parent


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch) -> Generator[None, None, None]:
    """Drop runner overrides from the process environment for each test."""
    for name in _OVERRIDE_VARIABLES:
        monkeypatch.delenv(name, raising=False)
    yield
