"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os

import pytest


@pytest.fixture(autouse=True)
def _isolate_bootagent_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep host ``BOOTAGENT_*`` variables from leaking into configuration tests."""
    for key in list(os.environ):
        if key.startswith("BOOTAGENT_"):
            monkeypatch.delenv(key, raising=False)
