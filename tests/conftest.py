"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os

import pytest


@pytest.fixture(autouse=True)
def _clean_tanzu_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep ``TANZU_*`` variables from the developer's shell out of the tests."""
    for key in list(os.environ):
        if key.startswith("TANZU_"):
            monkeypatch.delenv(key, raising=False)
