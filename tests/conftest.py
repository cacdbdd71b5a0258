"""Pytest configuration: local imports and a clean configuration environment."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

_TESTS = Path(__file__).resolve().parent
for path in (_TESTS.parent, _TESTS):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch, tmp_path):
    for key in [key for key in os.environ if key.startswith("PAGEKEEPER_")]:
        monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
