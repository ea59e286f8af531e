"""
Shared pytest fixtures.

Every test that touches the scan history gets a clean temporary DATA_DIR via
the `tmp_data_dir` fixture so tests are fully isolated from each other and
from the real data/scan_history.db.
"""
from __future__ import annotations

import sys
from pathlib import Path

import pytest
from PIL import Image

# ── Make the project root importable without installing the package ────────────
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


@pytest.fixture(autouse=True)
def tmp_data_dir(tmp_path, monkeypatch):
    """
    Redirect DATA_DIR to a fresh tmp directory for every test.
    This gives each test a clean SQLite file and prevents cross-test pollution.
    """
    data = tmp_path / "data"
    data.mkdir()
    monkeypatch.setenv("DATA_DIR", str(data))

    # Patch the module-level DB_PATH that was already computed at import time
    import history
    monkeypatch.setattr(history, "DB_PATH", str(data / "scan_history.db"))
    monkeypatch.setattr(history, "_DATA_DIR", data)

    # Also reset the internal lock so tests don't share state
    import asyncio
    monkeypatch.setattr(history, "_lock", asyncio.Lock())

    yield data


@pytest.fixture
def image():
    """A 400×300 test frame: white, with a red square in the middle."""
    img = Image.new("RGB", (400, 300), "white")
    img.paste((200, 20, 20), (150, 100, 250, 200))
    return img
