# tests/conftest.py

"""Shared pytest fixtures for all ordercache tests."""

from collections.abc import Generator
from pathlib import Path

import pytest

from ordercache.config.settings import Settings


@pytest.fixture(autouse=True)
def isolated_paths(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
) -> Generator[Path, None, None]:
    """Redirect data and log directories into a per-test temp dir."""
    monkeypatch.setattr(Settings, "DATA_DIR", tmp_path / "data")
    monkeypatch.setattr(Settings, "LOGS_DIR", tmp_path / "logs")
    monkeypatch.setattr(
        Settings, "KV_DB_PATH", tmp_path / "data" / "ordercache.db"
    )
    yield tmp_path
