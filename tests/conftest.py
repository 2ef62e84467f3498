"""Shared pytest fixtures for receiptrecon tests."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from receiptrecon.runtime.config import load_scan_config


@pytest.fixture(autouse=True)
def _isolated_scan_config(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory) -> Iterator[None]:
    """Keep developer config files and service URLs out of tests."""
    missing = tmp_path_factory.mktemp("config") / "absent.toml"
    monkeypatch.setenv("RECEIPTRECON_CONFIG", str(missing))
    monkeypatch.delenv("VISION_SERVICE_URL", raising=False)
    monkeypatch.delenv("OCR_SERVICE_URL", raising=False)
    load_scan_config.cache_clear()
    yield
    load_scan_config.cache_clear()
