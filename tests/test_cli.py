"""Tests for the command-line entrypoint."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from receiptrecon.cli.main import main
from receiptrecon.runtime import set_log_level


def test_no_command_prints_help(capsys: pytest.CaptureFixture[str]) -> None:
    assert main([]) == 1
    assert "scan <image>" in capsys.readouterr().out


def test_scan_missing_file_exits_nonzero(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    missing = tmp_path / "receipt.jpg"

    assert main(["scan", str(missing)]) == 1
    assert "Receipt file not found" in capsys.readouterr().out


def test_scan_rejects_negative_estimate(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    image = tmp_path / "receipt.jpg"
    image.write_bytes(b"\xff\xd8")

    assert main(["scan", str(image), "--estimated-items", "-4"]) == 1
    assert "--estimated-items" in capsys.readouterr().out


def test_verbose_flag_enables_debug_logging(tmp_path: Path) -> None:
    package_logger = logging.getLogger("receiptrecon")
    previous = package_logger.level
    try:
        assert main(["--verbose", "scan", str(tmp_path / "missing.jpg")]) == 1
        assert package_logger.level == logging.DEBUG
    finally:
        set_log_level(previous or logging.INFO)
