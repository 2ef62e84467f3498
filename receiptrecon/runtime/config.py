"""Runtime configuration for receipt scanning.

Settings come from an optional TOML file, then environment overrides:

    RECEIPTRECON_CONFIG   Path to the TOML file (default: config/receiptrecon.toml)
    VISION_SERVICE_URL    Vision extraction service base URL
    OCR_SERVICE_URL       OCR trace service base URL

Example TOML:

    vision_service_url = "http://localhost:8002"
    request_timeout = 60.0

    [chunking]
    min_items_for_chunking = 10
    chunk_size_items = 10
    chunk_overlap_percent = 0.2
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field, fields, replace
from functools import lru_cache
from pathlib import Path
from typing import Any

from receiptrecon.receipt.chunking import ChunkConfig

DEFAULT_CONFIG_PATH = Path("config") / "receiptrecon.toml"


@dataclass(frozen=True)
class ScanConfig:
    """Settings for one scanner process."""

    vision_service_url: str = "http://localhost:8002"
    ocr_service_url: str = "http://localhost:8001"
    request_timeout: float = 60.0  # per vision call, seconds
    verification_timeout: float = 30.0
    chunk_retries: int = 1
    max_image_dimension: int = 3000
    # Token pricing for cost estimates, USD per million tokens
    input_token_price_per_million: float = 3.0
    output_token_price_per_million: float = 15.0
    chunking: ChunkConfig = field(default_factory=ChunkConfig)


def _scan_config_from_mapping(data: dict[str, Any]) -> ScanConfig:
    known = {f.name for f in fields(ScanConfig)} - {"chunking"}
    unknown = set(data) - known - {"chunking"}
    if unknown:
        raise ValueError(f"Unknown scan config keys: {', '.join(sorted(unknown))}")

    kwargs: dict[str, Any] = {key: value for key, value in data.items() if key in known}
    chunking = data.get("chunking")
    if chunking is not None:
        if not isinstance(chunking, dict):
            raise ValueError("[chunking] must be a table")
        kwargs["chunking"] = ChunkConfig(**chunking)
    return ScanConfig(**kwargs)


@lru_cache(maxsize=4)
def load_scan_config(config_path: str | None = None) -> ScanConfig:
    """
    Load scanner settings.

    Args:
        config_path: Optional TOML path override. If None, uses RECEIPTRECON_CONFIG
            or config/receiptrecon.toml; a missing file means defaults.

    Returns:
        Frozen ScanConfig with environment overrides applied.
    """
    if config_path is None:
        config_path = os.environ.get("RECEIPTRECON_CONFIG")
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if path.exists():
        with open(path, "rb") as f:
            data = tomllib.load(f)

    config = _scan_config_from_mapping(data)

    overrides: dict[str, Any] = {}
    vision_url = os.environ.get("VISION_SERVICE_URL")
    if vision_url:
        overrides["vision_service_url"] = vision_url
    ocr_url = os.environ.get("OCR_SERVICE_URL")
    if ocr_url:
        overrides["ocr_service_url"] = ocr_url
    if overrides:
        config = replace(config, **overrides)
    return config
