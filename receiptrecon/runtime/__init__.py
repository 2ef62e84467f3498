"""Runtime infrastructure for receiptrecon.

This package provides process/runtime services including:
- Logging setup via get_logger()
- Scanner settings via load_scan_config(), ScanConfig
- HTTP clients for the vision extraction and OCR services

Usage:
    from receiptrecon.runtime import get_logger, load_scan_config

    logger = get_logger(__name__)
    config = load_scan_config()
    print(config.vision_service_url)
"""

from receiptrecon.runtime.logging import (
    DEFAULT_LOG_LEVEL,
    LOG_FORMAT,
    LOG_FORMAT_DEBUG,
    configure_logging,
    get_logger,
    set_log_level,
)
from receiptrecon.runtime.config import ScanConfig, load_scan_config

__all__ = [
    # Logging
    "get_logger",
    "configure_logging",
    "set_log_level",
    "DEFAULT_LOG_LEVEL",
    "LOG_FORMAT",
    "LOG_FORMAT_DEBUG",
    # Config
    "ScanConfig",
    "load_scan_config",
]
