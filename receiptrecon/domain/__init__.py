"""Core domain models for receipt reconstruction.

This module provides the data models shared by every pipeline stage:
- ReceiptItem: one extracted receipt line
- Anchor, Gap, ImageChunk, ChunkResult: derived, per-run analysis artifacts
- ReceiptAnalytics and its metric groups: per-scan quality report

Usage:
    from receiptrecon.domain import ReceiptItem, Gap, ReceiptAnalytics
"""

from receiptrecon.domain.receipt import (
    Anchor,
    CaptureMetrics,
    ChunkResult,
    ExtractedReceipt,
    Gap,
    ImageChunk,
    LearningExample,
    PerformanceMetrics,
    PositionMetrics,
    QualityIndicators,
    ReceiptAnalytics,
    ReceiptItem,
    ScanEvent,
    ScanMetadata,
    ScanOptions,
    ScanResult,
)

__all__ = [
    "Anchor",
    "CaptureMetrics",
    "ChunkResult",
    "ExtractedReceipt",
    "Gap",
    "ImageChunk",
    "LearningExample",
    "PerformanceMetrics",
    "PositionMetrics",
    "QualityIndicators",
    "ReceiptAnalytics",
    "ReceiptItem",
    "ScanEvent",
    "ScanMetadata",
    "ScanOptions",
    "ScanResult",
]
