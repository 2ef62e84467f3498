"""Receipt reconstruction algorithms.

Everything in this package is pure: no network, filesystem or process state.

- item_validation: coerce raw recognizer JSON into ReceiptItems
- positioning: anchor model and position calibration
- gap_detection: line-number gaps, confidence, gap-fill reconciliation
- chunking: chunk planning, merging and deduplication
- analytics: capture-rate estimates and quality reports
- prompts, ocr_helpers, formatter: supporting text and image helpers
"""

from .analytics import generate_receipt_analytics
from .chunking import ChunkConfig, generate_chunks, merge_chunk_results, should_use_chunking
from .gap_detection import find_line_number_gaps, insert_missed_items, renumber_items
from .item_validation import parse_raw_item, parse_raw_items
from .positioning import calibrate_positions, collect_anchors

__all__ = [
    "ChunkConfig",
    "calibrate_positions",
    "collect_anchors",
    "find_line_number_gaps",
    "generate_chunks",
    "generate_receipt_analytics",
    "insert_missed_items",
    "merge_chunk_results",
    "parse_raw_item",
    "parse_raw_items",
    "renumber_items",
    "should_use_chunking",
]
