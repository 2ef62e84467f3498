"""Data models for receipt reconstruction."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Literal

GapConfidence = Literal["high", "medium", "low"]
ChunkSection = Literal["top", "middle", "bottom"]
PositionDistribution = Literal["clustered", "uniform", "irregular"]
LengthCategory = Literal["short", "medium", "long", "very_long"]


@dataclass
class ReceiptItem:
    """A single line item on a receipt."""

    name: str
    price: Decimal
    quantity: str | None = None  # free text, e.g. "2 lb"
    line_number: int | None = None
    position_percent: float | None = None
    source_text: str | None = None
    is_first_item: bool = False
    is_last_item: bool = False
    is_anchor_mid: bool = False
    ocr_line_id: int | None = None
    category: str | None = None  # produce, dairy, meat, pantry, frozen, non_food
    is_food: bool | None = None
    unit_price: Decimal | None = None

    @property
    def is_anchor(self) -> bool:
        return self.is_first_item or self.is_last_item or self.is_anchor_mid


@dataclass(frozen=True)
class Anchor:
    """A line the recognizer is confident about in both order and placement."""

    line_number: int
    position_percent: float


@dataclass(frozen=True)
class Gap:
    """A break in the line_number sequence that may be a missed item."""

    missing_line: int
    before_item: str
    after_item: str
    before_price: Decimal
    after_price: Decimal
    position_hint: str
    confidence: GapConfidence


@dataclass(frozen=True)
class ImageChunk:
    """Vertical slice of the receipt image sent to the recognizer on its own."""

    id: str
    section: ChunkSection
    y_start_percent: float
    y_end_percent: float
    expected_item_range: str


@dataclass
class ChunkResult:
    """Items extracted from one chunk; failed chunks carry no items."""

    chunk: ImageChunk
    items: list[ReceiptItem] = field(default_factory=list)
    failed: bool = False
    error: str | None = None


@dataclass(frozen=True)
class LearningExample:
    """A past user correction used as a few-shot hint in the extraction prompt."""

    ai_extracted_name: str
    corrected_name: str


@dataclass
class ExtractedReceipt:
    """Receipt-level view of the extracted items."""

    items: list[ReceiptItem] = field(default_factory=list)
    store_name: str | None = None
    quality_warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ScanEvent:
    """Structured telemetry record emitted by a pipeline stage."""

    stage: str
    level: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class PositionMetrics:
    has_anchors: bool
    anchor_count: int
    avg_spacing: float
    position_distribution: PositionDistribution
    first_item_pos: float | None = None
    last_item_pos: float | None = None


@dataclass
class CaptureMetrics:
    initial_extraction_count: int
    verification_found_count: int
    final_item_count: int
    capture_rate_estimate: float  # 0-100
    had_gaps: bool
    gap_count: int
    high_confidence_gaps: int
    failed_chunk_count: int = 0


@dataclass
class QualityIndicators:
    has_quality_warnings: bool
    warning_count: int
    warnings: list[str]
    receipt_length_category: LengthCategory
    incomplete: bool = False


@dataclass
class PerformanceMetrics:
    total_tokens_used: int | None = None
    total_cost_usd: float | None = None
    processing_time_ms: float | None = None


@dataclass
class ReceiptAnalytics:
    """Per-scan quality report; heuristic, not required for correctness."""

    item_count: int
    position_metrics: PositionMetrics
    capture_metrics: CaptureMetrics
    quality_indicators: QualityIndicators
    performance: PerformanceMetrics
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    store_name: str | None = None
    events: list[ScanEvent] = field(default_factory=list)


@dataclass
class ScanMetadata:
    """Counters gathered while scanning, fed to the analytics scorer."""

    initial_item_count: int
    verification_found_count: int = 0
    gap_count: int = 0
    high_confidence_gap_count: int = 0
    failed_chunk_count: int = 0
    incomplete: bool = False
    tokens_used: int | None = None
    cost_usd: float | None = None
    processing_time_ms: float | None = None
    events: list[ScanEvent] = field(default_factory=list)


@dataclass(frozen=True)
class ScanOptions:
    """Caller switches for a single scan."""

    enable_chunking: bool = False
    enable_ocr: bool = False
    estimated_item_count: int = 0
    store_name: str | None = None


@dataclass
class ScanResult:
    """Finished scan handed back to the caller for review and persistence."""

    items: list[ReceiptItem]
    analytics: ReceiptAnalytics
    quality_warnings: list[str] = field(default_factory=list)
