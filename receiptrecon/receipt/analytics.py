"""Receipt scanning analytics.

Summarizes a finished scan into position, capture, quality and performance
metrics. Capture rates are heuristic estimates meant for monitoring and
tuning, not ground truth.
"""

import logging
import math
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from receiptrecon.domain.receipt import (
    CaptureMetrics,
    ExtractedReceipt,
    LengthCategory,
    PerformanceMetrics,
    PositionDistribution,
    PositionMetrics,
    QualityIndicators,
    ReceiptAnalytics,
    ReceiptItem,
    ScanEvent,
    ScanMetadata,
)

logger = logging.getLogger(__name__)

UNIFORM_MAX_CV = 0.3
IRREGULAR_MIN_CV = 0.8

# Share of non-high-confidence gaps assumed to hide a real missed item once
# verification has proven the recognizer skips lines on this receipt.
UNRESOLVED_GAP_MISS_RATE = 0.5

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def record_event(
    events: list[ScanEvent],
    stage: str,
    message: str,
    *,
    level: str = "info",
    **data: Any,
) -> ScanEvent:
    """Append a telemetry event and mirror it to the log."""
    event = ScanEvent(stage=stage, level=level, message=message, data=dict(data))
    events.append(event)
    logger.log(_LEVELS.get(level, logging.INFO), "[%s] %s %s", stage, message, data or "")
    return event


def estimate_cost_usd(
    input_tokens: int,
    output_tokens: int,
    input_price_per_million: float,
    output_price_per_million: float,
) -> float:
    """Dollar cost of one model call from its token usage."""
    return (input_tokens * input_price_per_million + output_tokens * output_price_per_million) / 1_000_000


def receipt_length_category(item_count: int) -> LengthCategory:
    if item_count <= 10:
        return "short"
    if item_count <= 20:
        return "medium"
    if item_count <= 35:
        return "long"
    return "very_long"


def analyze_position_distribution(items: Sequence[ReceiptItem]) -> PositionDistribution:
    """
    Classify how evenly items are spread down the receipt.

    Uses the coefficient of variation of the spacing between consecutive
    positions: below 0.3 is uniform, above 0.8 irregular, clustered between.
    """
    if len(items) < 3:
        return "uniform"

    positions = sorted(item.position_percent for item in items if item.position_percent is not None)
    if len(positions) < 3:
        return "irregular"

    spacings = [b - a for a, b in zip(positions, positions[1:])]
    avg_spacing = sum(spacings) / len(spacings)
    if avg_spacing == 0:
        # Every item stacked on one spot.
        return "irregular"

    variance = sum((s - avg_spacing) ** 2 for s in spacings) / len(spacings)
    coefficient_of_variation = math.sqrt(variance) / avg_spacing

    if coefficient_of_variation < UNIFORM_MAX_CV:
        return "uniform"
    if coefficient_of_variation > IRREGULAR_MIN_CV:
        return "irregular"
    return "clustered"


def estimate_capture_rate(
    initial_count: int,
    verification_found_count: int,
    gap_count: int,
    high_confidence_gaps: int,
) -> float:
    """
    Estimate the percentage of true receipt items present in the result.

    When verification recovered nothing, every extra unresolved
    high-confidence gap lowers the estimate.
    """
    final_count = initial_count + verification_found_count
    if final_count <= 0:
        return 0.0 if gap_count else 100.0

    if verification_found_count > 0:
        unresolved = max(0, gap_count - high_confidence_gaps)
        estimated_missed = verification_found_count + unresolved * UNRESOLVED_GAP_MISS_RATE
        return final_count / (final_count + estimated_missed) * 100

    if high_confidence_gaps > 0:
        return final_count / (final_count + high_confidence_gaps) * 100

    return 100.0 if gap_count == 0 else 98.0


def generate_receipt_analytics(receipt: ExtractedReceipt, metadata: ScanMetadata) -> ReceiptAnalytics:
    """Build the analytics report for one completed extraction."""
    items = receipt.items

    first_item = next((item for item in items if item.is_first_item), None)
    last_item = next((item for item in items if item.is_last_item), None)
    mid_anchor_count = sum(1 for item in items if item.is_anchor_mid)
    anchor_count = (1 if first_item else 0) + (1 if last_item else 0) + mid_anchor_count

    positions = [item.position_percent for item in items if item.position_percent is not None]
    avg_spacing = (max(positions) - min(positions)) / (len(positions) - 1) if len(positions) > 1 else 0.0

    capture_rate = estimate_capture_rate(
        metadata.initial_item_count,
        metadata.verification_found_count,
        metadata.gap_count,
        metadata.high_confidence_gap_count,
    )

    warnings = list(receipt.quality_warnings)
    return ReceiptAnalytics(
        store_name=receipt.store_name,
        item_count=len(items),
        position_metrics=PositionMetrics(
            has_anchors=anchor_count >= 2,
            anchor_count=anchor_count,
            first_item_pos=first_item.position_percent if first_item else None,
            last_item_pos=last_item.position_percent if last_item else None,
            avg_spacing=avg_spacing,
            position_distribution=analyze_position_distribution(items),
        ),
        capture_metrics=CaptureMetrics(
            initial_extraction_count=metadata.initial_item_count,
            verification_found_count=metadata.verification_found_count,
            final_item_count=len(items),
            capture_rate_estimate=round(capture_rate, 1),
            had_gaps=metadata.gap_count > 0,
            gap_count=metadata.gap_count,
            high_confidence_gaps=metadata.high_confidence_gap_count,
            failed_chunk_count=metadata.failed_chunk_count,
        ),
        quality_indicators=QualityIndicators(
            has_quality_warnings=bool(warnings),
            warning_count=len(warnings),
            warnings=warnings,
            receipt_length_category=receipt_length_category(len(items)),
            incomplete=metadata.incomplete,
        ),
        performance=PerformanceMetrics(
            total_tokens_used=metadata.tokens_used,
            total_cost_usd=metadata.cost_usd,
            processing_time_ms=metadata.processing_time_ms,
        ),
        events=list(metadata.events),
    )


def log_analytics(analytics: ReceiptAnalytics) -> None:
    capture = analytics.capture_metrics
    position = analytics.position_metrics
    gaps = (
        f"{capture.gap_count} ({capture.high_confidence_gaps} high confidence)" if capture.had_gaps else "none"
    )
    cost = analytics.performance.total_cost_usd
    logger.info(
        "Receipt scan complete: store=%s items=%d category=%s capture=%.1f%% anchors=%d distribution=%s "
        "gaps=%s recovered=%d cost=%s warnings=%d incomplete=%s",
        analytics.store_name,
        analytics.item_count,
        analytics.quality_indicators.receipt_length_category,
        capture.capture_rate_estimate,
        position.anchor_count,
        position.position_distribution,
        gaps,
        capture.verification_found_count,
        f"${cost:.4f}" if cost is not None else "unknown",
        analytics.quality_indicators.warning_count,
        analytics.quality_indicators.incomplete,
    )


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def format_analytics_for_display(analytics: ReceiptAnalytics) -> str:
    """One-line human summary, e.g. for a review screen or CLI output."""
    capture = analytics.capture_metrics
    parts = [f"Estimated {capture.capture_rate_estimate:.1f}% of items captured"]

    if analytics.quality_indicators.incomplete:
        parts.append("scan incomplete (deadline reached)")

    position = analytics.position_metrics
    if position.has_anchors:
        parts.append(f"{position.anchor_count} anchor points for positioning")
    else:
        parts.append(f"limited positioning accuracy (only {position.anchor_count} anchors)")

    if capture.verification_found_count > 0:
        parts.append(f"verification found {_plural(capture.verification_found_count, 'additional item')}")

    if analytics.quality_indicators.has_quality_warnings:
        parts.append(_plural(analytics.quality_indicators.warning_count, "quality warning"))

    return " | ".join(parts)


@dataclass
class AggregateAnalytics:
    """Roll-up of many scans for reporting."""

    total_receipts: int = 0
    avg_capture_rate: float = 0.0
    avg_items_per_receipt: float = 0.0
    avg_anchors: float = 0.0
    total_gaps_found: int = 0
    total_items_recovered: int = 0
    avg_cost_per_receipt: float = 0.0
    receipts_by_length: dict[str, int] = field(default_factory=dict)
    position_distribution_breakdown: dict[str, int] = field(default_factory=dict)


def aggregate_analytics(analytics_list: Sequence[ReceiptAnalytics]) -> AggregateAnalytics:
    if not analytics_list:
        return AggregateAnalytics()

    total = len(analytics_list)
    return AggregateAnalytics(
        total_receipts=total,
        avg_capture_rate=sum(a.capture_metrics.capture_rate_estimate for a in analytics_list) / total,
        avg_items_per_receipt=sum(a.item_count for a in analytics_list) / total,
        avg_anchors=sum(a.position_metrics.anchor_count for a in analytics_list) / total,
        total_gaps_found=sum(a.capture_metrics.gap_count for a in analytics_list),
        total_items_recovered=sum(a.capture_metrics.verification_found_count for a in analytics_list),
        avg_cost_per_receipt=sum(a.performance.total_cost_usd or 0.0 for a in analytics_list) / total,
        receipts_by_length=dict(Counter(a.quality_indicators.receipt_length_category for a in analytics_list)),
        position_distribution_breakdown=dict(
            Counter(a.position_metrics.position_distribution for a in analytics_list)
        ),
    )
