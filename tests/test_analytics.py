"""Tests for scan analytics and capture-rate estimates."""

from __future__ import annotations

from decimal import Decimal

import pytest

from receiptrecon.domain.receipt import ExtractedReceipt, ReceiptAnalytics, ReceiptItem, ScanEvent, ScanMetadata
from receiptrecon.receipt.analytics import (
    aggregate_analytics,
    analyze_position_distribution,
    estimate_capture_rate,
    estimate_cost_usd,
    format_analytics_for_display,
    generate_receipt_analytics,
    receipt_length_category,
    record_event,
)


def _items(positions: list[float | None]) -> list[ReceiptItem]:
    return [
        ReceiptItem(name=f"item {i}", price=Decimal("1.00"), line_number=i, position_percent=position)
        for i, position in enumerate(positions, start=1)
    ]


def test_capture_rate_is_full_without_gaps() -> None:
    assert estimate_capture_rate(12, 0, 0, 0) == 100.0


def test_capture_rate_never_decreases_as_initial_count_grows() -> None:
    rates = [estimate_capture_rate(count, 0, 3, 2) for count in range(1, 40)]

    assert rates == sorted(rates)
    assert all(0 < rate < 100 for rate in rates)


def test_capture_rate_after_verification_counts_recovered_items() -> None:
    rate = estimate_capture_rate(18, 2, 3, 2)

    assert rate == pytest.approx(20 / 22.5 * 100)


def test_capture_rate_for_empty_receipt() -> None:
    assert estimate_capture_rate(0, 0, 0, 0) == 100.0
    assert estimate_capture_rate(0, 0, 1, 1) == 0.0


def test_low_confidence_gaps_only_cost_a_little() -> None:
    assert estimate_capture_rate(10, 0, 2, 0) == 98.0


@pytest.mark.parametrize(
    ("positions", "expected"),
    [
        ([0.0, 25.0, 50.0, 75.0, 100.0], "uniform"),
        ([0.0, 10.0, 30.0, 40.0, 60.0], "clustered"),
        ([0.0, 1.0, 2.0, 3.0, 100.0], "irregular"),
        ([40.0, 40.0, 40.0], "irregular"),
        ([10.0, None, None], "irregular"),
        ([10.0, 90.0], "uniform"),
    ],
)
def test_position_distribution(positions: list[float | None], expected: str) -> None:
    assert analyze_position_distribution(_items(positions)) == expected


@pytest.mark.parametrize(
    ("count", "expected"),
    [(0, "short"), (10, "short"), (11, "medium"), (20, "medium"), (35, "long"), (36, "very_long")],
)
def test_receipt_length_category(count: int, expected: str) -> None:
    assert receipt_length_category(count) == expected


def test_estimate_cost_usd() -> None:
    assert estimate_cost_usd(1_000_000, 100_000, 3.0, 15.0) == pytest.approx(4.5)


def test_record_event_appends_structured_event() -> None:
    events: list[ScanEvent] = []

    event = record_event(events, "chunk", "chunk_1 returned 4 items", chunk_id="chunk_1")

    assert events == [event]
    assert event.level == "info"
    assert event.data == {"chunk_id": "chunk_1"}


def test_generate_receipt_analytics() -> None:
    items = _items([5.0, 30.0, 55.0, 80.0])
    items[0].is_first_item = True
    items[-1].is_last_item = True
    items[1].is_anchor_mid = True
    events: list[ScanEvent] = []
    record_event(events, "plan", "Extracting in 1 chunk(s)")

    analytics = generate_receipt_analytics(
        ExtractedReceipt(items=items, store_name="Corner Market", quality_warnings=["blurry"]),
        ScanMetadata(
            initial_item_count=3,
            verification_found_count=1,
            gap_count=1,
            high_confidence_gap_count=1,
            tokens_used=1200,
            cost_usd=0.01,
            processing_time_ms=850,
            events=events,
        ),
    )

    assert analytics.item_count == 4
    assert analytics.store_name == "Corner Market"
    assert analytics.position_metrics.anchor_count == 3
    assert analytics.position_metrics.has_anchors
    assert analytics.position_metrics.first_item_pos == 5.0
    assert analytics.position_metrics.last_item_pos == 80.0
    assert analytics.position_metrics.avg_spacing == pytest.approx(25.0)
    assert analytics.position_metrics.position_distribution == "uniform"
    assert analytics.capture_metrics.final_item_count == 4
    assert analytics.capture_metrics.had_gaps
    assert analytics.capture_metrics.capture_rate_estimate == pytest.approx(80.0)
    assert analytics.quality_indicators.warnings == ["blurry"]
    assert analytics.quality_indicators.receipt_length_category == "short"
    assert not analytics.quality_indicators.incomplete
    assert analytics.performance.total_tokens_used == 1200
    assert [event.stage for event in analytics.events] == ["plan"]

    display = format_analytics_for_display(analytics)
    assert "verification found 1 additional item" in display


def test_aggregate_analytics() -> None:
    def analytics_for(count: int) -> ReceiptAnalytics:
        return generate_receipt_analytics(
            ExtractedReceipt(items=_items([float(i) for i in range(count)])),
            ScanMetadata(initial_item_count=count, cost_usd=0.02),
        )

    summary = aggregate_analytics([analytics_for(4), analytics_for(12)])

    assert summary.total_receipts == 2
    assert summary.avg_items_per_receipt == pytest.approx(8.0)
    assert summary.avg_capture_rate == pytest.approx(100.0)
    assert summary.receipts_by_length == {"short": 1, "medium": 1}


def test_capture_rate_drops_with_each_unresolved_high_confidence_gap() -> None:
    rates = [estimate_capture_rate(10, 0, 5, high) for high in range(0, 6)]

    assert all(later < earlier for earlier, later in zip(rates, rates[1:]))
