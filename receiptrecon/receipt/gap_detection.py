"""Line-number gap detection and gap-fill reconciliation.

A hole in the recognizer's line_number sequence usually means a skipped item.
The price delta between the items around the hole decides how likely that is:
large jumps tend to be section breaks, small ones look like a missing line.
"""

import logging
from collections.abc import Iterable, Sequence
from decimal import Decimal

from receiptrecon.domain.receipt import Gap, GapConfidence, ReceiptItem

from .positioning import sort_by_line_number

logger = logging.getLogger(__name__)

# Price deltas (absolute) separating the confidence bands.
LOW_CONFIDENCE_PRICE_DELTA = Decimal("5.00")
MEDIUM_CONFIDENCE_PRICE_DELTA = Decimal("2.00")


def classify_gap_confidence(price_diff: Decimal) -> GapConfidence:
    """Map the absolute price difference around a gap to a confidence band."""
    price_diff = abs(price_diff)
    if price_diff > LOW_CONFIDENCE_PRICE_DELTA:
        return "low"
    if price_diff >= MEDIUM_CONFIDENCE_PRICE_DELTA:
        return "medium"
    return "high"


def _format_position(position: float | None) -> str:
    if position is None:
        return "?"
    return f"{position:.0f}"


def find_line_number_gaps(items: Iterable[ReceiptItem]) -> list[Gap]:
    """
    Find missing integers in the line_number sequence.

    Items without a line_number do not take part. Fewer than two numbered
    items can never show a gap.
    """
    numbered = sort_by_line_number(item for item in items if item.line_number is not None)
    if len(numbered) < 2:
        return []

    gaps: list[Gap] = []
    for previous, current in zip(numbered, numbered[1:]):
        assert previous.line_number is not None and current.line_number is not None
        expected = previous.line_number + 1
        if current.line_number <= expected:
            continue

        gaps.append(
            Gap(
                missing_line=expected,
                before_item=previous.name,
                after_item=current.name,
                before_price=previous.price,
                after_price=current.price,
                position_hint=(
                    f"between {_format_position(previous.position_percent)}% "
                    f"and {_format_position(current.position_percent)}%"
                ),
                confidence=classify_gap_confidence(current.price - previous.price),
            )
        )

    if gaps:
        logger.info(
            "Found %d gap(s): %d high, %d medium, %d low confidence",
            len(gaps),
            count_gaps(gaps, "high"),
            count_gaps(gaps, "medium"),
            count_gaps(gaps, "low"),
        )
    return gaps


def count_gaps(gaps: Sequence[Gap], confidence: GapConfidence) -> int:
    return sum(1 for gap in gaps if gap.confidence == confidence)


def needs_verification(gaps: Sequence[Gap]) -> bool:
    """Only high-confidence gaps justify a second recognizer call."""
    return count_gaps(gaps, "high") > 0


def format_gaps_for_prompt(gaps: Sequence[Gap]) -> str:
    """Describe gaps, grouped by confidence, for the verification prompt."""
    if not gaps:
        return "No gaps detected in line number sequence. Please verify that all visible items were extracted."

    sections: list[str] = []

    high = [gap for gap in gaps if gap.confidence == "high"]
    if high:
        lines = ["HIGH PRIORITY GAPS (likely missing items):"]
        for gap in high:
            lines.append(f"  Missing line {gap.missing_line}")
            lines.append(f'  Before: "{gap.before_item}" (${gap.before_price:.2f})')
            lines.append(f'  After: "{gap.after_item}" (${gap.after_price:.2f})')
            lines.append(f"  Look at {gap.position_hint} of receipt")
        sections.append("\n".join(lines))

    medium = [gap for gap in gaps if gap.confidence == "medium"]
    if medium:
        lines = ["MEDIUM PRIORITY GAPS (check carefully):"]
        for gap in medium:
            lines.append(f"  Possible missing line {gap.missing_line}")
            lines.append(f'  Before: "{gap.before_item}" (${gap.before_price:.2f})')
            lines.append(f'  After: "{gap.after_item}" (${gap.after_price:.2f})')
            lines.append(f"  Position: {gap.position_hint}")
        sections.append("\n".join(lines))

    low = [gap for gap in gaps if gap.confidence == "low"]
    if low:
        lines = ["LOW PRIORITY GAPS (may be intentional section breaks):"]
        for gap in low:
            lines.append(f'  Line {gap.missing_line} between "{gap.before_item}" and "{gap.after_item}"')
        sections.append("\n".join(lines))

    return "\n\n".join(sections)


def renumber_items(items: Iterable[ReceiptItem]) -> list[ReceiptItem]:
    """Sort by line_number and rewrite line numbers as a dense 1..N sequence."""
    ordered = sort_by_line_number(items)
    for index, item in enumerate(ordered, start=1):
        item.line_number = index
    return ordered


def insert_missed_items(
    original_items: Sequence[ReceiptItem],
    missed_items: Sequence[ReceiptItem],
) -> list[ReceiptItem]:
    """
    Merge items recovered by verification into the original list.

    Recovered items carry the line number of the gap they fill, so sorting
    the union puts them in place; the union is then renumbered 1..N.
    """
    if missed_items:
        logger.info(
            "Inserting %d recovered item(s) into %d original item(s)",
            len(missed_items),
            len(original_items),
        )
    return renumber_items([*original_items, *missed_items])
