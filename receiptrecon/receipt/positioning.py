"""Receipt position calibration.

The recognizer's vertical position guesses are noisy, but its first, last and
mid-receipt anchor items are usually placed well. Those anchors plus the line
number sequence give a position for every item by linear interpolation.
"""

import logging
from collections.abc import Iterable, Sequence

from receiptrecon.domain.receipt import Anchor, ReceiptItem

logger = logging.getLogger(__name__)

MIN_ANCHORS = 2


def _clamp_percent(value: float) -> float:
    return max(0.0, min(100.0, value))


def sort_by_line_number(items: Iterable[ReceiptItem]) -> list[ReceiptItem]:
    """Stable sort by line_number; items without one keep their order at the end."""
    return sorted(
        items,
        key=lambda item: (item.line_number is None, item.line_number or 0),
    )


def collect_anchors(items: Iterable[ReceiptItem]) -> list[Anchor]:
    """
    Build the anchor set from flagged items that carry both a line and a position.

    Returns anchors sorted by line_number. When two flagged items share a
    line_number only the first one is kept.
    """
    anchors: dict[int, Anchor] = {}
    for item in items:
        if not item.is_anchor:
            continue
        if item.line_number is None or item.position_percent is None:
            continue
        if item.line_number in anchors:
            continue
        anchors[item.line_number] = Anchor(
            line_number=item.line_number,
            position_percent=_clamp_percent(item.position_percent),
        )
    return sorted(anchors.values(), key=lambda anchor: anchor.line_number)


def interpolate_between_anchors(line_number: int, anchors: Sequence[Anchor]) -> float:
    """
    Interpolate the position of a line from the anchors that bracket it.

    Lines before the first anchor or after the last one are clamped to that
    anchor's position rather than extrapolated.
    """
    if not anchors:
        raise ValueError("interpolate_between_anchors requires at least one anchor")

    ordered = sorted(anchors, key=lambda anchor: anchor.line_number)
    lower = ordered[0]
    upper = ordered[-1]

    if line_number <= lower.line_number:
        return lower.position_percent
    if line_number >= upper.line_number:
        return upper.position_percent

    for anchor in ordered:
        if anchor.line_number == line_number:
            return anchor.position_percent

    for left, right in zip(ordered, ordered[1:]):
        if left.line_number < line_number < right.line_number:
            lower, upper = left, right
            break

    if upper.line_number == lower.line_number:
        return lower.position_percent

    fraction = (line_number - lower.line_number) / (upper.line_number - lower.line_number)
    position = lower.position_percent + fraction * (upper.position_percent - lower.position_percent)
    return _clamp_percent(position)


def _linear_positions(items: list[ReceiptItem]) -> list[ReceiptItem]:
    total = len(items)
    for index, item in enumerate(items):
        item.position_percent = 50.0 if total == 1 else index / (total - 1) * 100
    return items


def calibrate_positions(items: Iterable[ReceiptItem]) -> list[ReceiptItem]:
    """
    Overwrite position_percent for every item using the anchor model.

    Items are updated in place and returned sorted by line_number. With fewer
    than two anchors the items are spread evenly over 0-100 by their order.
    Items that lack a line_number cannot be interpolated; they are kept with
    their current position (clamped) and logged.
    """
    ordered = sort_by_line_number(items)
    if not ordered:
        return []

    anchors = collect_anchors(ordered)

    if len(anchors) < MIN_ANCHORS:
        logger.warning(
            "Insufficient anchors (%d) for %d items, using linear fallback",
            len(anchors),
            len(ordered),
        )
        return _linear_positions(ordered)

    logger.debug(
        "Calibrating %d items from anchors %s",
        len(ordered),
        ", ".join(f"line {a.line_number} @ {a.position_percent:.1f}%" for a in anchors),
    )

    for item in ordered:
        if item.line_number is None:
            logger.warning("Item %r has no line_number; position left uncalibrated", item.name)
            if item.position_percent is not None:
                item.position_percent = _clamp_percent(item.position_percent)
            continue
        item.position_percent = interpolate_between_anchors(item.line_number, anchors)

    return ordered
