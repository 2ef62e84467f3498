"""Format scan results for output (JSON payloads and terminal tables)."""

from dataclasses import asdict
from decimal import Decimal
from typing import Any

from receiptrecon.domain.receipt import ReceiptAnalytics, ReceiptItem, ScanResult

from .analytics import format_analytics_for_display


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    if isinstance(value, dict):
        return {key: _jsonable(inner) for key, inner in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(inner) for inner in value]
    return value


def item_to_dict(item: ReceiptItem) -> dict[str, Any]:
    """Serialize an item; prices become two-decimal strings."""
    return _jsonable(asdict(item))


def analytics_to_dict(analytics: ReceiptAnalytics) -> dict[str, Any]:
    return _jsonable(asdict(analytics))


def scan_result_to_dict(result: ScanResult) -> dict[str, Any]:
    return {
        "items": [item_to_dict(item) for item in result.items],
        "analytics": analytics_to_dict(result.analytics),
        "quality_warnings": list(result.quality_warnings),
    }


def format_scan_result(result: ScanResult) -> str:
    """
    Render a scan result as an aligned text table.

    Columns: line number, name, quantity, price and calibrated position.
    """
    lines: list[str] = []
    if result.analytics.store_name:
        lines.append(f"Store: {result.analytics.store_name}")

    rows = [
        (
            str(item.line_number) if item.line_number is not None else "-",
            item.name,
            item.quantity or "",
            f"${item.price:.2f}",
            f"{item.position_percent:.0f}%" if item.position_percent is not None else "?",
        )
        for item in result.items
    ]

    if rows:
        widths = [max(len(row[col]) for row in rows) for col in range(5)]
        for number, name, quantity, price, position in rows:
            lines.append(
                f"  {number.rjust(widths[0])}. {name.ljust(widths[1])}  {quantity.ljust(widths[2])}"
                f"  {price.rjust(widths[3])}  @ {position.rjust(widths[4])}".rstrip()
            )
    else:
        lines.append("  (no items)")

    total = sum((item.price for item in result.items), Decimal("0"))
    lines.append(f"Items: {len(result.items)}  Sum: ${total:.2f}")
    lines.append(format_analytics_for_display(result.analytics))

    for warning in result.quality_warnings:
        lines.append(f"  ! {warning}")

    return "\n".join(lines)
