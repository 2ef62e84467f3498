"""Parse-and-validate boundary for raw recognizer output.

The vision model returns loosely typed JSON. Every field is coerced here so
that later pipeline stages only ever see well-formed ``ReceiptItem`` objects.
"""

import logging
import math
import re
from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from receiptrecon.domain.receipt import ReceiptItem

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

_PRICE_TEXT = re.compile(r"^\$?\s*(-?\d+(?:[.,]\d+)?)\s*$")
_TRUE_STRINGS = {"true", "yes", "1", "y"}
_FALSE_STRINGS = {"false", "no", "0", "n", ""}


def _coerce_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        return None
    text = value.strip()
    return text or None


def _coerce_price(value: Any) -> Decimal | None:
    """Parse a price from a number or "$3.49"-style text; None if unusable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        price = Decimal(str(value))
    elif isinstance(value, (int, Decimal)):
        price = Decimal(value)
    elif isinstance(value, str):
        match = _PRICE_TEXT.match(value.strip())
        if not match:
            return None
        try:
            price = Decimal(match.group(1).replace(",", "."))
        except InvalidOperation:
            return None
    else:
        return None
    if not price.is_finite():
        return None
    return price.quantize(CENTS, rounding=ROUND_HALF_UP)


def _coerce_line_number(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer() and value > 0:
            return int(value)
        return None
    if isinstance(value, str) and value.strip().isdigit():
        number = int(value.strip())
        return number if number > 0 else None
    return None


def _coerce_position(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        position = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(position):
        return None
    return max(0.0, min(100.0, position))


def _coerce_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    if isinstance(value, (int, float)):
        return value == 1
    return False


def _coerce_optional_flag(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, str) and value.strip().lower() not in _TRUE_STRINGS | _FALSE_STRINGS:
        return None
    return _coerce_flag(value)


def _coerce_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


def parse_raw_item(raw: Any) -> ReceiptItem | None:
    """
    Convert one raw recognizer item into a ReceiptItem.

    Returns None when a required field (name, price) is missing or invalid.
    Optional fields that fail coercion are set to None rather than rejecting
    the whole item.
    """
    if not isinstance(raw, dict):
        logger.warning("Dropping non-object item from recognizer output: %r", raw)
        return None

    name = _coerce_text(raw.get("name"))
    if name is None:
        logger.warning("Dropping item without a name: %r", raw)
        return None

    price = _coerce_price(raw.get("price"))
    if price is None or price < 0:
        logger.warning("Dropping item %r with invalid price %r", name, raw.get("price"))
        return None

    line_number = _coerce_line_number(raw.get("line_number"))
    if raw.get("line_number") is not None and line_number is None:
        logger.warning("Ignoring unusable line_number %r on item %r", raw.get("line_number"), name)

    unit_price = _coerce_price(raw.get("unit_price"))
    if unit_price is not None and unit_price < 0:
        unit_price = None

    return ReceiptItem(
        name=name,
        price=price,
        quantity=_coerce_text(raw.get("quantity")),
        line_number=line_number,
        position_percent=_coerce_position(raw.get("position_percent")),
        source_text=_coerce_text(raw.get("source_text")),
        is_first_item=_coerce_flag(raw.get("is_first_item")),
        is_last_item=_coerce_flag(raw.get("is_last_item")),
        is_anchor_mid=_coerce_flag(raw.get("is_anchor_mid")),
        ocr_line_id=_coerce_int(raw.get("ocr_line_id")),
        category=_coerce_text(raw.get("category")),
        is_food=_coerce_optional_flag(raw.get("is_food")),
        unit_price=unit_price,
    )


def parse_raw_items(raw_items: Any, warnings: list[str] | None = None) -> list[ReceiptItem]:
    """
    Validate a raw item list, dropping malformed entries.

    Args:
        raw_items: Whatever the recognizer put under "items"
        warnings: Optional sink; a summary warning is appended when items are dropped

    Returns:
        Well-formed ReceiptItems in input order
    """
    if raw_items is None:
        return []
    if not isinstance(raw_items, Iterable) or isinstance(raw_items, (str, bytes, dict)):
        logger.warning("Recognizer returned non-list items payload: %r", type(raw_items).__name__)
        if warnings is not None:
            warnings.append("Recognizer returned an unreadable item list")
        return []

    items: list[ReceiptItem] = []
    dropped = 0
    for raw in raw_items:
        item = parse_raw_item(raw)
        if item is None:
            dropped += 1
            continue
        items.append(item)

    if dropped:
        logger.info("Dropped %d malformed item(s), kept %d", dropped, len(items))
        if warnings is not None:
            warnings.append(f"Dropped {dropped} malformed item(s) missing a name or price")
    return items
