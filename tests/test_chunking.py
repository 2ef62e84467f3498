"""Tests for chunk planning, merging and overlap deduplication."""

from __future__ import annotations

from decimal import Decimal

import pytest

from receiptrecon.domain.receipt import ChunkResult, ImageChunk, ReceiptItem
from receiptrecon.receipt.chunking import (
    ChunkConfig,
    dedup_key,
    deduplicate_chunk_items,
    full_receipt_chunk,
    generate_chunk_prompt,
    generate_chunks,
    map_positions_to_page,
    merge_chunk_results,
    should_use_chunking,
)


def _item(name: str, price: str, line: int, source_text: str | None = None) -> ReceiptItem:
    return ReceiptItem(name=name, price=Decimal(price), line_number=line, source_text=source_text)


def _chunk(chunk_id: str, start: float, end: float) -> ImageChunk:
    return ImageChunk(
        id=chunk_id,
        section="middle",
        y_start_percent=start,
        y_end_percent=end,
        expected_item_range="items ?",
    )


def test_should_use_chunking_threshold() -> None:
    assert not should_use_chunking(9)
    assert should_use_chunking(10)
    assert should_use_chunking(5, ChunkConfig(min_items_for_chunking=5))


@pytest.mark.parametrize("estimate", [11, 23, 35, 47, 100])
def test_chunk_plan_covers_receipt(estimate: int) -> None:
    chunks = generate_chunks(estimate)

    assert len(chunks) >= 2
    assert chunks[0].y_start_percent == 0
    assert chunks[-1].y_end_percent == 100
    assert chunks[0].section == "top"
    assert chunks[-1].section == "bottom"
    assert all(chunk.section == "middle" for chunk in chunks[1:-1])
    assert [chunk.id for chunk in chunks] == [f"chunk_{i}" for i in range(1, len(chunks) + 1)]
    for chunk in chunks:
        assert 0 <= chunk.y_start_percent < chunk.y_end_percent <= 100
    for upper, lower in zip(chunks, chunks[1:]):
        # Neighbours overlap, so there is no band left unread.
        assert lower.y_start_percent < upper.y_end_percent


def test_chunk_plan_for_thirty_five_items() -> None:
    chunks = generate_chunks(35)

    assert [chunk.expected_item_range for chunk in chunks] == [
        "items 1-12",
        "items 9-22",
        "items 19-32",
        "items 29-35",
    ]
    assert [(chunk.y_start_percent, chunk.y_end_percent) for chunk in chunks] == [
        (0, 34),
        (23, 63),
        (51, 91),
        (80, 100),
    ]


def test_small_or_unknown_estimate_gets_single_full_chunk() -> None:
    assert generate_chunks(0) == [full_receipt_chunk(0)]
    assert generate_chunks(-3)[0].expected_item_range == "all items"

    single = generate_chunks(10)
    assert len(single) == 1
    assert single[0].id == "full"
    assert (single[0].y_start_percent, single[0].y_end_percent) == (0, 100)
    assert single[0].expected_item_range == "items 1-10"


def test_chunk_config_rejects_invalid_values() -> None:
    with pytest.raises(ValueError):
        ChunkConfig(chunk_size_items=0)
    with pytest.raises(ValueError):
        ChunkConfig(chunk_overlap_percent=1.0)
    with pytest.raises(ValueError):
        ChunkConfig(min_items_for_chunking=0)


def test_chunk_prompt_names_section_and_range() -> None:
    chunk = generate_chunks(35)[1]

    prompt = generate_chunk_prompt(chunk, "BASE PROMPT")

    assert "MIDDLE SECTION" in prompt
    assert "from 23% to 63%" in prompt
    assert "items 9-22" in prompt
    assert prompt.endswith("BASE PROMPT")


def test_dedup_key_prefers_source_text() -> None:
    assert dedup_key(_item("Milk", "4.99", 1, "  2% MILK 4L ")) == "2% milk 4l"
    assert dedup_key(_item("Milk", "4.99", 1)) == "milk_4.99"


def test_deduplicate_is_idempotent_for_full_overlap() -> None:
    items = [_item(f"item {i}", "1.00", i, f"SRC {i}") for i in range(1, 6)]

    unique = deduplicate_chunk_items([items, items])

    assert len(unique) == len(items)


def test_merge_with_itself_does_not_double() -> None:
    chunk = _chunk("chunk_1", 0, 100)
    items = [_item(f"item {i}", f"{i}.00", i) for i in range(1, 8)]

    merged = merge_chunk_results([ChunkResult(chunk, items), ChunkResult(chunk, items)], 7)

    assert len(merged) == 7
    assert [item.line_number for item in merged] == list(range(1, 8))


def test_merge_thirty_five_items_with_overlap_duplicate() -> None:
    receipt = [_item(f"item {i}", f"{i % 7 + 1}.49", i, f"LINE {i:02d}") for i in range(1, 36)]

    def local(items: list[ReceiptItem]) -> list[ReceiptItem]:
        # The recognizer numbers lines within its own slice.
        return [
            ReceiptItem(name=item.name, price=item.price, line_number=index, source_text=item.source_text)
            for index, item in enumerate(items, start=1)
        ]

    config = ChunkConfig(chunk_size_items=12)
    chunks = generate_chunks(35, config)
    assert len(chunks) == 3

    # item 13 sits in the overlap window and is read by both chunk 1 and 2.
    results = [
        ChunkResult(chunks[2], local(receipt[24:])),
        ChunkResult(chunks[0], local(receipt[:13])),
        ChunkResult(chunks[1], local(receipt[12:24])),
    ]

    merged = merge_chunk_results(results, 35)

    assert len(merged) == 35
    assert [item.line_number for item in merged] == list(range(1, 36))
    assert [item.source_text for item in merged] == [f"LINE {i:02d}" for i in range(1, 36)]


def test_merge_skips_failed_chunk_items() -> None:
    top = ChunkResult(_chunk("chunk_1", 0, 60), [_item("a", "1.00", 1), _item("b", "2.00", 2)])
    bottom = ChunkResult(_chunk("chunk_2", 40, 100), [], failed=True, error="timeout")

    merged = merge_chunk_results([bottom, top], 10)

    assert [item.name for item in merged] == ["a", "b"]


def test_slice_positions_map_into_chunk_band() -> None:
    items = [_item("a", "1.00", 1), _item("b", "1.00", 2), _item("c", "1.00", 3), _item("d", "1.00", 4)]
    for item, position in zip(items, [0.0, 50.0, 100.0, None]):
        item.position_percent = position

    map_positions_to_page(items, _chunk("chunk_2", 40, 100))

    assert [item.position_percent for item in items] == pytest.approx([40.0, 70.0, 100.0, None])
