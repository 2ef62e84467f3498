"""Chunked extraction for long receipts.

Long receipts are split into overlapping vertical slices so the recognizer has
less to reason about per call. Each slice covers about ``chunk_size_items``
items; neighbouring slices share ``floor(chunk_size_items * overlap)`` items
so a line sitting on a boundary shows up whole in at least one slice. The
overlap produces duplicates, which the merger removes before renumbering.
"""

import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from receiptrecon.domain.receipt import ChunkResult, ChunkSection, ImageChunk, ReceiptItem

from .positioning import sort_by_line_number

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkConfig:
    """Configuration for the chunk planner."""

    min_items_for_chunking: int = 10
    chunk_overlap_percent: float = 0.2
    chunk_size_items: int = 10

    def __post_init__(self) -> None:
        if self.min_items_for_chunking < 1:
            raise ValueError("min_items_for_chunking must be at least 1")
        if self.chunk_size_items < 1:
            raise ValueError("chunk_size_items must be at least 1")
        if not 0 <= self.chunk_overlap_percent < 1:
            raise ValueError("chunk_overlap_percent must be in [0, 1)")


DEFAULT_CHUNK_CONFIG = ChunkConfig()


def should_use_chunking(estimated_item_count: int, config: ChunkConfig | None = None) -> bool:
    """Decide whether a receipt of this estimated length should be chunked."""
    config = config or DEFAULT_CHUNK_CONFIG
    return estimated_item_count >= config.min_items_for_chunking


def full_receipt_chunk(estimated_item_count: int = 0) -> ImageChunk:
    """Single chunk covering the whole image."""
    expected = f"items 1-{estimated_item_count}" if estimated_item_count > 0 else "all items"
    return ImageChunk(
        id="full",
        section="top",
        y_start_percent=0,
        y_end_percent=100,
        expected_item_range=expected,
    )


def generate_chunks(estimated_item_count: int, config: ChunkConfig | None = None) -> list[ImageChunk]:
    """
    Plan the vertical slices for a receipt with the given estimated length.

    The first slice starts at 0%, the last ends at 100%, and inner edges are
    widened by the configured overlap. A receipt that fits in one slice (or
    has no estimate) gets a single full-height chunk.
    """
    config = config or DEFAULT_CHUNK_CONFIG
    if estimated_item_count <= 0:
        return [full_receipt_chunk(0)]

    num_chunks = math.ceil(estimated_item_count / config.chunk_size_items)
    if num_chunks <= 1:
        return [full_receipt_chunk(estimated_item_count)]

    items_per_chunk = config.chunk_size_items
    overlap_items = math.floor(items_per_chunk * config.chunk_overlap_percent)

    chunks: list[ImageChunk] = []
    for index in range(num_chunks):
        is_first = index == 0
        is_last = index == num_chunks - 1

        start_item = max(1, index * items_per_chunk - (0 if is_first else overlap_items) + 1)
        end_item = min(
            estimated_item_count,
            (index + 1) * items_per_chunk + (0 if is_last else overlap_items),
        )

        start_percent = 0 if is_first else max(0, round((start_item - 1) / estimated_item_count * 100))
        end_percent = 100 if is_last else min(100, round(end_item / estimated_item_count * 100))

        section: ChunkSection = "top" if is_first else "bottom" if is_last else "middle"
        chunks.append(
            ImageChunk(
                id=f"chunk_{index + 1}",
                section=section,
                y_start_percent=start_percent,
                y_end_percent=end_percent,
                expected_item_range=f"items {start_item}-{end_item}",
            )
        )

    logger.info(
        "Planned %d chunks for ~%d items: %s",
        len(chunks),
        estimated_item_count,
        "; ".join(
            f"{c.id} {c.expected_item_range} ({c.y_start_percent}%-{c.y_end_percent}%)" for c in chunks
        ),
    )
    return chunks


def generate_chunk_prompt(chunk: ImageChunk, base_prompt: str) -> str:
    """Prefix the extraction prompt with instructions specific to one slice."""
    if chunk.section == "top":
        focus = "the first few items"
    elif chunk.section == "bottom":
        focus = "the last few items"
    else:
        focus = "items in the middle section"

    return (
        "IMPORTANT - CHUNK-SPECIFIC INSTRUCTIONS:\n"
        f"You are viewing the {chunk.section.upper()} SECTION of a longer receipt.\n"
        f"This section spans from {chunk.y_start_percent}% to {chunk.y_end_percent}% of the full receipt.\n"
        f"Expected content: {chunk.expected_item_range}.\n"
        "\n"
        "EXTRACTION RULES FOR THIS CHUNK:\n"
        "1. Extract ONLY items that are more than 50% visible in this section\n"
        "2. Items cut off at the top or bottom edge should still be extracted if most of the line is visible\n"
        f"3. Pay special attention to {focus}\n"
        "4. Line numbers should be sequential within this chunk, starting at 1\n"
        "\n"
        f"{base_prompt}"
    )


def map_positions_to_page(items: Iterable[ReceiptItem], chunk: ImageChunk) -> None:
    """
    Rescale positions reported against a cropped slice to the full page.

    The recognizer only sees the slice, so 0% is the slice top and 100% its
    bottom. Items without a position are left alone.
    """
    span = chunk.y_end_percent - chunk.y_start_percent
    for item in items:
        if item.position_percent is None:
            continue
        local = min(100.0, max(0.0, item.position_percent))
        item.position_percent = chunk.y_start_percent + local * span / 100


def dedup_key(item: ReceiptItem) -> str:
    """source_text (casefolded) when present, otherwise name and price."""
    if item.source_text:
        return item.source_text.strip().casefold()
    return f"{item.name.strip().casefold()}_{item.price}"


def deduplicate_chunk_items(chunk_item_lists: Iterable[Sequence[ReceiptItem]]) -> list[ReceiptItem]:
    """
    Drop repeats produced by chunk overlap; the first occurrence wins.

    The result keeps chunk order, and within a chunk orders by the
    chunk-local line_number. Line numbers are not rewritten here.
    """
    seen: set[str] = set()
    unique: list[ReceiptItem] = []

    for chunk_items in chunk_item_lists:
        for item in sort_by_line_number(chunk_items):
            key = dedup_key(item)
            if key in seen:
                logger.debug("Dropping duplicate %r from chunk overlap (key %r)", item.name, key)
                continue
            seen.add(key)
            unique.append(item)

    return unique


def merge_chunk_results(chunk_results: Sequence[ChunkResult], estimated_total: int) -> list[ReceiptItem]:
    """
    Combine per-chunk item lists into one receipt-wide list.

    Chunks are taken top to bottom. After deduplication the merged list is
    renumbered 1..N; chunk-local line numbers only served as an ordering hint.
    """
    ordered_results = sorted(chunk_results, key=lambda result: result.chunk.y_start_percent)
    total_before = sum(len(result.items) for result in ordered_results)

    unique = deduplicate_chunk_items(result.items for result in ordered_results)

    # Chunk-local line numbers are not comparable across chunks; the
    # deduplicated order is already final.
    for index, item in enumerate(unique, start=1):
        item.line_number = index

    logger.info(
        "Merged %d chunk(s): %d items before dedup, %d after (estimated %d)",
        len(ordered_results),
        total_before,
        len(unique),
        estimated_total,
    )
    return unique
