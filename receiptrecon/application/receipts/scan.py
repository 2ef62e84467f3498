"""Receipt scan workflow orchestration."""

from __future__ import annotations

import asyncio
import mimetypes
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from receiptrecon.domain.receipt import (
    ChunkResult,
    ExtractedReceipt,
    ImageChunk,
    LearningExample,
    ReceiptItem,
    ScanEvent,
    ScanMetadata,
    ScanOptions,
    ScanResult,
)
from receiptrecon.receipt.analytics import generate_receipt_analytics, log_analytics, record_event
from receiptrecon.receipt.chunking import (
    dedup_key,
    full_receipt_chunk,
    generate_chunk_prompt,
    generate_chunks,
    map_positions_to_page,
    merge_chunk_results,
    should_use_chunking,
)
from receiptrecon.receipt.gap_detection import (
    count_gaps,
    find_line_number_gaps,
    insert_missed_items,
    needs_verification,
    renumber_items,
)
from receiptrecon.receipt.ocr_helpers import (
    OcrTrace,
    apply_ocr_positions,
    crop_image_to_chunk,
    format_ocr_for_prompt,
    resize_image_bytes,
)
from receiptrecon.receipt.positioning import calibrate_positions
from receiptrecon.receipt.prompts import build_extraction_prompt, build_verification_prompt
from receiptrecon.runtime.config import ScanConfig, load_scan_config
from receiptrecon.runtime.logging import get_logger
from receiptrecon.runtime.receipt_pipeline import OCRServiceUnavailable, call_ocr_service
from receiptrecon.runtime.vision_client import (
    ExtractionFailed,
    HttpVisionExtractor,
    VisionExtractor,
    VisionRequest,
    VisionResponse,
    VisionServiceUnavailable,
)

logger = get_logger(__name__)

OcrTracer = Callable[[bytes], Awaitable[OcrTrace]]


@dataclass
class _ScanState:
    """Mutable bookkeeping shared by the pipeline stages of one scan."""

    started: float
    deadline_at: float | None
    events: list[ScanEvent] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    tokens_used: int | None = None
    cost_usd: float | None = None
    store_name: str | None = None
    incomplete: bool = False

    def remaining(self) -> float | None:
        if self.deadline_at is None:
            return None
        return max(0.0, self.deadline_at - time.monotonic())

    def warn(self, message: str) -> None:
        if message not in self.warnings:
            self.warnings.append(message)

    def account(self, response: VisionResponse) -> None:
        if response.tokens_used is not None:
            self.tokens_used = (self.tokens_used or 0) + response.tokens_used
        if response.cost_usd is not None:
            self.cost_usd = (self.cost_usd or 0.0) + response.cost_usd
        if self.store_name is None and response.store_name:
            self.store_name = response.store_name
        for warning in response.quality_warnings:
            self.warn(warning)


def _validate_image(image: bytes, mime_type: str) -> None:
    if not image:
        raise ValueError("Receipt image is empty")
    if not mime_type.startswith("image/"):
        raise ValueError(f"Unsupported mime type for a receipt image: {mime_type}")


def _ocr_service_tracer(config: ScanConfig) -> OcrTracer:
    async def trace(image: bytes) -> OcrTrace:
        return await call_ocr_service(image, config.ocr_service_url, timeout=config.request_timeout)

    return trace


async def _trace_ocr(image: bytes, tracer: OcrTracer, state: _ScanState) -> OcrTrace | None:
    """Fetch the OCR trace; any failure only costs the scan its hints."""
    try:
        remaining = state.remaining()
        trace = await asyncio.wait_for(tracer(image), timeout=remaining)
    except (OCRServiceUnavailable, TimeoutError) as exc:
        if isinstance(exc, TimeoutError) and state.remaining() == 0:
            state.incomplete = True
            state.warn("Scan incomplete: deadline reached while waiting for OCR")
        record_event(state.events, "ocr", f"OCR trace unavailable: {exc}", level="warning")
        state.warn("OCR positioning unavailable; item positions are estimated")
        return None
    record_event(state.events, "ocr", "OCR trace received", lines=len(trace.lines))
    return trace


async def _prepare_image(image: bytes, mime_type: str, config: ScanConfig) -> tuple[bytes, str]:
    """Downscale to the configured maximum; undecodable input is sent as is."""
    try:
        resized = await asyncio.to_thread(resize_image_bytes, image, config.max_image_dimension)
    except OSError as exc:
        logger.warning("Could not normalize receipt image, sending it unchanged: %s", exc)
        return image, mime_type
    return resized, "image/jpeg"


async def _chunk_image(image: bytes, chunk: ImageChunk) -> tuple[bytes, bool]:
    """Crop to the chunk band. The flag is False when the full image is returned."""
    try:
        return await asyncio.to_thread(crop_image_to_chunk, image, chunk), True
    except OSError as exc:
        logger.warning("Could not crop %s, sending the full image: %s", chunk.id, exc)
        return image, False


async def _extract_chunk(
    image: bytes,
    mime_type: str,
    chunk: ImageChunk,
    prompt: str,
    learning_examples: Sequence[LearningExample],
    extractor: VisionExtractor,
    config: ScanConfig,
    state: _ScanState,
) -> ChunkResult:
    """One chunk call, retried per config; failure degrades to an empty result."""
    request = VisionRequest(
        image=image,
        mime_type=mime_type,
        prompt=prompt,
        learning_examples=tuple(learning_examples),
    )
    attempts = 1 + max(0, config.chunk_retries)
    error = "not attempted"
    for attempt in range(1, attempts + 1):
        try:
            response = await asyncio.wait_for(
                extractor.extract(request, timeout=config.request_timeout),
                timeout=config.request_timeout,
            )
        except (VisionServiceUnavailable, TimeoutError) as exc:
            error = str(exc) or type(exc).__name__
            record_event(
                state.events,
                "chunk",
                f"{chunk.id} attempt {attempt}/{attempts} failed: {error}",
                level="warning",
                chunk_id=chunk.id,
                attempt=attempt,
            )
            continue

        state.account(response)
        record_event(
            state.events,
            "chunk",
            f"{chunk.id} returned {len(response.items)} items",
            chunk_id=chunk.id,
            attempt=attempt,
            item_count=len(response.items),
        )
        return ChunkResult(chunk=chunk, items=list(response.items))

    return ChunkResult(chunk=chunk, items=[], failed=True, error=error)


async def _run_chunks(
    image: bytes,
    mime_type: str,
    chunks: Sequence[ImageChunk],
    base_prompt: str,
    learning_examples: Sequence[LearningExample],
    extractor: VisionExtractor,
    config: ScanConfig,
    state: _ScanState,
) -> list[ChunkResult]:
    """Fan out one task per chunk and join them, honouring the deadline."""
    chunked = len(chunks) > 1

    async def run_one(chunk: ImageChunk) -> ChunkResult:
        if not chunked:
            return await _extract_chunk(
                image, mime_type, chunk, base_prompt, learning_examples, extractor, config, state
            )
        chunk_image, cropped = await _chunk_image(image, chunk)
        prompt = generate_chunk_prompt(chunk, base_prompt)
        result = await _extract_chunk(
            chunk_image, mime_type, chunk, prompt, learning_examples, extractor, config, state
        )
        if cropped:
            map_positions_to_page(result.items, chunk)
        return result

    tasks = {asyncio.create_task(run_one(chunk)): chunk for chunk in chunks}
    done, pending = await asyncio.wait(tasks, timeout=state.remaining())

    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
        state.incomplete = True
        missing = sorted(tasks[task].id for task in pending)
        record_event(
            state.events,
            "deadline",
            f"Deadline reached with {len(pending)} chunk(s) outstanding",
            level="warning",
            cancelled=missing,
        )
        state.warn(f"Scan incomplete: deadline reached before {', '.join(missing)} finished")

    # Keep the planned order; merging sorts by position anyway.
    return [task.result() for task in tasks if task in done]


async def _verify_gaps(
    image: bytes,
    mime_type: str,
    items: list[ReceiptItem],
    extractor: VisionExtractor,
    config: ScanConfig,
    state: _ScanState,
) -> list[ReceiptItem]:
    """Second pass over high-confidence gaps; returns only genuinely new items."""
    gaps = find_line_number_gaps(items)
    timeout = config.verification_timeout
    remaining = state.remaining()
    if remaining is not None:
        if remaining <= 0:
            state.incomplete = True
            state.warn("Scan incomplete: no time left to verify suspected missing items")
            record_event(state.events, "verify", "Skipped: deadline reached", level="warning")
            return []
        timeout = min(timeout, remaining)

    request = VisionRequest(image=image, mime_type=mime_type, prompt=build_verification_prompt(gaps, items))
    try:
        response = await asyncio.wait_for(extractor.extract(request, timeout=timeout), timeout=timeout)
    except (VisionServiceUnavailable, TimeoutError) as exc:
        record_event(state.events, "verify", f"Verification failed: {exc}", level="warning")
        state.warn("Verification pass failed; suspected missing items were not recovered")
        return []

    state.account(response)
    known = {dedup_key(item) for item in items}
    missed: list[ReceiptItem] = []
    for item in response.items:
        key = dedup_key(item)
        if key in known:
            continue
        known.add(key)
        missed.append(item)

    record_event(
        state.events,
        "verify",
        f"Verification recovered {len(missed)} item(s)",
        returned=len(response.items),
        recovered=len(missed),
    )
    return missed


async def extract(
    image: bytes,
    mime_type: str,
    learning_examples: Sequence[LearningExample] = (),
    options: ScanOptions | None = None,
    *,
    extractor: VisionExtractor,
    config: ScanConfig | None = None,
    deadline_seconds: float | None = None,
    ocr_tracer: OcrTracer | None = None,
) -> ScanResult:
    """
    Reconstruct a receipt from an image.

    Plans chunks, extracts them concurrently, merges and calibrates the
    result, optionally verifies high-confidence gaps, and attaches
    analytics. A deadline never raises: outstanding work is cancelled and
    the partial receipt is returned flagged ``incomplete``.

    Raises:
        ValueError: The image is empty or not an image mime type.
        ExtractionFailed: Every planned chunk failed and the deadline was
            not the cause.
    """
    _validate_image(image, mime_type)
    options = options or ScanOptions()
    config = config or load_scan_config()

    started = time.monotonic()
    state = _ScanState(
        started=started,
        deadline_at=started + deadline_seconds if deadline_seconds is not None else None,
    )

    trace: OcrTrace | None = None
    if options.enable_ocr:
        trace = await _trace_ocr(image, ocr_tracer or _ocr_service_tracer(config), state)

    base_prompt = build_extraction_prompt(
        learning_examples,
        ocr_context=format_ocr_for_prompt(trace) if trace is not None else None,
    )

    estimate = options.estimated_item_count
    if options.enable_chunking or should_use_chunking(estimate, config.chunking):
        chunks = generate_chunks(estimate, config.chunking)
    else:
        chunks = [full_receipt_chunk(estimate)]
    record_event(
        state.events,
        "plan",
        f"Extracting in {len(chunks)} chunk(s)",
        chunk_ids=[chunk.id for chunk in chunks],
        estimated_item_count=estimate,
    )

    vision_image, vision_mime = await _prepare_image(image, mime_type, config)
    results = await _run_chunks(
        vision_image, vision_mime, chunks, base_prompt, learning_examples, extractor, config, state
    )

    failed = [result for result in results if result.failed]
    if results and len(failed) == len(results) and not state.incomplete:
        raise ExtractionFailed(
            f"Receipt extraction failed: all {len(results)} chunk(s) failed ({failed[-1].error})"
        )
    for result in failed:
        state.warn(
            f"Chunk {result.chunk.id} ({result.chunk.expected_item_range}) failed; "
            "items in that region may be missing"
        )

    if len(chunks) > 1:
        items = merge_chunk_results(results, estimate)
    else:
        # Recognizer line numbers are kept until after gap detection.
        items = [item for result in results for item in result.items]
    record_event(state.events, "merge", f"{len(items)} item(s) after merge", item_count=len(items))

    if trace is not None:
        linked = apply_ocr_positions(items, trace)
        record_event(state.events, "ocr", f"Linked {linked} item(s) to OCR lines", linked=linked)

    initial_count = len(items)
    items = calibrate_positions(items)

    gaps = find_line_number_gaps(items)
    high_gaps = count_gaps(gaps, "high")
    record_event(
        state.events,
        "gaps",
        f"Found {len(gaps)} gap(s), {high_gaps} high confidence",
        gap_count=len(gaps),
        high_confidence=high_gaps,
    )

    found: list[ReceiptItem] = []
    if needs_verification(gaps):
        found = await _verify_gaps(vision_image, vision_mime, items, extractor, config, state)

    items = insert_missed_items(items, found) if found else renumber_items(items)
    if found or any(item.position_percent is None for item in items):
        items = calibrate_positions(items)

    metadata = ScanMetadata(
        initial_item_count=initial_count,
        verification_found_count=len(found),
        gap_count=len(gaps),
        high_confidence_gap_count=high_gaps,
        failed_chunk_count=len(failed),
        incomplete=state.incomplete,
        tokens_used=state.tokens_used,
        cost_usd=state.cost_usd,
        processing_time_ms=int((time.monotonic() - state.started) * 1000),
        events=state.events,
    )
    receipt = ExtractedReceipt(
        items=items,
        store_name=options.store_name or state.store_name,
        quality_warnings=state.warnings,
    )
    analytics = generate_receipt_analytics(receipt, metadata)
    log_analytics(analytics)
    return ScanResult(items=items, analytics=analytics, quality_warnings=list(state.warnings))


ScanStatus = Literal[
    "file_not_found",
    "invalid_image",
    "extraction_failed",
    "scanned",
]


@dataclass(frozen=True)
class ReceiptScanRequest:
    """Inputs for running receipt scan workflow."""

    image_path: Path
    options: ScanOptions = ScanOptions()
    learning_examples: tuple[LearningExample, ...] = ()
    deadline_seconds: float | None = None
    config: ScanConfig | None = None


@dataclass(frozen=True)
class ReceiptScanResult:
    """Outcome from receipt scan workflow."""

    status: ScanStatus
    result: ScanResult | None = None
    error: str | None = None


def run_receipt_scan(request: ReceiptScanRequest) -> ReceiptScanResult:
    """Run scan flow synchronously: read image -> extract -> result."""
    if not request.image_path.exists():
        return ReceiptScanResult(
            status="file_not_found",
            error=f"Receipt file not found: {request.image_path}",
        )

    mime_type = mimetypes.guess_type(request.image_path.name)[0] or "image/jpeg"
    image = request.image_path.read_bytes()
    config = request.config or load_scan_config()

    async def _scan() -> ScanResult:
        async with HttpVisionExtractor(
            config.vision_service_url,
            timeout=config.request_timeout,
            input_price_per_million=config.input_token_price_per_million,
            output_price_per_million=config.output_token_price_per_million,
        ) as extractor:
            return await extract(
                image,
                mime_type,
                request.learning_examples,
                request.options,
                extractor=extractor,
                config=config,
                deadline_seconds=request.deadline_seconds,
            )

    try:
        result = asyncio.run(_scan())
    except ValueError as exc:
        return ReceiptScanResult(status="invalid_image", error=str(exc))
    except ExtractionFailed as exc:
        return ReceiptScanResult(status="extraction_failed", error=str(exc))

    return ReceiptScanResult(status="scanned", result=result)
