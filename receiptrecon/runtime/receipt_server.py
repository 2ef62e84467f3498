"""FastAPI server exposing receipt scanning over HTTP."""

import base64
import binascii
import re
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from receiptrecon.domain.receipt import LearningExample, ScanOptions, ScanResult
from receiptrecon.receipt.formatter import scan_result_to_dict
from receiptrecon.runtime.config import ScanConfig, load_scan_config
from receiptrecon.runtime.logging import get_logger
from receiptrecon.runtime.vision_client import ExtractionFailed, HttpVisionExtractor, VisionExtractor

logger = get_logger(__name__)

# Same signature as receiptrecon.application.receipts.extract, injected by the caller.
ScanReceipt = Callable[..., Awaitable[ScanResult]]

_DATA_URL_RE = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)


class PayloadError(ValueError):
    """Request body is missing or malformed; reported as HTTP 400."""


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status_code)


def decode_image_data(image_data: Any) -> tuple[str, bytes]:
    """Split a ``data:<mime>;base64,...`` URL into its mime type and bytes."""
    if not image_data:
        raise PayloadError("No image data provided")
    if not isinstance(image_data, str):
        raise PayloadError("Invalid image data format. Expected base64 data URL.")

    match = _DATA_URL_RE.match(image_data)
    if not match:
        raise PayloadError("Invalid image data format. Expected base64 data URL.")

    mime_type, encoded = match.groups()
    if not mime_type.startswith("image/"):
        raise PayloadError("Invalid file type. Must be an image.")

    try:
        image = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise PayloadError("Invalid image data format. Expected base64 data URL.") from exc
    if not image:
        raise PayloadError("No image data provided")
    return mime_type, image


def _learning_examples(raw: Any) -> list[LearningExample]:
    if not isinstance(raw, list):
        return []
    examples: list[LearningExample] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        extracted = entry.get("ai_extracted_name")
        corrected = entry.get("corrected_name")
        if isinstance(extracted, str) and isinstance(corrected, str) and extracted and corrected:
            examples.append(LearningExample(ai_extracted_name=extracted, corrected_name=corrected))
    return examples


def _scan_options(payload: dict[str, Any]) -> ScanOptions:
    estimate = payload.get("estimated_item_count", 0)
    if estimate is None:
        estimate = 0
    if isinstance(estimate, bool) or not isinstance(estimate, int) or estimate < 0:
        raise PayloadError("estimated_item_count must be a non-negative integer")

    store_name = payload.get("store_name")
    return ScanOptions(
        enable_chunking=bool(payload.get("enable_chunking", False)),
        enable_ocr=bool(payload.get("enable_ocr", False)),
        estimated_item_count=estimate,
        store_name=store_name if isinstance(store_name, str) and store_name.strip() else None,
    )


def _deadline(payload: dict[str, Any]) -> float | None:
    deadline = payload.get("deadline_seconds")
    if deadline is None:
        return None
    if isinstance(deadline, bool) or not isinstance(deadline, (int, float)) or deadline <= 0:
        raise PayloadError("deadline_seconds must be a positive number")
    return float(deadline)


def create_app(
    scan_receipt: ScanReceipt,
    *,
    config: ScanConfig | None = None,
    extractor: VisionExtractor | None = None,
) -> FastAPI:
    """
    Build the HTTP app.

    Args:
        scan_receipt: The scan pipeline entry point.
        config: Scanner settings; loaded from the environment when omitted.
        extractor: Vision extractor to use. When omitted an HTTP extractor is
            opened for the app's lifetime.
    """
    config = config or load_scan_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        if app.state.extractor is not None:
            yield
            return
        async with HttpVisionExtractor(
            config.vision_service_url,
            timeout=config.request_timeout,
            input_price_per_million=config.input_token_price_per_million,
            output_price_per_million=config.output_token_price_per_million,
        ) as http_extractor:
            app.state.extractor = http_extractor
            logger.info("Using vision service at %s", config.vision_service_url)
            yield
            app.state.extractor = None

    app = FastAPI(title="Receipt Reconstruction", lifespan=lifespan)
    app.state.extractor = extractor

    @app.post("/scan-receipt")
    async def scan_receipt_route(request: Request) -> JSONResponse:
        """Reconstruct the items of one receipt image."""
        try:
            payload = await request.json()
        except ValueError:
            return _error("Request body must be JSON", 400)
        if not isinstance(payload, dict):
            return _error("Request body must be a JSON object", 400)

        try:
            mime_type, image = decode_image_data(payload.get("image_data"))
            options = _scan_options(payload)
            deadline_seconds = _deadline(payload)
        except PayloadError as exc:
            return _error(str(exc), 400)

        try:
            result = await scan_receipt(
                image,
                mime_type,
                _learning_examples(payload.get("learning_examples")),
                options,
                extractor=app.state.extractor,
                config=config,
                deadline_seconds=deadline_seconds,
            )
        except ExtractionFailed as exc:
            logger.error("Receipt extraction failed: %s", exc)
            return _error(str(exc), 502)
        except ValueError as exc:
            return _error(str(exc), 400)

        logger.info(
            "Scanned receipt: %d items, %d warnings",
            len(result.items),
            len(result.quality_warnings),
        )
        return JSONResponse({"success": True, **scan_result_to_dict(result)})

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok"}

    return app
