"""Runtime helpers for the optional OCR trace (non-HTTP-server)."""

import asyncio
import time

import httpx

from receiptrecon.receipt.ocr_helpers import OCR_IMAGE_PADDING, OcrTrace, resize_image_bytes, transform_ocr_result
from receiptrecon.runtime.logging import get_logger

logger = get_logger(__name__)


class OCRServiceUnavailable(RuntimeError):
    """Raised when the OCR service cannot be reached or returns an error."""


async def call_ocr_service(
    image_bytes: bytes,
    ocr_url: str,
    *,
    timeout: float = 60.0,
    client: httpx.AsyncClient | None = None,
) -> OcrTrace:
    """
    Send the receipt image to the OCR service and return its line trace.

    The image is padded before upload; the trace is mapped back to unpadded
    pixel coordinates.
    """
    ocr_url = ocr_url.rstrip("/")
    logger.info("Sending receipt to OCR service at %s...", ocr_url)

    try:
        padded_bytes = await asyncio.to_thread(resize_image_bytes, image_bytes, padding=OCR_IMAGE_PADDING)
    except OSError as e:
        raise OCRServiceUnavailable(f"Could not prepare image for OCR: {e}") from e

    start_time = time.time()
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=timeout) as own_client:
                response = await own_client.post(
                    f"{ocr_url}/ocr",
                    files={"file": ("receipt.jpg", padded_bytes, "image/jpeg")},
                )
        else:
            response = await client.post(
                f"{ocr_url}/ocr",
                files={"file": ("receipt.jpg", padded_bytes, "image/jpeg")},
                timeout=timeout,
            )
    except httpx.RequestError as e:
        logger.error("Failed to connect to OCR service: %s", e)
        raise OCRServiceUnavailable(f"Failed to connect to OCR service: {e}") from e

    logger.info("OCR service returned in %.2f seconds", time.time() - start_time)

    if response.status_code != 200:
        logger.error("OCR service error: %s", response.status_code)
        raise OCRServiceUnavailable(f"OCR service error: {response.status_code}")

    try:
        trace = transform_ocr_result(response.json(), padding=OCR_IMAGE_PADDING)
    except (ValueError, KeyError, TypeError) as e:
        raise OCRServiceUnavailable(f"OCR service returned an unreadable result: {e}") from e

    logger.debug("OCR trace has %d lines", len(trace.lines))
    return trace
