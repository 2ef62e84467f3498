"""Tests for the OCR trace client."""

from __future__ import annotations

import asyncio
import io
import threading

import httpx
import pytest
from PIL import Image

from receiptrecon.receipt.ocr_helpers import OcrTrace
from receiptrecon.runtime import receipt_pipeline
from receiptrecon.runtime.receipt_pipeline import OCRServiceUnavailable, call_ocr_service


def _png() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (40, 80), "white").save(buffer, format="PNG")
    return buffer.getvalue()


def _ocr_payload() -> dict:
    return {
        "image_width": 140,
        "image_height": 180,
        "detections": [
            [[[55, 60], [90, 60], [90, 70], [55, 70]], ["APPLES", 0.98]],
            [[[55, 110], [90, 110], [90, 120], [55, 120]], ["MILK", 0.95]],
        ],
    }


def _trace_with(transport: httpx.MockTransport, image: bytes) -> OcrTrace:
    async def run() -> OcrTrace:
        async with httpx.AsyncClient(transport=transport) as client:
            return await call_ocr_service(image, "http://ocr.test/", client=client)

    return asyncio.run(run())


def test_call_ocr_service_returns_unpadded_trace() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_ocr_payload())

    trace = _trace_with(httpx.MockTransport(handler), _png())

    assert str(seen[0].url) == "http://ocr.test/ocr"
    assert (trace.image_width, trace.image_height) == (40, 80)
    assert [line.text for line in trace.lines] == ["APPLES", "MILK"]
    assert trace.lines[0].y_min == 10


def test_image_is_padded_off_the_event_loop(monkeypatch: pytest.MonkeyPatch) -> None:
    threads: list[int] = []
    original = receipt_pipeline.resize_image_bytes

    def recording_resize(image_bytes: bytes, *args: object, **kwargs: object) -> bytes:
        threads.append(threading.get_ident())
        return original(image_bytes, *args, **kwargs)

    monkeypatch.setattr(receipt_pipeline, "resize_image_bytes", recording_resize)
    loop_threads: list[int] = []

    async def run() -> None:
        loop_threads.append(threading.get_ident())
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=_ocr_payload()))
        async with httpx.AsyncClient(transport=transport) as client:
            await call_ocr_service(_png(), "http://ocr.test", client=client)

    asyncio.run(run())

    assert len(threads) == 1
    assert threads[0] != loop_threads[0]


def test_undecodable_image_reports_service_unavailable() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json=_ocr_payload()))

    with pytest.raises(OCRServiceUnavailable, match="Could not prepare image"):
        _trace_with(transport, b"not an image")


def test_ocr_http_error_reports_service_unavailable() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(503))

    with pytest.raises(OCRServiceUnavailable, match="503"):
        _trace_with(transport, _png())
