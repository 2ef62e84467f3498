"""Tests for the receipt scanning HTTP surface."""

from __future__ import annotations

import base64
import io
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from receiptrecon.application.receipts.scan import extract
from receiptrecon.domain.receipt import ReceiptItem
from receiptrecon.runtime.config import ScanConfig
from receiptrecon.runtime.receipt_server import PayloadError, create_app, decode_image_data
from receiptrecon.runtime.vision_client import VisionRequest, VisionResponse, VisionServiceUnavailable


class StaticExtractor:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.requests: list[VisionRequest] = []

    async def extract(self, request: VisionRequest, timeout: float | None = None) -> VisionResponse:
        self.requests.append(request)
        if self.fail:
            raise VisionServiceUnavailable("Vision service error: 500")
        return VisionResponse(
            items=[
                ReceiptItem(
                    name="Apples", price=Decimal("3.50"), line_number=1, position_percent=10.0, is_first_item=True
                ),
                ReceiptItem(
                    name="Milk", price=Decimal("4.99"), line_number=2, position_percent=80.0, is_last_item=True
                ),
            ],
            tokens_used=120,
        )


def _data_url(mime_type: str = "image/png") -> str:
    buffer = io.BytesIO()
    Image.new("RGB", (40, 120), "white").save(buffer, format="PNG")
    return f"data:{mime_type};base64,{base64.b64encode(buffer.getvalue()).decode('ascii')}"


def _client(extractor: StaticExtractor) -> TestClient:
    app = create_app(extract, config=ScanConfig(request_timeout=5.0), extractor=extractor)
    return TestClient(app)


def test_health() -> None:
    with _client(StaticExtractor()) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_scan_receipt_returns_items_and_analytics() -> None:
    extractor = StaticExtractor()
    with _client(extractor) as client:
        response = client.post(
            "/scan-receipt",
            json={
                "image_data": _data_url(),
                "store_name": "Fresh Mart",
                "learning_examples": [{"ai_extracted_name": "APL", "corrected_name": "Apples"}, "junk"],
            },
        )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert [item["name"] for item in body["items"]] == ["Apples", "Milk"]
    assert body["items"][1]["price"] == "4.99"
    assert body["items"][0]["line_number"] == 1
    assert body["analytics"]["store_name"] == "Fresh Mart"
    assert body["analytics"]["capture_metrics"]["capture_rate_estimate"] == 100.0
    assert body["quality_warnings"] == []
    assert len(extractor.requests[0].learning_examples) == 1
    assert extractor.requests[0].mime_type == "image/png"


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ({}, "No image data provided"),
        ({"image_data": "not-a-data-url"}, "Expected base64 data URL"),
        ({"image_data": "data:application/pdf;base64,JVBERi0x"}, "Must be an image"),
        ({"image_data": "data:image/png;base64,@@@"}, "Expected base64 data URL"),
        ({"image_data": _data_url(), "estimated_item_count": -1}, "estimated_item_count"),
        ({"image_data": _data_url(), "deadline_seconds": "soon"}, "deadline_seconds"),
    ],
)
def test_scan_receipt_rejects_bad_payloads(payload: dict[str, object], message: str) -> None:
    extractor = StaticExtractor()
    with _client(extractor) as client:
        response = client.post("/scan-receipt", json=payload)

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert message in response.json()["error"]
    assert extractor.requests == []


def test_scan_receipt_rejects_non_json_body() -> None:
    with _client(StaticExtractor()) as client:
        response = client.post("/scan-receipt", content=b"image bytes", headers={"content-type": "image/png"})

    assert response.status_code == 400


def test_total_extraction_failure_is_bad_gateway() -> None:
    with _client(StaticExtractor(fail=True)) as client:
        response = client.post("/scan-receipt", json={"image_data": _data_url()})

    assert response.status_code == 502
    assert "extraction failed" in response.json()["error"]


def test_decode_image_data() -> None:
    mime_type, image = decode_image_data("data:image/jpeg;base64,aGVsbG8=")

    assert mime_type == "image/jpeg"
    assert image == b"hello"
    with pytest.raises(PayloadError):
        decode_image_data(42)
