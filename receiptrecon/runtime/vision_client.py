"""Client for the vision extraction service."""

from __future__ import annotations

import base64
import json
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from receiptrecon.domain.receipt import LearningExample, ReceiptItem
from receiptrecon.receipt.analytics import estimate_cost_usd
from receiptrecon.receipt.item_validation import parse_raw_items
from receiptrecon.runtime.logging import get_logger

logger = get_logger(__name__)


class VisionServiceUnavailable(RuntimeError):
    """Raised when the vision service cannot be reached or returns an error."""


class ExtractionFailed(RuntimeError):
    """Raised when every planned chunk failed, so there is nothing to return."""


@dataclass(frozen=True)
class VisionRequest:
    """One image + prompt submitted to the recognizer."""

    image: bytes
    mime_type: str
    prompt: str
    learning_examples: Sequence[LearningExample] = ()


@dataclass
class VisionResponse:
    """Validated recognizer output."""

    items: list[ReceiptItem] = field(default_factory=list)
    quality_warnings: list[str] = field(default_factory=list)
    tokens_used: int | None = None
    cost_usd: float | None = None
    store_name: str | None = None


class VisionExtractor(Protocol):
    """Anything that can turn a VisionRequest into a VisionResponse."""

    async def extract(self, request: VisionRequest, timeout: float | None = None) -> VisionResponse: ...


def _optional_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def parse_vision_payload(
    payload: Any,
    input_price_per_million: float = 0.0,
    output_price_per_million: float = 0.0,
) -> VisionResponse:
    """
    Validate a raw service response body.

    Items go through the parse-and-validate boundary; optional token and
    warning fields are accepted only when they have the expected shape.
    """
    if not isinstance(payload, dict):
        raise VisionServiceUnavailable("Vision service returned a non-object response")

    warnings: list[str] = []
    raw_warnings = payload.get("quality_warnings")
    if isinstance(raw_warnings, list):
        warnings.extend(str(w) for w in raw_warnings if isinstance(w, str) and w.strip())

    items = parse_raw_items(payload.get("items"), warnings)

    input_tokens = _optional_int(payload.get("input_tokens"))
    output_tokens = _optional_int(payload.get("output_tokens"))
    tokens_used = _optional_int(payload.get("tokens_used"))
    if tokens_used is None and (input_tokens is not None or output_tokens is not None):
        tokens_used = (input_tokens or 0) + (output_tokens or 0)

    cost = payload.get("cost_usd")
    cost_usd = float(cost) if isinstance(cost, (int, float)) and not isinstance(cost, bool) else None
    if cost_usd is None and (input_tokens is not None or output_tokens is not None):
        cost_usd = estimate_cost_usd(
            input_tokens or 0,
            output_tokens or 0,
            input_price_per_million,
            output_price_per_million,
        )

    store_name = payload.get("store_name")
    return VisionResponse(
        items=items,
        quality_warnings=warnings,
        tokens_used=tokens_used,
        cost_usd=cost_usd,
        store_name=(store_name.strip() or None) if isinstance(store_name, str) else None,
    )


class HttpVisionExtractor:
    """
    Vision extraction over HTTP.

    POSTs ``{"image", "mime_type", "prompt", "learning_examples"}`` as JSON to
    ``{base_url}/extract``. The image travels base64-encoded.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 60.0,
        input_price_per_million: float = 0.0,
        output_price_per_million: float = 0.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.input_price_per_million = input_price_per_million
        self.output_price_per_million = output_price_per_million
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> HttpVisionExtractor:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def extract(self, request: VisionRequest, timeout: float | None = None) -> VisionResponse:
        body = {
            "image": base64.b64encode(request.image).decode("ascii"),
            "mime_type": request.mime_type,
            "prompt": request.prompt,
            "learning_examples": [
                {"ai_extracted_name": ex.ai_extracted_name, "corrected_name": ex.corrected_name}
                for ex in request.learning_examples
            ],
        }

        start_time = time.time()
        try:
            response = await self._get_client().post(
                f"{self.base_url}/extract",
                json=body,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except httpx.RequestError as e:
            logger.error("Failed to reach vision service: %s", e)
            raise VisionServiceUnavailable(f"Failed to reach vision service: {e}") from e

        logger.info("Vision service returned in %.2f seconds", time.time() - start_time)

        if response.status_code != 200:
            logger.error("Vision service error: %s", response.status_code)
            raise VisionServiceUnavailable(f"Vision service error: {response.status_code}")

        try:
            payload = response.json()
        except json.JSONDecodeError as e:
            raise VisionServiceUnavailable("Vision service returned invalid JSON") from e

        return parse_vision_payload(payload, self.input_price_per_million, self.output_price_per_million)
