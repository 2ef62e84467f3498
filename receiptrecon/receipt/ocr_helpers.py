"""Pure image and OCR-trace helpers for receipt extraction."""

import io
import re
from dataclasses import dataclass, field
from typing import Any

from receiptrecon.domain.receipt import ImageChunk, ReceiptItem

MAX_IMAGE_DIMENSION = 3000  # Resize if either dimension exceeds this
OCR_IMAGE_PADDING = 50  # White padding the OCR service input carries on every side

MIN_OCR_CONFIDENCE = 0.7
MIN_OCR_TEXT_LENGTH = 2
MIN_LINE_MATCH_SIMILARITY = 0.5


def resize_image_bytes(image_bytes: bytes, max_dimension: int = MAX_IMAGE_DIMENSION, padding: int = 0) -> bytes:
    """
    Resize image bytes if it exceeds max_dimension on either side.

    Args:
        image_bytes: Image data as bytes
        max_dimension: Maximum allowed dimension (width or height)
        padding: White padding to add around image (pixels)

    Returns:
        Image bytes (JPEG format), resized if necessary, with padding added
    """
    from PIL import Image, ImageOps

    img = Image.open(io.BytesIO(image_bytes))

    # Apply EXIF orientation so every consumer sees the same page layout
    img = ImageOps.exif_transpose(img)

    width, height = img.size

    if width <= max_dimension and height <= max_dimension:
        img_final = img
    else:
        if width > height:
            new_width = max_dimension
            new_height = int(height * (max_dimension / width))
        else:
            new_height = max_dimension
            new_width = int(width * (max_dimension / height))

        img_final = img.resize((new_width, new_height), Image.Resampling.LANCZOS)

    if padding > 0:
        img_final = ImageOps.expand(img_final, border=padding, fill="white")

    buffer = io.BytesIO()
    img_final.convert("RGB").save(buffer, format="JPEG", quality=95)
    return buffer.getvalue()


def crop_image_to_chunk(image_bytes: bytes, chunk: ImageChunk) -> bytes:
    """
    Crop a receipt image to the vertical band described by a chunk.

    A full-height chunk returns the input unchanged.
    """
    if chunk.y_start_percent <= 0 and chunk.y_end_percent >= 100:
        return image_bytes

    from PIL import Image, ImageOps

    img = ImageOps.exif_transpose(Image.open(io.BytesIO(image_bytes)))
    width, height = img.size

    top = int(height * max(0.0, chunk.y_start_percent) / 100)
    bottom = int(round(height * min(100.0, chunk.y_end_percent) / 100))
    bottom = max(bottom, top + 1)

    cropped = img.crop((0, top, width, min(bottom, height)))
    buffer = io.BytesIO()
    cropped.convert("RGB").save(buffer, format="JPEG", quality=95)
    return buffer.getvalue()


@dataclass(frozen=True)
class OcrLine:
    """One text line from the OCR trace, in unpadded image pixels."""

    id: int
    text: str
    y_min: float
    y_max: float
    avg_confidence: float


@dataclass
class OcrTrace:
    """Line-level OCR output used to pin item positions."""

    image_width: int
    image_height: int
    lines: list[OcrLine] = field(default_factory=list)

    def line_by_id(self, line_id: int) -> OcrLine | None:
        return next((line for line in self.lines if line.id == line_id), None)


def _boxes_overlap_y(det1: dict, det2: dict, min_overlap_ratio: float = 0.5) -> bool:
    """
    Check if two boxes overlap in Y-axis by at least min_overlap_ratio.

    The ratio is measured against the shorter box, so a tall box still pairs
    with the short text sitting inside its vertical span.
    """
    overlap_start = max(det1["y_min"], det2["y_min"])
    overlap_end = min(det1["y_max"], det2["y_max"])

    if overlap_start >= overlap_end:
        return False

    smaller_height = min(det1["y_max"] - det1["y_min"], det2["y_max"] - det2["y_min"])
    if smaller_height <= 0:
        return False

    return (overlap_end - overlap_start) / smaller_height >= min_overlap_ratio


def transform_ocr_result(raw_result: dict[str, Any], padding: int = OCR_IMAGE_PADDING) -> OcrTrace:
    """
    Turn a raw PaddleOCR response into a line-level trace.

    Detections below the confidence floor or shorter than two characters are
    dropped; the rest are grouped into lines by vertical overlap and ordered
    top to bottom, then left to right within a line.
    """
    image_width = int(raw_result.get("image_width", 0)) - 2 * padding
    image_height = int(raw_result.get("image_height", 0)) - 2 * padding

    detections: list[dict[str, Any]] = []
    for detection in raw_result.get("detections", []):
        bbox, (text, confidence) = detection
        if confidence < MIN_OCR_CONFIDENCE or len(text.strip()) < MIN_OCR_TEXT_LENGTH:
            continue
        y_coords = [point[1] - padding for point in bbox]
        detections.append(
            {
                "text": text.strip(),
                "confidence": float(confidence),
                "y_min": min(y_coords),
                "y_max": max(y_coords),
                "min_x": min(point[0] - padding for point in bbox),
            }
        )

    detections.sort(key=lambda d: (d["y_min"], d["min_x"]))

    grouped: list[list[dict[str, Any]]] = []
    for det in detections:
        if grouped and _boxes_overlap_y(det, _span(grouped[-1])):
            grouped[-1].append(det)
        else:
            grouped.append([det])

    lines: list[OcrLine] = []
    for line_id, group in enumerate(grouped):
        group.sort(key=lambda d: d["min_x"])
        lines.append(
            OcrLine(
                id=line_id,
                text=" ".join(d["text"] for d in group),
                y_min=min(d["y_min"] for d in group),
                y_max=max(d["y_max"] for d in group),
                avg_confidence=sum(d["confidence"] for d in group) / len(group),
            )
        )

    return OcrTrace(image_width=max(image_width, 0), image_height=max(image_height, 0), lines=lines)


def _span(group: list[dict[str, Any]]) -> dict[str, float]:
    return {"y_min": min(d["y_min"] for d in group), "y_max": max(d["y_max"] for d in group)}


def format_ocr_for_prompt(trace: OcrTrace) -> str:
    """Render the OCR trace as context for the extraction prompt."""
    rows = "\n".join(
        f"  line_id={line.id} y={line.y_min:.0f} confidence={line.avg_confidence:.2f} text={line.text!r}"
        for line in trace.lines
    )
    return (
        f"OCR TEXT STRUCTURE ({len(trace.lines)} lines detected, "
        f"image {trace.image_width}x{trace.image_height}px):\n"
        f"{rows}\n"
        "\n"
        "INSTRUCTIONS FOR USING OCR DATA:\n"
        '1. For each item you extract, reference the OCR line via "ocr_line_id"\n'
        "2. OCR text may contain errors; use the IMAGE to correct them\n"
        "3. If an item spans multiple OCR lines, reference the FIRST line\n"
    )


def calculate_position_from_ocr(line_id: int, trace: OcrTrace) -> float | None:
    """Vertical position (0-100) of an OCR line's top edge; None if unknown."""
    line = trace.line_by_id(line_id)
    if line is None or trace.image_height <= 0:
        return None
    return max(0.0, min(100.0, line.y_min / trace.image_height * 100))


def _normalize_words(text: str) -> set[str]:
    return {word for word in re.sub(r"[^\w\s]", "", text.lower()).split() if word}


def _text_similarity(text1: str, text2: str) -> float:
    """Jaccard similarity over word sets."""
    words1 = _normalize_words(text1)
    words2 = _normalize_words(text2)
    union = words1 | words2
    if not union:
        return 0.0
    return len(words1 & words2) / len(union)


def match_item_to_ocr_line(source_text: str, trace: OcrTrace) -> int | None:
    """Return the id of the OCR line most similar to source_text, if any is close enough."""
    best_id: int | None = None
    best_similarity = MIN_LINE_MATCH_SIMILARITY
    for line in trace.lines:
        similarity = _text_similarity(source_text, line.text)
        if similarity > best_similarity:
            best_id = line.id
            best_similarity = similarity
    return best_id


def apply_ocr_positions(items: list[ReceiptItem], trace: OcrTrace) -> int:
    """
    Seed position_percent from the OCR trace before calibration.

    Items that did not reference an OCR line are matched by source_text.
    Returns the number of items whose position came from OCR.
    """
    seeded = 0
    for item in items:
        if item.ocr_line_id is None and item.source_text:
            item.ocr_line_id = match_item_to_ocr_line(item.source_text, trace)
        if item.ocr_line_id is None:
            continue
        position = calculate_position_from_ocr(item.ocr_line_id, trace)
        if position is None:
            continue
        item.position_percent = position
        seeded += 1
    return seeded
