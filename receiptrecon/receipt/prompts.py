"""Prompt text sent to the vision extraction service."""

from collections.abc import Sequence

from receiptrecon.domain.receipt import Gap, LearningExample, ReceiptItem

from .gap_detection import format_gaps_for_prompt

MAX_LEARNING_EXAMPLES = 10

EXTRACTION_PROMPT = """You are a receipt extraction expert. Extract every purchased item from this grocery receipt image and return it as valid JSON.

Return an object with:
- store_name (string): Name of the store, if visible
- quality_warnings (array of strings): Anything that made the receipt hard to read
- items (array of objects), each with:
  - name (string): Item name, cleaned up and normalized
  - quantity (string): Quantity purchased (e.g. "2 lb", "1 dozen"), if shown
  - price (number): Line price in dollars
  - unit_price (number): Price per unit, if shown
  - category (string): One of "produce", "dairy", "meat", "pantry", "frozen", "non_food"
  - is_food (boolean): false for bags, gift wrap and household goods
  - source_text (string): EXACT text of the receipt line, including codes and abbreviations
  - line_number (number): Position of the item in the item list, counting from 1 at the top
  - position_percent (number): Vertical position of the line, 0 = top of the receipt, 100 = bottom
  - is_first_item (boolean): true only for the first item on the receipt
  - is_last_item (boolean): true only for the last item on the receipt
  - is_anchor_mid (boolean): true for 2-3 clearly readable items spread through the middle

IMPORTANT INSTRUCTIONS:
1. Do not skip lines; every priced item line gets its own entry and line_number
2. Prices are numbers without currency symbols
3. Do not include subtotal, tax, total or payment lines as items
4. Estimate position_percent carefully for the anchor items
5. Return ONLY valid JSON - no markdown, no explanations"""


def format_learning_examples(examples: Sequence[LearningExample]) -> str:
    """Render past user corrections as few-shot hints (at most ten)."""
    if not examples:
        return ""

    formatted = "\n".join(
        f'  - AI extracted: "{ex.ai_extracted_name}" -> User corrected to: "{ex.corrected_name}"'
        for ex in examples[:MAX_LEARNING_EXAMPLES]
    )
    return (
        "\n\nPREVIOUS CORRECTIONS (learn from these):\n"
        f"{formatted}\n\n"
        "Use these examples to improve extraction accuracy for similar items."
    )


def build_extraction_prompt(
    learning_examples: Sequence[LearningExample] = (),
    ocr_context: str | None = None,
) -> str:
    parts = [EXTRACTION_PROMPT, format_learning_examples(learning_examples)]
    if ocr_context:
        parts.append(f"\n\n{ocr_context}")
    parts.append("\n\nExtract the receipt data from this image. Return the data as JSON:")
    return "".join(parts)


def build_verification_prompt(gaps: Sequence[Gap], items: Sequence[ReceiptItem]) -> str:
    """Ask the recognizer to look again at the suspected missing lines only."""
    extracted = "\n".join(
        f"  {item.line_number}. {item.name} ${item.price:.2f}" for item in items if item.line_number is not None
    )
    return (
        "A first pass over this receipt extracted the items below, but the line numbering has gaps "
        "that suggest some items were skipped.\n\n"
        f"ALREADY EXTRACTED:\n{extracted}\n\n"
        f"{format_gaps_for_prompt(gaps)}\n\n"
        "Look closely at those parts of the receipt. Return JSON with an \"items\" array containing ONLY "
        "items that are missing from the list above, using the same fields as before. Set each item's "
        "line_number to the missing line it fills. Return an empty array if nothing was missed."
    )
