"""Reconstruct itemized receipts from recognizer output.

Long receipts are extracted in overlapping chunks, merged, positioned against
anchor items and checked for skipped lines before analytics are attached.
"""

__version__ = "0.1.0"
