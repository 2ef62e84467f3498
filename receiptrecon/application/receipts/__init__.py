"""Receipt workflows."""

from receiptrecon.application.receipts.scan import (
    ReceiptScanRequest,
    ReceiptScanResult,
    extract,
    run_receipt_scan,
)

__all__ = [
    "extract",
    "ReceiptScanRequest",
    "ReceiptScanResult",
    "run_receipt_scan",
]
