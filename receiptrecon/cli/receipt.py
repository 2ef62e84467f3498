"""Receipt command handlers used by the unified CLI."""

import argparse
import json
import sys
from dataclasses import replace
from pathlib import Path

from receiptrecon.domain.receipt import ScanOptions
from receiptrecon.receipt.formatter import format_scan_result, scan_result_to_dict
from receiptrecon.runtime import get_logger, load_scan_config

logger = get_logger(__name__)


def cmd_serve(args: argparse.Namespace) -> None:
    """Start the FastAPI server for receipt scanning."""
    import uvicorn

    from receiptrecon.application.receipts.scan import extract
    from receiptrecon.runtime.receipt_server import create_app

    app = create_app(extract)

    print(f"Starting receipt server on {args.host}:{args.port}")
    print(f"Scan endpoint: http://{args.host}:{args.port}/scan-receipt")
    print("Press Ctrl+C to stop")

    uvicorn.run(app, host=args.host, port=args.port)


def cmd_scan(args: argparse.Namespace) -> None:
    """Scan a receipt image and print the reconstructed items."""
    from receiptrecon.application.receipts.scan import ReceiptScanRequest, run_receipt_scan

    if args.estimated_items < 0:
        print("Error: --estimated-items must not be negative")
        sys.exit(1)

    config = load_scan_config()
    if args.vision_url:
        config = replace(config, vision_service_url=args.vision_url)
    if args.ocr_url:
        config = replace(config, ocr_service_url=args.ocr_url)

    result = run_receipt_scan(
        ReceiptScanRequest(
            image_path=Path(args.image),
            options=ScanOptions(
                enable_chunking=args.chunking,
                enable_ocr=args.ocr,
                estimated_item_count=args.estimated_items,
                store_name=args.store,
            ),
            deadline_seconds=args.deadline,
            config=config,
        )
    )

    if result.status in ("file_not_found", "invalid_image"):
        logger.error("%s", result.error)
        print(f"Error: {result.error}")
        sys.exit(1)

    if result.status == "extraction_failed":
        logger.error("%s", result.error)
        print(f"Extraction failed: {result.error}")
        print("Make sure the vision service is running before scanning receipts.")
        sys.exit(1)

    scan = result.result
    if scan is None:
        print("Scan failed: missing receipt output.")
        sys.exit(1)

    if args.json:
        print(json.dumps(scan_result_to_dict(scan), indent=2))
        return

    print("\n" + "=" * 60)
    print("RECONSTRUCTED RECEIPT")
    print("=" * 60)
    print(format_scan_result(scan))
    print("=" * 60)
