#!/usr/bin/env python3

import argparse
import logging
from collections.abc import Callable, Sequence


def _coerce_exit_code(code: object) -> int:
    if code is None:
        return 0
    if isinstance(code, int):
        return code
    return 1


def _run_command(command: Callable[[argparse.Namespace], None], args: argparse.Namespace) -> int:
    """
    Normalize command handlers that call sys.exit().

    This keeps process termination centralized in this module's entrypoint.
    """
    try:
        command(args)
    except SystemExit as exc:
        return _coerce_exit_code(exc.code)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Receipt reconstruction CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  scan <image>               Reconstruct the items of a receipt image
  serve [--host] [--port]    Start the receipt scanning HTTP server

Environment:
  VISION_SERVICE_URL         Vision extraction service (default: http://localhost:8002)
  OCR_SERVICE_URL            OCR trace service (default: http://localhost:8001)
  RECEIPTRECON_CONFIG        Settings file (default: config/receiptrecon.toml)
  RECEIPTRECON_LOG_LEVEL     DEBUG, INFO, WARNING or ERROR
""",
    )

    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # scan command
    scan_parser = subparsers.add_parser("scan", help="Scan a receipt image")
    scan_parser.add_argument("image", help="Path to receipt image")
    scan_parser.add_argument("--vision-url", default=None, help="Vision service URL (overrides config)")
    scan_parser.add_argument("--ocr-url", default=None, help="OCR service URL (overrides config)")
    scan_parser.add_argument("--chunking", action="store_true", help="Force chunked extraction")
    scan_parser.add_argument("--ocr", action="store_true", help="Use the OCR trace for item positions")
    scan_parser.add_argument(
        "--estimated-items",
        type=int,
        default=0,
        help="Estimated number of items; long receipts are chunked automatically",
    )
    scan_parser.add_argument("--store", default=None, help="Store name, if known")
    scan_parser.add_argument("--deadline", type=float, default=None, help="Give up after this many seconds")
    scan_parser.add_argument("--json", action="store_true", help="Print the result as JSON")

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Start receipt scanning server")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Host to bind to (default: 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, default=8080, help="Port to bind to (default: 8080)")

    args = parser.parse_args(argv)

    if args.verbose:
        from receiptrecon.runtime import set_log_level

        set_log_level(logging.DEBUG)

    if args.command is None:
        parser.print_help()
        return 1

    if args.command == "scan":
        from receiptrecon.cli.receipt import cmd_scan

        return _run_command(cmd_scan, args)
    elif args.command == "serve":
        from receiptrecon.cli.receipt import cmd_serve

        return _run_command(cmd_serve, args)

    return 1


if __name__ == "__main__":
    raise SystemExit(main())
