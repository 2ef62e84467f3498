"""Unified command-line interface for receipt reconstruction.

Usage:
    receiptrecon scan <image>
    receiptrecon scan <image> --chunking --estimated-items 30 --json
    receiptrecon serve [--host] [--port]
"""
