"""Public smoke tests for basic module wiring.

Keep these minimal and free of any real-world data.
"""

from __future__ import annotations


def test_imports() -> None:
    import receiptrecon
    import receiptrecon.application.receipts
    import receiptrecon.cli.main
    import receiptrecon.receipt
    import receiptrecon.runtime
    import receiptrecon.runtime.receipt_server

    assert receiptrecon.__version__
    assert receiptrecon.application.receipts is not None
    assert receiptrecon.cli.main is not None
    assert receiptrecon.receipt is not None
    assert receiptrecon.runtime is not None
    assert receiptrecon.runtime.receipt_server is not None
