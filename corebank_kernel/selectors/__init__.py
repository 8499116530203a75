"""Read-only query selectors."""

from corebank_kernel.selectors.ledger_selector import LedgerSelector

__all__ = ["LedgerSelector"]
