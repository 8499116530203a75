"""
Core Banking Kernel

An append-only double-entry ledger for a core-banking back office:
- Chart of accounts per tenant and book
- Balanced, atomic journal postings with an approval workflow
- Mirror-entry reversals (posted rows never change)
- Per-account serialization with bounded lock waits
- Structured JSON logging and typed, coded exceptions
"""

__version__ = "0.1.0"
