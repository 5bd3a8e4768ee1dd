"""
Wallet Ledger

Ledger-entry validator and store for wallet money movements: field
constraints, case-insensitive unique transaction ids, indexed lookups
and an append-only audit trail.
"""

__version__ = "1.0.0"
