"""
Ledger Core

Multi-tenant double-entry ledger engine: balanced journal entries,
idempotent transaction creation, reversal-instead-of-delete and
deterministic accounting reports derived from an append-only entry log.
"""

__version__ = "1.0.0"
