"""
Veil Protocol v1 Ledger State Persistence

StateStorage lives in veil.state.storage (it depends on the ledger facade).
"""

from veil.state.snapshot import LedgerSnapshot

__all__ = [
    "LedgerSnapshot",
]
