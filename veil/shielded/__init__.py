"""
Veil Protocol v1 Shielded State
"""

from veil.shielded.accumulator import CommitmentAccumulator
from veil.shielded.nullifiers import NullifierRegistry
from veil.shielded.balances import BalanceBook, BalanceDelta

__all__ = [
    "CommitmentAccumulator",
    "NullifierRegistry",
    "BalanceBook",
    "BalanceDelta",
]
