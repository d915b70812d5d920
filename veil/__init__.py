"""
Veil Protocol v1
Privacy-preserving token engine

Shielded outputs in an append-only commitment accumulator, nullifier-based
double-spend prevention, verification keys rotated by seismic entropy, and
stealth payments found with delegated view credentials.
"""

__version__ = "1.0.0"
__author__ = "Veil Protocol"

from veil.constants import PROTOCOL_VERSION

__all__ = [
    "PROTOCOL_VERSION",
    "__version__",
]
