"""
Veil Protocol v1 Entropy Gate
"""

from veil.entropy.gate import (
    EntropyEvent,
    EntropyGate,
    SourcePolicy,
    StaticSourcePolicy,
    derive_seed,
    reference_for,
)

__all__ = [
    "EntropyEvent",
    "EntropyGate",
    "SourcePolicy",
    "StaticSourcePolicy",
    "derive_seed",
    "reference_for",
]
