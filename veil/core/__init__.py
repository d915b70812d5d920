"""
Veil Protocol v1 Core Types
"""

from veil.core.types import (
    Hash,
    Commitment,
    Nullifier,
    EntropyReference,
)
from veil.core.collaborator import (
    CollaboratorPool,
)

__all__ = [
    "Hash",
    "Commitment",
    "Nullifier",
    "EntropyReference",
    "CollaboratorPool",
]
