"""
Veil Protocol v1 Cryptographic Primitives
"""

from veil.crypto.hash import (
    sha3_256,
    sha3_256_raw,
    shake256,
    tagged_hash,
    HashBuilder,
)
from veil.crypto.merkle import (
    merkle_root,
    IncrementalMerkleTree,
    MerklePath,
)
from veil.crypto.ed25519 import (
    Ed25519Point,
    GroupError,
)
from veil.crypto.cipher import (
    seal_amount,
    open_amount,
)

__all__ = [
    "sha3_256",
    "sha3_256_raw",
    "shake256",
    "tagged_hash",
    "HashBuilder",
    "merkle_root",
    "IncrementalMerkleTree",
    "MerklePath",
    "Ed25519Point",
    "GroupError",
    "seal_amount",
    "open_amount",
]
