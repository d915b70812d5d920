"""
Veil Protocol v1 Primitive Types

Commitments, nullifiers, roots and entropy references are all fixed-size
SHA3-256 digests and share the Hash type.
"""

from __future__ import annotations
from dataclasses import dataclass, field

from veil.constants import HASH_SIZE


@dataclass(frozen=True, slots=True)
class Hash:
    """
    Fixed-size 32-byte digest.

    SIZE: 32 bytes
    SERIALIZATION: raw bytes
    """
    data: bytes = field(default_factory=lambda: bytes(HASH_SIZE))

    def __post_init__(self):
        if not isinstance(self.data, (bytes, bytearray)):
            raise TypeError(f"Hash data must be bytes, got {type(self.data).__name__}")
        if len(self.data) != HASH_SIZE:
            raise ValueError(f"Hash must be {HASH_SIZE} bytes, got {len(self.data)}")

    def __bytes__(self) -> bytes:
        return bytes(self.data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Hash):
            return self.data == other.data
        if isinstance(other, bytes):
            return self.data == other
        return False

    def __lt__(self, other: Hash) -> bool:
        return self.data < other.data

    def __hash__(self) -> int:
        return hash(bytes(self.data))

    def __repr__(self) -> str:
        return f"Hash({self.data.hex()[:16]}...)"

    def hex(self) -> str:
        return self.data.hex()

    def short(self) -> str:
        """First 16 hex chars, for log lines."""
        return self.data.hex()[:16]

    @classmethod
    def from_hex(cls, hex_string: str) -> Hash:
        return cls(bytes.fromhex(hex_string))

    @classmethod
    def zero(cls) -> Hash:
        return cls(bytes(HASH_SIZE))

    @classmethod
    def from_bytes(cls, data: bytes) -> Hash:
        return cls(bytes(data))

    def is_zero(self) -> bool:
        return self.data == bytes(HASH_SIZE)

    def serialize(self) -> bytes:
        """Serialize to raw bytes."""
        return bytes(self.data)

    @classmethod
    def deserialize(cls, data: bytes, offset: int = 0) -> tuple[Hash, int]:
        """Deserialize from bytes, return (Hash, bytes_consumed)."""
        return cls(bytes(data[offset:offset + HASH_SIZE])), HASH_SIZE


# Semantic aliases; all three are plain digests on the wire.
Commitment = Hash
Nullifier = Hash
EntropyReference = Hash
