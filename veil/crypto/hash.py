"""
Veil Protocol v1 Hash Functions

SHA3-256 and SHAKE256 per NIST FIPS 202.
"""

from __future__ import annotations
import hashlib
from typing import Union

from veil.constants import SHA3_256_OUTPUT_SIZE, SHAKE256_OUTPUT_SIZE
from veil.core.types import Hash


def sha3_256(data: Union[bytes, bytearray, memoryview]) -> Hash:
    """
    SHA3-256 hash function per NIST FIPS 202.

    Args:
        data: Input data to hash

    Returns:
        Hash: 32-byte hash output wrapped in Hash type
    """
    hasher = hashlib.sha3_256()
    hasher.update(data)
    return Hash(hasher.digest())


def sha3_256_raw(data: Union[bytes, bytearray, memoryview]) -> bytes:
    """SHA3-256 returning raw bytes."""
    return hashlib.sha3_256(data).digest()


def shake256(data: Union[bytes, bytearray, memoryview], output_length: int = SHAKE256_OUTPUT_SIZE) -> bytes:
    """
    SHAKE256 extendable output function per NIST FIPS 202.

    Args:
        data: Input data
        output_length: Desired output length in bytes (default: 32)

    Returns:
        bytes: Output of specified length
    """
    hasher = hashlib.shake_256()
    hasher.update(data)
    return hasher.digest(output_length)


def tagged_hash(tag: bytes, data: bytes) -> Hash:
    """
    Domain-separated hash using tagged hashing.

    Computes: SHA3-256(SHA3-256(tag) || SHA3-256(tag) || data)

    Args:
        tag: Domain separation tag
        data: Data to hash

    Returns:
        Hash: Tagged hash output
    """
    tag_hash = sha3_256_raw(tag)
    return sha3_256(tag_hash + tag_hash + data)


class HashBuilder:
    """
    Builder for hashes over several length-delimited fields.

    Example:
        digest = HashBuilder(DOMAIN).update_u64(7).update(b"abc").finalize()
    """

    def __init__(self, tag: bytes = b""):
        self._hasher = hashlib.sha3_256()
        if tag:
            tag_hash = sha3_256_raw(tag)
            self._hasher.update(tag_hash + tag_hash)

    def update(self, data: bytes) -> "HashBuilder":
        """Add raw bytes."""
        self._hasher.update(data)
        return self

    def update_var(self, data: bytes) -> "HashBuilder":
        """Add bytes prefixed with a u32 length so fields cannot run together."""
        self._hasher.update(len(data).to_bytes(4, "big"))
        self._hasher.update(data)
        return self

    def update_u8(self, value: int) -> "HashBuilder":
        self._hasher.update(bytes([value]))
        return self

    def update_u32(self, value: int) -> "HashBuilder":
        self._hasher.update(value.to_bytes(4, "big"))
        return self

    def update_u64(self, value: int) -> "HashBuilder":
        """Add a u64 (big-endian)."""
        self._hasher.update(value.to_bytes(8, "big"))
        return self

    def update_i64(self, value: int) -> "HashBuilder":
        """Add a signed 64-bit integer (big-endian, two's complement)."""
        self._hasher.update(value.to_bytes(8, "big", signed=True))
        return self

    def update_hash(self, h: Hash) -> "HashBuilder":
        """Add another hash to the computation."""
        self._hasher.update(h.data)
        return self

    def finalize(self) -> Hash:
        """Complete the hash computation and return the result."""
        return Hash(self._hasher.digest())

    def finalize_raw(self) -> bytes:
        return self._hasher.digest()
