"""
Veil Protocol v1 Ed25519 Group Operations

Thin wrappers around libsodium (via PyNaCl) for the prime-order Ed25519
group: scalar arithmetic mod L, point addition and scalar multiplication
without clamping, and hash-to-scalar.

Stealth addresses and epoch key rotation are both built on these.
"""

import hashlib
import logging

import nacl.bindings
import nacl.exceptions

from veil.constants import CURVE_ORDER, POINT_SIZE, SCALAR_SIZE

logger = logging.getLogger(__name__)


class GroupError(Exception):
    """A group operation produced no valid result (identity, invalid point)."""
    pass


class Ed25519Point:
    """
    Ed25519 curve operations using libsodium.

    Points and scalars are 32-byte little-endian encodings.
    """

    POINT_SIZE = POINT_SIZE
    SCALAR_SIZE = SCALAR_SIZE

    @staticmethod
    def is_valid_point(point: bytes) -> bool:
        """Check if bytes encode a valid point in the main subgroup."""
        if not isinstance(point, (bytes, bytearray)) or len(point) != POINT_SIZE:
            return False
        return bool(nacl.bindings.crypto_core_ed25519_is_valid_point(bytes(point)))

    @staticmethod
    def is_valid_scalar(scalar: bytes) -> bool:
        """Canonical, non-zero scalar below L."""
        if not isinstance(scalar, (bytes, bytearray)) or len(scalar) != SCALAR_SIZE:
            return False
        value = int.from_bytes(scalar, "little")
        return 0 < value < CURVE_ORDER

    @staticmethod
    def scalar_reduce(scalar_64: bytes) -> bytes:
        """Reduce a 64-byte value to a scalar mod L."""
        if len(scalar_64) != 64:
            scalar_64 = hashlib.sha512(scalar_64).digest()
        return nacl.bindings.crypto_core_ed25519_scalar_reduce(scalar_64)

    @staticmethod
    def scalar_add(a: bytes, b: bytes) -> bytes:
        """Add two scalars mod L."""
        return nacl.bindings.crypto_core_ed25519_scalar_add(a, b)

    @staticmethod
    def scalar_random() -> bytes:
        """Uniform random non-zero scalar."""
        return nacl.bindings.crypto_core_ed25519_scalar_random()

    @staticmethod
    def point_add(p: bytes, q: bytes) -> bytes:
        """Add two Ed25519 points."""
        try:
            return nacl.bindings.crypto_core_ed25519_add(p, q)
        except (nacl.exceptions.RuntimeError, nacl.exceptions.ValueError) as e:
            raise GroupError(f"Point addition failed: {e}") from e

    @staticmethod
    def scalarmult_base(scalar: bytes) -> bytes:
        """Scalar multiplication with the base point: s * G."""
        try:
            return nacl.bindings.crypto_scalarmult_ed25519_base_noclamp(scalar)
        except (nacl.exceptions.RuntimeError, nacl.exceptions.ValueError) as e:
            raise GroupError(f"Base point multiplication failed: {e}") from e

    @staticmethod
    def scalarmult(scalar: bytes, point: bytes) -> bytes:
        """Scalar multiplication: s * P."""
        if scalar == bytes(SCALAR_SIZE):
            raise GroupError("Zero scalar multiplication not supported")
        try:
            return nacl.bindings.crypto_scalarmult_ed25519_noclamp(scalar, point)
        except (nacl.exceptions.RuntimeError, nacl.exceptions.ValueError) as e:
            raise GroupError(f"Scalar multiplication failed: {e}") from e

    @staticmethod
    def hash_to_scalar(data: bytes) -> bytes:
        """Hash data to a scalar using SHA-512 and reduction mod L."""
        return Ed25519Point.scalar_reduce(hashlib.sha512(data).digest())

    @staticmethod
    def derive_public_key(secret: bytes) -> bytes:
        """Public key s * G for an unclamped secret scalar."""
        return Ed25519Point.scalarmult_base(secret)
