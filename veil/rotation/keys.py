"""
Veil Protocol v1 Epoch Keys

Each epoch's verification key is derived from the previous one and an
admitted entropy seed:

    tweak      = Hs(DOMAIN_ROTATION || prev_public || seed || epoch_id)
    new_public = prev_public + tweak * G
    new_secret = prev_secret + tweak   (mod L, wallet side only)

The ledger only ever handles public keys.
"""

from __future__ import annotations
from dataclasses import dataclass

from veil.constants import DOMAIN_ROTATION, GENESIS_EPOCH_ID
from veil.core.types import EntropyReference, Hash
from veil.crypto.ed25519 import Ed25519Point, GroupError
from veil.errors import InvalidParameterError, KeyDerivationFailedError


@dataclass(frozen=True)
class KeyEpoch:
    """One generation of rotation-derived verification key material."""
    epoch_id: int
    public_verification_key: bytes
    activation_time: int
    source_entropy_reference: EntropyReference

    def to_dict(self) -> dict:
        return {
            "epoch_id": self.epoch_id,
            "public_verification_key": self.public_verification_key.hex(),
            "activation_time": self.activation_time,
            "source_entropy_reference": self.source_entropy_reference.hex(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "KeyEpoch":
        return cls(
            epoch_id=data["epoch_id"],
            public_verification_key=bytes.fromhex(data["public_verification_key"]),
            activation_time=data["activation_time"],
            source_entropy_reference=Hash.from_hex(data["source_entropy_reference"]),
        )


def genesis_epoch(public_key: bytes, activation_time: int) -> KeyEpoch:
    """Epoch 0; it cites no entropy event (zero reference)."""
    if not Ed25519Point.is_valid_point(public_key):
        raise InvalidParameterError("genesis_public_key", "not a valid Ed25519 point")
    return KeyEpoch(
        epoch_id=GENESIS_EPOCH_ID,
        public_verification_key=bytes(public_key),
        activation_time=activation_time,
        source_entropy_reference=Hash.zero(),
    )


def rotation_tweak(prev_public: bytes, seed: Hash, epoch_id: int) -> bytes:
    return Ed25519Point.hash_to_scalar(
        DOMAIN_ROTATION + prev_public + seed.data + epoch_id.to_bytes(8, "big")
    )


class EpochKeyDeriver:
    """Derives the next epoch's public key from public inputs only."""

    def derive(self, prev_public: bytes, seed: Hash, epoch_id: int) -> bytes:
        """
        Raises:
            KeyDerivationFailedError: Invalid previous key, zero tweak,
                or an invalid resulting point
        """
        if not Ed25519Point.is_valid_point(prev_public):
            raise KeyDerivationFailedError(epoch_id, "previous key is not a valid point")

        tweak = rotation_tweak(prev_public, seed, epoch_id)
        if not Ed25519Point.is_valid_scalar(tweak):
            raise KeyDerivationFailedError(epoch_id, "degenerate tweak")

        try:
            new_public = Ed25519Point.point_add(prev_public, Ed25519Point.scalarmult_base(tweak))
        except GroupError as e:
            raise KeyDerivationFailedError(epoch_id, str(e)) from e

        if not Ed25519Point.is_valid_point(new_public):
            raise KeyDerivationFailedError(epoch_id, "derived key is not a valid point")
        return new_public


def derive_epoch_secret(prev_secret: bytes, prev_public: bytes, seed: Hash, epoch_id: int) -> bytes:
    """Holder-side counterpart of EpochKeyDeriver.derive()."""
    return Ed25519Point.scalar_add(prev_secret, rotation_tweak(prev_public, seed, epoch_id))
