"""
Veil Protocol v1 Stealth Records
"""

from __future__ import annotations
from dataclasses import dataclass

from veil.constants import ENCRYPTED_AMOUNT_SIZE
from veil.core.types import Commitment, Hash
from veil.crypto.ed25519 import Ed25519Point
from veil.errors import InvalidStealthRecordError


@dataclass(frozen=True)
class StealthRecord:
    """
    Public announcement of a stealth payment.

    Holds nothing that names the recipient: the ephemeral key R, the
    sealed amount, a 1-byte view tag and the output commitment it pays.
    """
    ephemeral_public_key: bytes
    encrypted_amount: bytes
    view_tag: int
    commitment_ref: Commitment

    def validate(self) -> None:
        """
        Raises:
            InvalidStealthRecordError: If any field is malformed
        """
        if not Ed25519Point.is_valid_point(self.ephemeral_public_key):
            raise InvalidStealthRecordError("ephemeral key is not a valid point")
        if not isinstance(self.encrypted_amount, bytes) or len(self.encrypted_amount) != ENCRYPTED_AMOUNT_SIZE:
            raise InvalidStealthRecordError(f"encrypted amount must be {ENCRYPTED_AMOUNT_SIZE} bytes")
        if not isinstance(self.view_tag, int) or isinstance(self.view_tag, bool) or not 0 <= self.view_tag <= 0xFF:
            raise InvalidStealthRecordError("view tag must be a single byte")
        if not isinstance(self.commitment_ref, Hash):
            raise InvalidStealthRecordError("commitment_ref must be a Hash")

    def to_dict(self) -> dict:
        return {
            "ephemeral_public_key": self.ephemeral_public_key.hex(),
            "encrypted_amount": self.encrypted_amount.hex(),
            "view_tag": self.view_tag,
            "commitment_ref": self.commitment_ref.hex(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StealthRecord":
        return cls(
            ephemeral_public_key=bytes.fromhex(data["ephemeral_public_key"]),
            encrypted_amount=bytes.fromhex(data["encrypted_amount"]),
            view_tag=data["view_tag"],
            commitment_ref=Hash.from_hex(data["commitment_ref"]),
        )


@dataclass(frozen=True)
class Payment:
    """A stealth payment recovered by scanning."""
    amount: int
    commitment_ref: Commitment
    one_time_public_key: bytes
    spend_tweak: bytes
    ephemeral_public_key: bytes
    record_index: int
