"""
Veil Protocol v1 Stealth Keys

Dual-key stealth addresses.

Recipient keys: view (a, A = a*G) and spend (b, B = b*G).
Sender, with ephemeral secret r:

    R          = r * G
    shared     = r * A            (recipient computes a * R)
    view_tag   = H(VIEW_TAG || shared)[0]
    s          = Hs(STEALTH || shared || commitment_ref)
    P          = s * G + B        (one-time key, spend secret s + b)
    amount key = H(AMOUNT_KEY || shared), AAD = commitment_ref || P

The view credential (a, B) finds payments but cannot compute s + b.
"""

from __future__ import annotations
import logging
import secrets
from dataclasses import dataclass
from typing import Tuple

from veil.constants import (
    DOMAIN_AMOUNT_KEY,
    DOMAIN_EPHEMERAL,
    DOMAIN_STEALTH,
    DOMAIN_STEALTH_KEYS,
    DOMAIN_VIEW_TAG,
)
from veil.core.types import Commitment, Hash
from veil.crypto.cipher import seal_amount
from veil.crypto.ed25519 import Ed25519Point
from veil.crypto.hash import tagged_hash
from veil.errors import InvalidParameterError, InvalidViewCredentialError
from veil.stealth.records import Payment, StealthRecord

logger = logging.getLogger(__name__)


# ==============================================================================
# Shared-secret derivations
# ==============================================================================

def view_tag_for(shared: bytes) -> int:
    return tagged_hash(DOMAIN_VIEW_TAG, shared).data[0]


def spend_tweak_for(shared: bytes, commitment_ref: Commitment) -> bytes:
    return Ed25519Point.hash_to_scalar(DOMAIN_STEALTH + shared + commitment_ref.data)


def amount_key_for(shared: bytes) -> bytes:
    return tagged_hash(DOMAIN_AMOUNT_KEY, shared).data


def amount_aad(commitment_ref: Commitment, one_time_public_key: bytes) -> bytes:
    return commitment_ref.data + one_time_public_key


def one_time_public_key(spend_tweak: bytes, spend_public: bytes) -> bytes:
    return Ed25519Point.point_add(Ed25519Point.scalarmult_base(spend_tweak), spend_public)


# ==============================================================================
# Recipient keys
# ==============================================================================

@dataclass(frozen=True)
class ViewCredential:
    """
    Delegated scanning credential: view secret plus spend public key.

    Detects incoming payments and reads amounts; cannot spend them.
    """
    view_secret: bytes
    spend_public: bytes

    def validate(self) -> None:
        if not Ed25519Point.is_valid_scalar(self.view_secret):
            raise InvalidViewCredentialError("view secret is not a valid scalar")
        if not Ed25519Point.is_valid_point(self.spend_public):
            raise InvalidViewCredentialError("spend key is not a valid point")


@dataclass(frozen=True)
class StealthKeys:
    """Recipient key pairs for stealth payments."""
    view_secret: bytes
    view_public: bytes
    spend_secret: bytes
    spend_public: bytes

    @classmethod
    def from_seed(cls, seed: bytes) -> "StealthKeys":
        """Deterministic key pairs from a wallet seed."""
        if len(seed) < 32:
            raise InvalidParameterError("seed", "must be at least 32 bytes")
        view_secret = Ed25519Point.hash_to_scalar(DOMAIN_STEALTH_KEYS + b"view" + seed)
        spend_secret = Ed25519Point.hash_to_scalar(DOMAIN_STEALTH_KEYS + b"spend" + seed)
        return cls(
            view_secret=view_secret,
            view_public=Ed25519Point.derive_public_key(view_secret),
            spend_secret=spend_secret,
            spend_public=Ed25519Point.derive_public_key(spend_secret),
        )

    @classmethod
    def generate(cls) -> "StealthKeys":
        return cls.from_seed(secrets.token_bytes(32))

    @property
    def address(self) -> Tuple[bytes, bytes]:
        """Public stealth address (A, B)."""
        return self.view_public, self.spend_public

    def view_credential(self) -> ViewCredential:
        return ViewCredential(view_secret=self.view_secret, spend_public=self.spend_public)

    def one_time_secret(self, payment: Payment) -> bytes:
        """Spend secret s + b for a scanned payment."""
        secret = Ed25519Point.scalar_add(payment.spend_tweak, self.spend_secret)
        if Ed25519Point.derive_public_key(secret) != payment.one_time_public_key:
            raise InvalidParameterError("payment", "not addressed to these keys")
        return secret


# ==============================================================================
# Sender side
# ==============================================================================

def derive_ephemeral_secret(entropy_seed: Hash, sender_nonce: bytes) -> bytes:
    """
    Ephemeral secret r bound to an admitted entropy seed.

    sender_nonce must be fresh per payment; reusing it with the same seed
    reuses r.
    """
    if len(sender_nonce) < 16:
        raise InvalidParameterError("sender_nonce", "must be at least 16 bytes")
    return Ed25519Point.hash_to_scalar(DOMAIN_EPHEMERAL + entropy_seed.data + sender_nonce)


def create_stealth_record(
    view_public: bytes,
    spend_public: bytes,
    amount: int,
    commitment_ref: Commitment,
    ephemeral_secret: bytes,
) -> Tuple[StealthRecord, bytes]:
    """
    Build the record announcing a payment to (view_public, spend_public).

    Returns:
        (record, one-time public key P)
    """
    if not (Ed25519Point.is_valid_point(view_public) and Ed25519Point.is_valid_point(spend_public)):
        raise InvalidParameterError("address", "stealth address keys must be valid points")
    if not Ed25519Point.is_valid_scalar(ephemeral_secret):
        raise InvalidParameterError("ephemeral_secret", "not a valid scalar")

    ephemeral_public = Ed25519Point.scalarmult_base(ephemeral_secret)
    shared = Ed25519Point.scalarmult(ephemeral_secret, view_public)

    tweak = spend_tweak_for(shared, commitment_ref)
    one_time = one_time_public_key(tweak, spend_public)
    sealed = seal_amount(amount_key_for(shared), amount, amount_aad(commitment_ref, one_time))

    record = StealthRecord(
        ephemeral_public_key=ephemeral_public,
        encrypted_amount=sealed,
        view_tag=view_tag_for(shared),
        commitment_ref=commitment_ref,
    )
    return record, one_time
