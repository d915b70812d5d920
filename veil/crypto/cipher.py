"""
Veil Protocol v1 Amount Encryption

ChaCha20-Poly1305 (pycryptodome) over an 8-byte little-endian amount.

Format: ciphertext (8) || tag (16)

The key is derived from a per-payment shared secret, so each key seals
exactly one amount and the nonce can be derived from the key itself.
"""

import logging

from Crypto.Cipher import ChaCha20_Poly1305

from veil.constants import (
    AEAD_NONCE_SIZE,
    AEAD_TAG_SIZE,
    AMOUNT_PLAINTEXT_SIZE,
    ENCRYPTED_AMOUNT_SIZE,
    MAX_BALANCE,
)
from veil.crypto.hash import sha3_256_raw

logger = logging.getLogger(__name__)

KEY_SIZE = 32


def _nonce_for(key: bytes) -> bytes:
    return sha3_256_raw(b"nonce" + key)[:AEAD_NONCE_SIZE]


def seal_amount(key: bytes, amount: int, aad: bytes = b"") -> bytes:
    """
    Encrypt an amount under a one-time key.

    Args:
        key: 32-byte one-time key
        amount: Value in [0, 2^64 - 1]
        aad: Associated data bound to the ciphertext

    Returns:
        24 bytes: ciphertext || tag
    """
    if len(key) != KEY_SIZE:
        raise ValueError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")
    if amount < 0 or amount > MAX_BALANCE:
        raise ValueError(f"Amount out of range: {amount}")

    cipher = ChaCha20_Poly1305.new(key=key, nonce=_nonce_for(key))
    cipher.update(aad)
    ciphertext, tag = cipher.encrypt_and_digest(
        amount.to_bytes(AMOUNT_PLAINTEXT_SIZE, "little")
    )
    return ciphertext + tag


def open_amount(key: bytes, sealed: bytes, aad: bytes = b"") -> int:
    """
    Decrypt an amount sealed with seal_amount().

    Raises:
        ValueError: If the key is wrong or the data was modified
    """
    if len(sealed) != ENCRYPTED_AMOUNT_SIZE:
        raise ValueError(f"Encrypted amount must be {ENCRYPTED_AMOUNT_SIZE} bytes")

    ciphertext = sealed[:AMOUNT_PLAINTEXT_SIZE]
    tag = sealed[AMOUNT_PLAINTEXT_SIZE:AMOUNT_PLAINTEXT_SIZE + AEAD_TAG_SIZE]

    cipher = ChaCha20_Poly1305.new(key=key, nonce=_nonce_for(key))
    cipher.update(aad)
    plaintext = cipher.decrypt_and_verify(ciphertext, tag)
    return int.from_bytes(plaintext, "little")
