"""
Veil Protocol v1 Proof Oracle

The zero-knowledge proof system is external; the ledger only asks whether
a proof is valid for a statement under an epoch's verification key.
"""

from __future__ import annotations
import hmac
from typing import Protocol

from veil.constants import DOMAIN_MOCK_PROOF
from veil.core.types import Hash
from veil.crypto.hash import tagged_hash


class ProofOracle(Protocol):
    """External proof verifier."""

    def verify(self, proof: bytes, statement: Hash, verification_key: bytes) -> bool:
        ...


class MockProofOracle:
    """
    Deterministic development oracle.

    A proof is valid iff it equals H(MOCK_PROOF || statement || key).
    Not a proof system: anyone who knows the statement can forge one.
    """

    @staticmethod
    def make_proof(statement: Hash, verification_key: bytes) -> bytes:
        return tagged_hash(DOMAIN_MOCK_PROOF, statement.data + verification_key).data

    def verify(self, proof: bytes, statement: Hash, verification_key: bytes) -> bool:
        expected = self.make_proof(statement, verification_key)
        return hmac.compare_digest(proof, expected)
