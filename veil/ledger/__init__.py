"""
Veil Protocol v1 Ledger
"""

from veil.ledger.oracle import ProofOracle, MockProofOracle
from veil.ledger.transition import StagedTransition
from veil.ledger.gateway import (
    ADMISSION_CHECKS,
    ProofAdmissionGateway,
    TransferRequest,
    shielded_state_root,
)
from veil.ledger.ledger import ShieldedLedger, system_clock

__all__ = [
    "ProofOracle",
    "MockProofOracle",
    "StagedTransition",
    "ADMISSION_CHECKS",
    "ProofAdmissionGateway",
    "TransferRequest",
    "shielded_state_root",
    "ShieldedLedger",
    "system_clock",
]
