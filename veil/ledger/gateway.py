"""
Veil Protocol v1 Proof Admission Gateway

Admission of a shielded transfer:

Preconditions (no shared locks held):
1. proof       valid under the claimed epoch's key  -> InvalidProofError
2. epoch       inside the retention window          -> EpochExpired / EpochNotCommitted / UnknownEpoch
3. entropy     cited event was admitted             -> UnknownEntropyReferenceError

Staged effects (held, then committed together or released):
4. nullifier   not yet spent                        -> NullifierReusedError
5. outputs     new commitments and stealth records  -> DuplicateCommitment / DuplicateStealthRecord /
                                                       StealthCommitmentMismatch
6. balances    deltas and the pool turnstile        -> InsufficientFunds / BalanceOverflow
"""

from __future__ import annotations
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple

from veil.config import GatewayConfig
from veil.constants import DOMAIN_STATE_ROOT, DOMAIN_STATEMENT, MAX_COMMITMENTS_PER_TRANSFER
from veil.core.collaborator import CollaboratorPool
from veil.core.types import Commitment, EntropyReference, Hash, Nullifier
from veil.crypto.hash import HashBuilder, tagged_hash
from veil.entropy.gate import EntropyGate
from veil.errors import (
    CollaboratorTimeoutError,
    InvalidParameterError,
    InvalidProofError,
    UnknownEntropyReferenceError,
)
from veil.ledger.oracle import ProofOracle
from veil.ledger.transition import StagedTransition
from veil.rotation.engine import RotationEngine
from veil.rotation.keys import KeyEpoch
from veil.shielded.accumulator import CommitmentAccumulator
from veil.shielded.balances import BalanceBook, BalanceDelta
from veil.shielded.nullifiers import NullifierRegistry
from veil.stealth.directory import StealthDirectory
from veil.stealth.records import StealthRecord

logger = logging.getLogger(__name__)

ADMISSION_CHECKS: Tuple[str, ...] = ("proof", "epoch", "entropy")


def shielded_state_root(accumulator_root: Hash, nullifier_digest: Hash) -> Hash:
    """H(STATE_ROOT || accumulator_root || nullifier_set_digest)"""
    return tagged_hash(DOMAIN_STATE_ROOT, accumulator_root.data + nullifier_digest.data)


@dataclass(frozen=True)
class TransferRequest:
    """
    A shielded transfer as submitted to the ledger.

    The proof must be valid for statement() under the verification key of
    epoch_id.
    """
    proof: bytes
    nullifier: Nullifier
    commitments: Tuple[Commitment, ...]
    epoch_id: int
    entropy_reference: EntropyReference
    balance_deltas: Tuple[BalanceDelta, ...] = field(default_factory=tuple)
    stealth_records: Tuple[StealthRecord, ...] = field(default_factory=tuple)

    def validate(self) -> None:
        """
        Raises:
            InvalidParameterError: Malformed request fields
        """
        if not isinstance(self.proof, bytes) or not self.proof:
            raise InvalidParameterError("proof", "must be non-empty bytes")
        if not isinstance(self.nullifier, Hash):
            raise InvalidParameterError("nullifier", "must be a Hash")
        if not isinstance(self.entropy_reference, Hash):
            raise InvalidParameterError("entropy_reference", "must be a Hash")
        if len(self.commitments) > MAX_COMMITMENTS_PER_TRANSFER:
            raise InvalidParameterError(
                "commitments", f"at most {MAX_COMMITMENTS_PER_TRANSFER} per transfer"
            )
        if not all(isinstance(c, Hash) for c in self.commitments):
            raise InvalidParameterError("commitments", "must be Hash values")
        if not all(isinstance(d, BalanceDelta) for d in self.balance_deltas):
            raise InvalidParameterError("balance_deltas", "must be BalanceDelta values")
        if not all(isinstance(r, StealthRecord) for r in self.stealth_records):
            raise InvalidParameterError("stealth_records", "must be StealthRecord values")
        if not isinstance(self.epoch_id, int) or isinstance(self.epoch_id, bool) or self.epoch_id < 0:
            raise InvalidParameterError("epoch_id", "must be a non-negative integer")

    def statement(self) -> Hash:
        """Canonical digest of everything the proof attests to."""
        builder = HashBuilder(DOMAIN_STATEMENT)
        builder.update_hash(self.nullifier)
        builder.update_u32(len(self.commitments))
        for commitment in self.commitments:
            builder.update_hash(commitment)
        builder.update_u64(self.epoch_id)
        builder.update_hash(self.entropy_reference)
        builder.update_u32(len(self.balance_deltas))
        for delta in self.balance_deltas:
            builder.update_var(delta.account)
            builder.update_u8(1 if delta.amount < 0 else 0)
            builder.update_u64(abs(delta.amount))
        builder.update_u32(len(self.stealth_records))
        for record in self.stealth_records:
            builder.update(record.ephemeral_public_key)
            builder.update(record.encrypted_amount)
            builder.update_u8(record.view_tag)
            builder.update_hash(record.commitment_ref)
        return builder.finalize()


class ProofAdmissionGateway:
    """
    Runs the admission checklist and commits admitted transfers.

    Requests with disjoint nullifiers and outputs verify and hold
    concurrently; only the final commit is serialized on commit_lock.
    """

    def __init__(
        self,
        rotation: RotationEngine,
        entropy: EntropyGate,
        nullifiers: NullifierRegistry,
        accumulator: CommitmentAccumulator,
        directory: StealthDirectory,
        balances: BalanceBook,
        oracle: ProofOracle,
        config: Optional[GatewayConfig] = None,
        pool: Optional[CollaboratorPool] = None,
        commit_lock: Optional[threading.Lock] = None,
    ):
        self.rotation = rotation
        self.entropy = entropy
        self.nullifiers = nullifiers
        self.accumulator = accumulator
        self.directory = directory
        self.balances = balances
        self.oracle = oracle
        self.config = config or GatewayConfig()
        self._pool = pool or CollaboratorPool(max_workers=self.config.workers, name="veil-proof")
        self.commit_lock = commit_lock or threading.Lock()
        self._state_root = shielded_state_root(accumulator.root, nullifiers.digest())
        self._admitted = 0

    @property
    def state_root(self) -> Hash:
        with self.commit_lock:
            return self._state_root

    @property
    def admitted_count(self) -> int:
        return self._admitted

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------

    def check_preconditions(self, request: TransferRequest) -> KeyEpoch:
        """
        Run checks 1-3.

        The proof is verified first whenever the claimed epoch's key is
        known; otherwise epoch resolution decides (expired, unknown, or
        waits for an in-flight rotation) and the proof follows.
        """
        epoch = self.rotation.get_epoch(request.epoch_id)
        statement = request.statement()
        if epoch is not None:
            self._verify_proof(request, statement, epoch)

        resolved = self.rotation.validate_epoch(request.epoch_id)
        if epoch is None:
            self._verify_proof(request, statement, resolved)

        if not self.entropy.is_admitted(request.entropy_reference):
            raise UnknownEntropyReferenceError(request.entropy_reference.data)

        return resolved

    def _verify_proof(self, request: TransferRequest, statement: Hash, epoch: KeyEpoch) -> None:
        try:
            valid = self._pool.call(
                "proof-oracle",
                self.oracle.verify,
                request.proof,
                statement,
                epoch.public_verification_key,
                timeout_ms=self.config.proof_timeout_ms,
            )
        except CollaboratorTimeoutError:
            raise InvalidProofError(f"verification timed out after {self.config.proof_timeout_ms}ms") from None
        except Exception as e:
            logger.warning(f"Proof oracle raised: {e}")
            raise InvalidProofError(f"verifier error: {e}") from e

        if not valid:
            raise InvalidProofError(f"rejected under epoch {epoch.epoch_id}")

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def submit(self, request: TransferRequest, before_commit: Optional[Callable[[], None]] = None) -> Hash:
        """
        Admit a transfer.

        before_commit runs under the commit lock immediately before the
        effects are applied; raising from it aborts the transfer.

        Returns:
            The new shielded state root
        """
        request.validate()
        self.check_preconditions(request)

        with StagedTransition(self.nullifiers, self.accumulator, self.directory, self.balances) as staged:
            staged.hold_nullifier(request.nullifier)
            staged.hold_outputs(request.commitments, request.stealth_records)
            staged.hold_balances(request.balance_deltas)

            with self.commit_lock:
                if before_commit is not None:
                    before_commit()
                staged.commit()
                self._state_root = shielded_state_root(self.accumulator.root, self.nullifiers.digest())
                self._admitted += 1
                root = self._state_root

        logger.info(
            f"Transfer admitted: nullifier {request.nullifier.short()}, "
            f"{len(request.commitments)} outputs, root {root.short()}"
        )
        return root

    def close(self) -> None:
        self._pool.shutdown(wait=False)
