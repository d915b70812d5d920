"""
Veil Protocol v1 Shielded Ledger

External interface of the token engine. Wires the components together
and owns the halted flag: once an invariant violation is observed every
further mutation fails LedgerHaltedError.
"""

from __future__ import annotations
import logging
import threading
import time
from typing import Callable, Iterable, Optional, Sequence

from veil import __version__
from veil.config import LedgerConfig
from veil.core.collaborator import CollaboratorPool
from veil.core.types import EntropyReference, Hash
from veil.entropy.gate import EntropyEvent, EntropyGate, SourcePolicy, derive_seed
from veil.errors import ErrorCategory, InvalidParameterError, LedgerHaltedError, VeilError
from veil.ledger.gateway import ProofAdmissionGateway, TransferRequest
from veil.ledger.oracle import ProofOracle
from veil.rotation.engine import RotationEngine
from veil.rotation.keys import KeyEpoch, genesis_epoch
from veil.shielded.accumulator import CommitmentAccumulator
from veil.shielded.balances import BalanceBook
from veil.shielded.nullifiers import NullifierRegistry
from veil.state.snapshot import LedgerSnapshot
from veil.stealth.directory import StealthDirectory, StealthScan
from veil.stealth.keys import ViewCredential

logger = logging.getLogger(__name__)


def system_clock() -> int:
    """Wall-clock time in milliseconds."""
    return int(time.time() * 1000)


class ShieldedLedger:
    """
    Shielded ledger facade.

    Operations:
        submit_transfer(request)       -> new state root
        submit_entropy_event(event)    -> entropy reference
        scan(view_credential)          -> lazy payment iterable
        request_emergency_rotation(reason)
        snapshot()                     -> LedgerSnapshot
    """

    def __init__(
        self,
        config: LedgerConfig,
        accumulator: CommitmentAccumulator,
        nullifiers: NullifierRegistry,
        balances: BalanceBook,
        entropy: EntropyGate,
        rotation: RotationEngine,
        directory: StealthDirectory,
        oracle: ProofOracle,
        clock: Callable[[], int] = system_clock,
        pool: Optional[CollaboratorPool] = None,
    ):
        self.config = config
        self.accumulator = accumulator
        self.nullifiers = nullifiers
        self.balances = balances
        self.entropy = entropy
        self.rotation = rotation
        self.directory = directory
        self.clock = clock
        self._halt_lock = threading.Lock()
        self._halted: Optional[str] = None

        self.gateway = ProofAdmissionGateway(
            rotation=rotation,
            entropy=entropy,
            nullifiers=nullifiers,
            accumulator=accumulator,
            directory=directory,
            balances=balances,
            oracle=oracle,
            config=config.gateway,
            pool=pool,
        )

    @classmethod
    def create(
        cls,
        config: Optional[LedgerConfig] = None,
        genesis_public_key: bytes = b"",
        proof_oracle: Optional[ProofOracle] = None,
        source_policy: Optional[SourcePolicy] = None,
        clock: Callable[[], int] = system_clock,
        genesis_time: Optional[int] = None,
    ) -> "ShieldedLedger":
        """
        Build an empty ledger whose epoch 0 verifies under genesis_public_key.

        proof_oracle is required; MockProofOracle is for development only.
        """
        config = config or LedgerConfig()
        errors = config.validate()
        if errors:
            raise InvalidParameterError("config", "; ".join(errors))

        activation = clock() if genesis_time is None else genesis_time

        ledger = cls.restore(
            config=config,
            accumulator=CommitmentAccumulator(config.accumulator.depth),
            nullifiers=NullifierRegistry(),
            balances=BalanceBook(),
            epochs=[genesis_epoch(genesis_public_key, activation)],
            directory=StealthDirectory(),
            entropy_references=[],
            proof_oracle=proof_oracle,
            source_policy=source_policy,
            clock=clock,
        )
        logger.info(
            f"Ledger {config.name} created: depth {config.accumulator.depth}, "
            f"root {ledger.state_root.short()}"
        )
        return ledger

    @classmethod
    def restore(
        cls,
        config: LedgerConfig,
        accumulator: CommitmentAccumulator,
        nullifiers: NullifierRegistry,
        balances: BalanceBook,
        epochs: Sequence[KeyEpoch],
        directory: StealthDirectory,
        entropy_references: Iterable[EntropyReference],
        proof_oracle: Optional[ProofOracle] = None,
        source_policy: Optional[SourcePolicy] = None,
        clock: Callable[[], int] = system_clock,
    ) -> "ShieldedLedger":
        """
        Wire a ledger around existing component state.

        Proof verification and source-policy lookups run on separate
        pools, so a stalled proof oracle cannot starve entropy admission.

        Raises:
            InvalidParameterError: No proof oracle given
        """
        if proof_oracle is None:
            raise InvalidParameterError("proof_oracle", "a proof oracle is required")

        entropy = EntropyGate(
            config.entropy,
            source_policy,
            pool=CollaboratorPool(max_workers=config.gateway.workers, name="veil-source-policy"),
        )
        entropy.restore(entropy_references)

        return cls(
            config=config,
            accumulator=accumulator,
            nullifiers=nullifiers,
            balances=balances,
            entropy=entropy,
            rotation=RotationEngine(epochs, config.rotation),
            directory=directory,
            oracle=proof_oracle,
            clock=clock,
            pool=CollaboratorPool(max_workers=config.gateway.workers, name="veil-proof"),
        )

    # ------------------------------------------------------------------
    # Halt handling
    # ------------------------------------------------------------------

    @property
    def halted(self) -> bool:
        return self._halted is not None or self.rotation.halted

    def _ensure_running(self) -> None:
        if self._halted is not None:
            raise LedgerHaltedError(self._halted)
        if self.rotation.halted:
            self._halt("rotation engine halted")
            raise LedgerHaltedError(self._halted)

    def _halt(self, reason: str) -> None:
        with self._halt_lock:
            if self._halted is None:
                self._halted = reason
                logger.critical(f"Ledger halted: {reason}")
        self.rotation.halt(reason)

    def _observe(self, error: VeilError, operation: str) -> None:
        if error.category is ErrorCategory.FATAL and not isinstance(error, LedgerHaltedError):
            self._halt(error.message)
        else:
            logger.warning(f"{operation} rejected: {error}")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def submit_transfer(self, request: TransferRequest) -> Hash:
        """Admit a shielded transfer; returns the new state root."""
        self._ensure_running()
        try:
            return self.gateway.submit(request, before_commit=self._ensure_running)
        except VeilError as e:
            self._observe(e, "Transfer")
            raise

    def submit_entropy_event(self, event: EntropyEvent) -> EntropyReference:
        """
        Admit an entropy event, rotating keys if a rotation is due.

        The event is recorded only if validation and any due rotation both
        succeed; a failed rotation leaves it resubmittable.
        """
        self._ensure_running()
        now = self.clock()
        try:
            self.entropy.validate(event, now)
            reference = self.entropy.hold(event)
            try:
                epoch = self.rotation.rotate(derive_seed(event), reference, event.observed_at, now)
                self.entropy.record(reference)
            except BaseException:
                self.entropy.release(reference)
                raise
        except VeilError as e:
            self._observe(e, "Entropy event")
            raise

        if epoch is not None:
            logger.info(f"Entropy event {reference.short()} rotated to epoch {epoch.epoch_id}")
        else:
            logger.info(f"Entropy event {reference.short()} admitted from {event.source_id}")
        return reference

    def scan(self, view_credential: ViewCredential) -> StealthScan:
        return self.directory.scan(view_credential)

    def request_emergency_rotation(self, reason: str) -> None:
        self._ensure_running()
        self.rotation.request_emergency_rotation(reason)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    # Component attributes are individually consistent only; a reader can
    # observe one half of a commit. The views below and snapshot() take the
    # commit lock and see whole transfers.

    @property
    def state_root(self) -> Hash:
        return self.gateway.state_root

    def is_spent(self, nullifier: Hash) -> bool:
        with self.gateway.commit_lock:
            return self.nullifiers.check(nullifier)

    def contains_commitment(self, commitment: Hash) -> bool:
        with self.gateway.commit_lock:
            return self.accumulator.contains(commitment)

    def snapshot(self) -> LedgerSnapshot:
        """Consistent persisted-state view (taken under the commit lock)."""
        with self.gateway.commit_lock:
            return LedgerSnapshot(
                accumulator_root=self.accumulator.root,
                nullifier_set_digest=self.nullifiers.digest(),
                epoch_table=self.rotation.epoch_table(),
                stealth_records=self.directory.records(),
            )

    def status(self) -> dict:
        now = self.clock()
        current = self.rotation.current_epoch
        return {
            "version": __version__,
            "name": self.config.name,
            "halted": self.halted,
            "state_root": self.state_root.hex(),
            "commitments": self.accumulator.size,
            "nullifiers": len(self.nullifiers),
            "stealth_records": len(self.directory),
            "admitted_transfers": self.gateway.admitted_count,
            "current_epoch": current.epoch_id,
            "oldest_valid_epoch": self.rotation.oldest_valid_epoch,
            "rotation_state": self.rotation.state(now).name,
            "pool_total": self.balances.pool_total,
        }

    def close(self) -> None:
        self.gateway.close()
        self.entropy.close()
