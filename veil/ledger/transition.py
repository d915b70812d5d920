"""
Veil Protocol v1 Staged Transitions

All-or-nothing application of a transfer's effects. Each resource is held
first; commit() applies every hold, and leaving the context without a
commit releases whatever was held.

    with StagedTransition(...) as staged:
        staged.hold_nullifier(n)
        staged.hold_outputs(commitments, records)
        staged.hold_balances(deltas)
        staged.commit()
"""

from __future__ import annotations
import logging
from typing import List, Optional, Sequence

from veil.core.types import Commitment, Nullifier
from veil.errors import InvariantViolationError, StealthCommitmentMismatchError
from veil.shielded.accumulator import CommitmentAccumulator
from veil.shielded.balances import BalanceBook, BalanceDelta
from veil.shielded.nullifiers import NullifierRegistry
from veil.stealth.directory import StealthDirectory
from veil.stealth.records import StealthRecord

logger = logging.getLogger(__name__)


class StagedTransition:
    """Holds on nullifier, outputs, stealth records and balances."""

    def __init__(
        self,
        nullifiers: NullifierRegistry,
        accumulator: CommitmentAccumulator,
        directory: StealthDirectory,
        balances: BalanceBook,
    ):
        self._nullifiers = nullifiers
        self._accumulator = accumulator
        self._directory = directory
        self._balances = balances

        self._nullifier: Optional[Nullifier] = None
        self._commitments: List[Commitment] = []
        self._records: List[StealthRecord] = []
        self._balance_hold: Optional[int] = None
        self.committed = False

    def __enter__(self) -> "StagedTransition":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self.committed:
            self.rollback()

    def hold_nullifier(self, nullifier: Nullifier) -> None:
        self._nullifiers.hold(nullifier)
        self._nullifier = nullifier

    def hold_outputs(self, commitments: Sequence[Commitment], records: Sequence[StealthRecord]) -> None:
        """Hold output commitments together with the stealth records paying them."""
        outputs = set(commitments)
        for record in records:
            if record.commitment_ref not in outputs:
                raise StealthCommitmentMismatchError(record.commitment_ref.data)

        self._accumulator.hold(commitments)
        self._commitments = list(commitments)
        self._directory.hold(records)
        self._records = list(records)

    def hold_balances(self, deltas: Sequence[BalanceDelta]) -> None:
        self._balance_hold = self._balances.hold(deltas)

    def commit(self) -> None:
        """
        Apply every hold. Caller serializes commits.

        A failure here means a hold was not honoured, which is an
        invariant violation rather than a request error. The components
        are updated one after another; only readers holding the commit
        lock see the transfer as a whole.
        """
        if self.committed:
            raise InvariantViolationError("staged-commit", "transition committed twice")

        self._accumulator.append_held(self._commitments)
        if self._nullifier is not None:
            self._nullifiers.confirm(self._nullifier)
        if self._balance_hold is not None:
            self._balances.settle(self._balance_hold)
        self._directory.publish(self._records)
        self.committed = True

    def rollback(self) -> None:
        if self._nullifier is not None:
            self._nullifiers.release(self._nullifier)
        self._accumulator.release(self._commitments)
        self._directory.release(self._records)
        if self._balance_hold is not None:
            self._balances.release(self._balance_hold)
        logger.debug("Staged transition rolled back")
