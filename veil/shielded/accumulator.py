"""
Veil Protocol v1 Commitment Accumulator

Append-only authenticated set of output commitments. Every commitment
occupies exactly one leaf of a fixed-depth incremental Merkle tree; the root
is a pure function of insertion order.
"""

from __future__ import annotations
import logging
import threading
from typing import Dict, Iterable, List, Optional, Sequence, Set

from veil.constants import ACCUMULATOR_DEPTH, ACCUMULATOR_MAX_DEPTH, ACCUMULATOR_MIN_DEPTH
from veil.core.types import Commitment, Hash
from veil.crypto.merkle import IncrementalMerkleTree, MerklePath
from veil.errors import (
    AccumulatorFullError,
    CommitmentNotFoundError,
    DuplicateCommitmentError,
    InvalidParameterError,
    InvariantViolationError,
)

logger = logging.getLogger(__name__)


class CommitmentAccumulator:
    """
    Commitment accumulator over an IncrementalMerkleTree.

    All reads and writes go through one lock, so a root is only ever
    observed before or after a complete insertion.

    Gateway staging:
        hold(commitments)        reserve digests (conflicts with present and held)
        append_held(commitments) append reserved digests
        release(commitments)     drop reservations
    """

    def __init__(self, depth: int = ACCUMULATOR_DEPTH):
        if not ACCUMULATOR_MIN_DEPTH <= depth <= ACCUMULATOR_MAX_DEPTH:
            raise InvalidParameterError(
                "depth",
                f"must be in [{ACCUMULATOR_MIN_DEPTH}, {ACCUMULATOR_MAX_DEPTH}], got {depth}",
            )
        self._lock = threading.RLock()
        self._tree = IncrementalMerkleTree(depth)
        self._index: Dict[Hash, int] = {}
        self._pending: Set[Hash] = set()

    @property
    def depth(self) -> int:
        return self._tree.depth

    @property
    def capacity(self) -> int:
        return self._tree.capacity

    @property
    def size(self) -> int:
        with self._lock:
            return self._tree.size

    @property
    def root(self) -> Hash:
        with self._lock:
            return self._tree.root

    def contains(self, commitment: Commitment) -> bool:
        with self._lock:
            return commitment in self._index

    def index_of(self, commitment: Commitment) -> Optional[int]:
        """Leaf index of a commitment, or None if absent."""
        with self._lock:
            return self._index.get(commitment)

    def leaves(self) -> List[Commitment]:
        """All commitments in insertion order."""
        with self._lock:
            return self._tree.items()

    def proof_for(self, commitment: Commitment) -> MerklePath:
        """
        Membership proof for a commitment against the current root.

        Raises:
            CommitmentNotFoundError: If the commitment was never inserted
        """
        with self._lock:
            index = self._index.get(commitment)
            if index is None:
                raise CommitmentNotFoundError(commitment.data)
            return self._tree.path(index)

    # ------------------------------------------------------------------
    # Direct insertion
    # ------------------------------------------------------------------

    def insert(self, commitment: Commitment) -> int:
        """
        Append a commitment.

        Returns:
            Leaf index

        Raises:
            DuplicateCommitmentError: If already present or held
            AccumulatorFullError: If every leaf is used
        """
        return self.insert_many([commitment])[0]

    def insert_many(self, commitments: Sequence[Commitment]) -> List[int]:
        """
        Append a batch of commitments; either all are inserted or none.
        """
        with self._lock:
            self._check_insertable(commitments)
            return self._append(commitments)

    # ------------------------------------------------------------------
    # Staging
    # ------------------------------------------------------------------

    def hold(self, commitments: Sequence[Commitment]) -> None:
        """
        Reserve digests for a later append_held().

        Raises:
            DuplicateCommitmentError: If any digest is present, held, or repeated
            AccumulatorFullError: If the held batch cannot fit
        """
        with self._lock:
            self._check_insertable(commitments)
            if self._tree.size + len(self._pending) + len(commitments) > self.capacity:
                raise AccumulatorFullError(self.capacity)
            self._pending.update(commitments)

    def append_held(self, commitments: Sequence[Commitment]) -> List[int]:
        """Append previously held commitments and drop their reservations."""
        with self._lock:
            for commitment in commitments:
                if commitment not in self._pending:
                    raise InvariantViolationError(
                        "held-commitment",
                        f"commitment {commitment.short()} was not held",
                    )
                if commitment in self._index:
                    raise InvariantViolationError(
                        "unique-commitment",
                        f"held commitment {commitment.short()} already present",
                    )
            indices = self._append(commitments)
            self._pending.difference_update(commitments)
            return indices

    def release(self, commitments: Iterable[Commitment]) -> None:
        """Drop reservations; unknown digests are ignored."""
        with self._lock:
            self._pending.difference_update(commitments)

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    # ------------------------------------------------------------------
    # Internals (lock held)
    # ------------------------------------------------------------------

    def _check_insertable(self, commitments: Sequence[Commitment]) -> None:
        seen: Set[Hash] = set()
        for commitment in commitments:
            if commitment in self._index or commitment in self._pending or commitment in seen:
                raise DuplicateCommitmentError(commitment.data)
            seen.add(commitment)
        if self._tree.size + len(commitments) > self.capacity:
            raise AccumulatorFullError(self.capacity)

    def _append(self, commitments: Sequence[Commitment]) -> List[int]:
        indices = []
        for commitment in commitments:
            index = self._tree.append(commitment)
            self._index[commitment] = index
            indices.append(index)
            logger.debug(f"Commitment {commitment.short()} at index {index}")
        return indices

    @classmethod
    def from_leaves(cls, leaves: Sequence[Commitment], depth: int = ACCUMULATOR_DEPTH) -> "CommitmentAccumulator":
        """Rebuild from commitments in persisted insertion order."""
        accumulator = cls(depth)
        accumulator.insert_many(list(leaves))
        return accumulator
