"""
Veil Protocol v1 Commitment Accumulator Tests
"""

import threading

import pytest

from veil.crypto.hash import sha3_256
from veil.errors import (
    AccumulatorFullError,
    CommitmentNotFoundError,
    DuplicateCommitmentError,
    InvalidParameterError,
    InvariantViolationError,
)
from veil.shielded.accumulator import CommitmentAccumulator


def commitment(i):
    return sha3_256(f"commitment-{i}".encode())


class TestInsertion:
    """Tests for direct insertion."""

    def test_indices_are_sequential(self):
        acc = CommitmentAccumulator(depth=4)
        assert [acc.insert(commitment(i)) for i in range(3)] == [0, 1, 2]
        assert acc.size == 3
        assert acc.index_of(commitment(1)) == 1

    def test_duplicate_rejected_without_change(self):
        acc = CommitmentAccumulator(depth=4)
        acc.insert(commitment(0))
        root = acc.root
        with pytest.raises(DuplicateCommitmentError):
            acc.insert(commitment(0))
        assert acc.root == root
        assert acc.size == 1

    def test_batch_is_all_or_nothing(self):
        acc = CommitmentAccumulator(depth=4)
        acc.insert(commitment(5))
        with pytest.raises(DuplicateCommitmentError):
            acc.insert_many([commitment(1), commitment(5)])
        assert not acc.contains(commitment(1))
        assert acc.size == 1

    def test_full(self):
        acc = CommitmentAccumulator(depth=1)
        acc.insert_many([commitment(0), commitment(1)])
        with pytest.raises(AccumulatorFullError):
            acc.insert(commitment(2))

    def test_invalid_depth(self):
        with pytest.raises(InvalidParameterError):
            CommitmentAccumulator(depth=0)

    def test_root_depends_only_on_order(self):
        """Same insertion order, same root; different order, different root."""
        a = CommitmentAccumulator(depth=4)
        b = CommitmentAccumulator(depth=4)
        c = CommitmentAccumulator(depth=4)
        for i in range(5):
            a.insert(commitment(i))
            b.insert(commitment(i))
        for i in reversed(range(5)):
            c.insert(commitment(i))
        assert a.root == b.root
        assert a.root != c.root


class TestProofs:
    """Tests for membership proofs."""

    def test_proof_verifies(self):
        acc = CommitmentAccumulator(depth=4)
        for i in range(5):
            acc.insert(commitment(i))
        assert acc.proof_for(commitment(3)).verify(acc.root)

    def test_missing_commitment(self):
        acc = CommitmentAccumulator(depth=4)
        with pytest.raises(CommitmentNotFoundError):
            acc.proof_for(commitment(9))

    def test_rebuild_from_leaves(self):
        acc = CommitmentAccumulator(depth=6)
        for i in range(9):
            acc.insert(commitment(i))
        rebuilt = CommitmentAccumulator.from_leaves(acc.leaves(), 6)
        assert rebuilt.root == acc.root
        assert rebuilt.index_of(commitment(8)) == 8


class TestStaging:
    """Tests for gateway holds."""

    def test_hold_blocks_insert(self):
        acc = CommitmentAccumulator(depth=4)
        acc.hold([commitment(0)])
        with pytest.raises(DuplicateCommitmentError):
            acc.insert(commitment(0))
        assert not acc.contains(commitment(0))

    def test_hold_blocks_second_hold(self):
        acc = CommitmentAccumulator(depth=4)
        acc.hold([commitment(0)])
        with pytest.raises(DuplicateCommitmentError):
            acc.hold([commitment(0), commitment(1)])
        assert acc.pending_count() == 1

    def test_append_held(self):
        acc = CommitmentAccumulator(depth=4)
        acc.hold([commitment(0), commitment(1)])
        assert acc.append_held([commitment(0), commitment(1)]) == [0, 1]
        assert acc.pending_count() == 0

    def test_release_allows_reuse(self):
        acc = CommitmentAccumulator(depth=4)
        acc.hold([commitment(0)])
        acc.release([commitment(0)])
        assert acc.insert(commitment(0)) == 0

    def test_append_unheld_is_invariant_violation(self):
        acc = CommitmentAccumulator(depth=4)
        with pytest.raises(InvariantViolationError):
            acc.append_held([commitment(0)])

    def test_holds_count_against_capacity(self):
        acc = CommitmentAccumulator(depth=1)
        acc.hold([commitment(0), commitment(1)])
        with pytest.raises(AccumulatorFullError):
            acc.hold([commitment(2)])


class TestConcurrency:
    """Concurrent inserts."""

    @pytest.mark.timeout(30)
    def test_each_commitment_gets_one_index(self):
        acc = CommitmentAccumulator(depth=8)
        errors = []

        def worker(offset):
            for i in range(20):
                try:
                    acc.insert(commitment(i * 4 + offset))
                except Exception as e:
                    errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not errors
        assert acc.size == 80
        assert sorted(acc.index_of(c) for c in acc.leaves()) == list(range(80))
        assert CommitmentAccumulator.from_leaves(acc.leaves(), 8).root == acc.root
