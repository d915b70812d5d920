"""
Veil Protocol v1 Nullifier Registry Tests
"""

import threading

import pytest

from veil.core.types import Hash
from veil.crypto.hash import sha3_256
from veil.errors import InvariantViolationError, NullifierReusedError
from veil.shielded.nullifiers import NullifierRegistry


def nullifier(i):
    return sha3_256(f"nullifier-{i}".encode())


class TestReserve:
    """Tests for direct reservation."""

    def test_reserve_then_check(self):
        registry = NullifierRegistry()
        assert not registry.check(nullifier(1))
        registry.reserve(nullifier(1))
        assert registry.check(nullifier(1))
        assert len(registry) == 1

    def test_second_reserve_fails(self):
        registry = NullifierRegistry()
        registry.reserve(nullifier(1))
        with pytest.raises(NullifierReusedError):
            registry.reserve(nullifier(1))
        assert len(registry) == 1

    @pytest.mark.timeout(30)
    def test_concurrent_reserve_exactly_one_wins(self):
        registry = NullifierRegistry()
        barrier = threading.Barrier(8)
        wins, losses = [], []

        def worker():
            barrier.wait()
            try:
                registry.reserve(nullifier(7))
                wins.append(1)
            except NullifierReusedError:
                losses.append(1)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(wins) == 1
        assert len(losses) == 7


class TestStaging:
    """Tests for hold/confirm/release."""

    def test_held_is_not_visible(self):
        registry = NullifierRegistry()
        registry.hold(nullifier(1))
        assert not registry.check(nullifier(1))
        assert registry.is_pending(nullifier(1))

    def test_held_blocks_reserve(self):
        registry = NullifierRegistry()
        registry.hold(nullifier(1))
        with pytest.raises(NullifierReusedError):
            registry.reserve(nullifier(1))

    def test_confirm(self):
        registry = NullifierRegistry()
        registry.hold(nullifier(1))
        registry.confirm(nullifier(1))
        assert registry.check(nullifier(1))
        assert not registry.is_pending(nullifier(1))

    def test_release(self):
        registry = NullifierRegistry()
        registry.hold(nullifier(1))
        registry.release(nullifier(1))
        registry.hold(nullifier(1))

    def test_confirm_unheld_is_invariant_violation(self):
        registry = NullifierRegistry()
        with pytest.raises(InvariantViolationError):
            registry.confirm(nullifier(1))


class TestDigest:
    """Tests for the set digest."""

    def test_empty_digest(self):
        assert NullifierRegistry().digest() == Hash.zero()

    def test_order_independent(self):
        a = NullifierRegistry()
        b = NullifierRegistry()
        for i in range(5):
            a.reserve(nullifier(i))
        for i in reversed(range(5)):
            b.reserve(nullifier(i))
        assert a.digest() == b.digest()

    def test_digest_changes_on_spend(self):
        registry = NullifierRegistry()
        registry.reserve(nullifier(0))
        before = registry.digest()
        registry.reserve(nullifier(1))
        assert registry.digest() != before

    def test_restore(self):
        registry = NullifierRegistry()
        for i in range(3):
            registry.reserve(nullifier(i))
        restored = NullifierRegistry(registry.nullifiers())
        assert restored.digest() == registry.digest()
