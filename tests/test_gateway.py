"""
Veil Protocol v1 Proof Admission Gateway Tests
"""

import threading
from unittest.mock import MagicMock

import pytest

from veil.constants import MAX_BALANCE
from veil.errors import (
    BalanceOverflowError,
    DuplicateCommitmentError,
    EpochExpiredError,
    InsufficientFundsError,
    InvalidParameterError,
    InvalidProofError,
    NullifierReusedError,
    StealthCommitmentMismatchError,
    UnknownEntropyReferenceError,
    UnknownEpochError,
)
from veil.ledger.gateway import ADMISSION_CHECKS, TransferRequest, shielded_state_root
from veil.ledger.ledger import ShieldedLedger
from veil.ledger.oracle import MockProofOracle
from veil.entropy.gate import StaticSourcePolicy
from veil.shielded.balances import BalanceDelta
from veil.stealth.keys import StealthKeys, create_stealth_record, derive_ephemeral_secret

from conftest import DAY_MS, T0, digest

ALICE = b"alice-account"
BOB = b"bob-account"


def unchanged(ledger, root):
    return ledger.state_root == root and ledger.gateway.admitted_count == 0


def rotate(ledger, clock, make_event, i):
    clock.advance(DAY_MS + 1)
    ledger.submit_entropy_event(make_event(raw_payload=f"rotation-{i}".encode()))


class TestMockOracle:
    """Development proof oracle."""

    def test_valid_proof(self):
        oracle = MockProofOracle()
        proof = MockProofOracle.make_proof(digest("statement"), b"k" * 32)
        assert oracle.verify(proof, digest("statement"), b"k" * 32)

    def test_wrong_key(self):
        oracle = MockProofOracle()
        proof = MockProofOracle.make_proof(digest("statement"), b"k" * 32)
        assert not oracle.verify(proof, digest("statement"), b"j" * 32)


class TestRequest:
    """TransferRequest shape and statement."""

    def test_checklist_order(self):
        assert ADMISSION_CHECKS == ("proof", "epoch", "entropy")

    def test_statement_binds_outputs(self, make_request):
        a = make_request(digest("n"), [digest("c1")])
        b = make_request(digest("n"), [digest("c2")])
        assert a.statement() != b.statement()

    def test_statement_excludes_proof(self, make_request):
        a = make_request(digest("n"), [digest("c1")])
        b = make_request(digest("n"), [digest("c1")], proof=b"other")
        assert a.statement() == b.statement()

    def test_too_many_outputs(self, ledger, make_request):
        request = make_request(digest("n"), [digest(f"c{i}") for i in range(17)])
        with pytest.raises(InvalidParameterError):
            ledger.submit_transfer(request)


class TestPreconditions:
    """Checks 1-3."""

    def test_invalid_proof(self, ledger, make_request):
        root = ledger.state_root
        with pytest.raises(InvalidProofError):
            ledger.submit_transfer(make_request(digest("n"), [digest("c")], proof=b"forged"))
        assert unchanged(ledger, root)
        assert not ledger.nullifiers.check(digest("n"))

    def test_proof_under_wrong_epoch_key(self, ledger, clock, make_event, make_request):
        """A proof made with the genesis key does not verify for epoch 1."""
        rotate(ledger, clock, make_event, 1)
        statement = make_request(digest("n"), [digest("c")], epoch_id=1).statement()
        genesis_key = ledger.rotation.get_epoch(0).public_verification_key
        forged = MockProofOracle.make_proof(statement, genesis_key)
        with pytest.raises(InvalidProofError):
            ledger.submit_transfer(make_request(digest("n"), [digest("c")], epoch_id=1, proof=forged))

    def test_oracle_exception_is_invalid_proof(self, config, genesis_public, clock, make_event):
        oracle = MagicMock()
        oracle.verify.side_effect = RuntimeError("prover crashed")
        ledger = ShieldedLedger.create(
            config, genesis_public, oracle,
            StaticSourcePolicy(["usgs"]), clock=clock, genesis_time=T0,
        )
        try:
            reference = ledger.submit_entropy_event(make_event())
            request = TransferRequest(b"p", digest("n"), (digest("c"),), 0, reference)
            with pytest.raises(InvalidProofError):
                ledger.submit_transfer(request)
        finally:
            ledger.close()

    @pytest.mark.timeout(20)
    def test_oracle_timeout_is_invalid_proof(self, config, genesis_public, clock, make_event):
        release = threading.Event()

        class SlowOracle:
            def verify(self, proof, statement, key):
                release.wait(5)
                return True

        config.gateway.proof_timeout_ms = 50
        ledger = ShieldedLedger.create(
            config, genesis_public, SlowOracle(),
            StaticSourcePolicy(["usgs"]), clock=clock, genesis_time=T0,
        )
        try:
            reference = ledger.submit_entropy_event(make_event())
            request = TransferRequest(b"p", digest("n"), (digest("c"),), 0, reference)
            with pytest.raises(InvalidProofError):
                ledger.submit_transfer(request)
            assert not ledger.accumulator.contains(digest("c"))
        finally:
            release.set()
            ledger.close()

    def test_expired_epoch(self, ledger, clock, make_event, make_request):
        old = make_request(digest("n"), [digest("c")], epoch_id=0)
        for i in range(3):
            rotate(ledger, clock, make_event, i)
        assert ledger.rotation.oldest_valid_epoch == 1
        with pytest.raises(EpochExpiredError):
            ledger.submit_transfer(old)

    def test_retained_prior_epoch_accepted(self, ledger, clock, make_event, make_request):
        request = make_request(digest("n"), [digest("c")], epoch_id=0)
        rotate(ledger, clock, make_event, 1)
        ledger.submit_transfer(request)
        assert ledger.accumulator.contains(digest("c"))

    def test_unknown_epoch(self, ledger, make_request):
        with pytest.raises(UnknownEpochError):
            ledger.submit_transfer(make_request(digest("n"), [digest("c")], epoch_id=7))

    def test_unknown_entropy_reference(self, ledger, make_request):
        request = make_request(digest("n"), [digest("c")], entropy_reference=digest("never-seen"))
        with pytest.raises(UnknownEntropyReferenceError) as exc:
            ledger.submit_transfer(request)
        assert exc.value.retryable


class TestStagedEffects:
    """Steps 4-6 are all-or-nothing."""

    def test_admission_updates_root(self, ledger, make_request):
        before = ledger.state_root
        root = ledger.submit_transfer(make_request(digest("n"), [digest("c")]))
        assert root != before
        assert root == shielded_state_root(ledger.accumulator.root, ledger.nullifiers.digest())

    def test_duplicate_commitment_releases_nullifier(self, ledger, make_request):
        ledger.submit_transfer(make_request(digest("n1"), [digest("c")]))
        root = ledger.state_root
        with pytest.raises(DuplicateCommitmentError):
            ledger.submit_transfer(make_request(digest("n2"), [digest("c")]))
        assert ledger.state_root == root
        assert not ledger.nullifiers.check(digest("n2"))
        assert not ledger.nullifiers.is_pending(digest("n2"))

    def test_balance_failure_releases_everything(self, ledger, make_request):
        """A failure at step 6 leaves no trace of steps 4-5."""
        root = ledger.state_root
        unshield = [BalanceDelta(ALICE, 50)]
        with pytest.raises(InsufficientFundsError):
            ledger.submit_transfer(make_request(digest("n"), [digest("c")], balance_deltas=unshield))

        assert ledger.state_root == root
        assert not ledger.nullifiers.check(digest("n"))
        assert not ledger.accumulator.contains(digest("c"))
        assert ledger.accumulator.pending_count() == 0

        ledger.submit_transfer(make_request(digest("n"), [digest("c")]))
        assert ledger.nullifiers.check(digest("n"))

    def test_balance_overflow_releases_everything(self, ledger, make_request):
        ledger.balances.set_balance(BOB, 10)
        ledger.submit_transfer(make_request(
            digest("n1"), [digest("c1")], balance_deltas=[BalanceDelta(BOB, -10)],
        ))
        ledger.balances.set_balance(ALICE, MAX_BALANCE)
        root = ledger.state_root

        with pytest.raises(BalanceOverflowError):
            ledger.submit_transfer(make_request(
                digest("n2"), [digest("c2")], balance_deltas=[BalanceDelta(ALICE, 5)],
            ))

        assert ledger.state_root == root
        assert not ledger.nullifiers.check(digest("n2"))
        assert not ledger.nullifiers.is_pending(digest("n2"))
        assert not ledger.accumulator.contains(digest("c2"))
        assert ledger.accumulator.pending_count() == 0
        assert ledger.balances.pool_total == 10
        assert ledger.balances.balance(ALICE) == MAX_BALANCE

    def test_shield_and_unshield(self, ledger, make_request):
        ledger.balances.set_balance(ALICE, 100)
        ledger.submit_transfer(make_request(
            digest("n1"), [digest("c1")], balance_deltas=[BalanceDelta(ALICE, -60)],
        ))
        assert ledger.balances.pool_total == 60
        ledger.submit_transfer(make_request(
            digest("n2"), [digest("c2")], balance_deltas=[BalanceDelta(ALICE, 25)],
        ))
        assert ledger.balances.balance(ALICE) == 65
        assert ledger.balances.pool_total == 35

    def test_stealth_record_must_reference_output(self, ledger, make_request):
        keys = StealthKeys.from_seed(b"r" * 32)
        ephemeral = derive_ephemeral_secret(digest("seed"), b"n" * 16)
        record, _ = create_stealth_record(
            keys.view_public, keys.spend_public, 5, digest("elsewhere"), ephemeral
        )
        with pytest.raises(StealthCommitmentMismatchError):
            ledger.submit_transfer(make_request(digest("n"), [digest("c")], stealth_records=[record]))
        assert len(ledger.directory) == 0
        assert not ledger.accumulator.contains(digest("c"))

    def test_stealth_transfer_is_scannable(self, ledger, make_request):
        keys = StealthKeys.from_seed(b"r" * 32)
        ephemeral = derive_ephemeral_secret(digest("seed"), b"n" * 16)
        record, one_time = create_stealth_record(
            keys.view_public, keys.spend_public, 5, digest("c"), ephemeral
        )
        ledger.submit_transfer(make_request(digest("n"), [digest("c")], stealth_records=[record]))

        payments = list(ledger.scan(keys.view_credential()))
        assert [(p.amount, p.one_time_public_key) for p in payments] == [(5, one_time)]


class TestConcurrency:
    """Concurrent submissions."""

    @pytest.mark.timeout(60)
    def test_same_nullifier_admitted_once(self, ledger, make_request):
        requests = [make_request(digest("shared"), [digest(f"c{i}")]) for i in range(8)]
        barrier = threading.Barrier(len(requests))
        admitted, rejected = [], []

        def submit(request):
            barrier.wait()
            try:
                ledger.submit_transfer(request)
                admitted.append(request)
            except NullifierReusedError:
                rejected.append(request)

        threads = [threading.Thread(target=submit, args=(r,)) for r in requests]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(admitted) == 1
        assert len(rejected) == 7
        assert ledger.accumulator.size == 1
        assert ledger.accumulator.contains(admitted[0].commitments[0])

    @pytest.mark.timeout(60)
    def test_disjoint_requests_all_admitted(self, ledger, make_request):
        requests = [make_request(digest(f"n{i}"), [digest(f"c{i}")]) for i in range(12)]
        errors = []

        def submit(request):
            try:
                ledger.submit_transfer(request)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=submit, args=(r,)) for r in requests]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not errors
        assert ledger.accumulator.size == 12
        assert len(ledger.nullifiers) == 12
        assert ledger.gateway.admitted_count == 12
