"""
Veil Protocol v1 Ledger Tests

End-to-end scenarios through the ShieldedLedger facade.
"""

import threading

import pytest

from veil.errors import (
    ImplausibleMagnitudeError,
    InvalidParameterError,
    InvalidProofError,
    KeyDerivationFailedError,
    LedgerHaltedError,
    NullifierReusedError,
    ReplayedEventError,
    StaleEventError,
    UntrustedSourceError,
)
from veil.entropy.gate import StaticSourcePolicy, reference_for
from veil.ledger.gateway import TransferRequest
from veil.ledger.ledger import ShieldedLedger
from veil.rotation.keys import EpochKeyDeriver
from veil.state.snapshot import LedgerSnapshot
from veil.stealth.keys import StealthKeys, create_stealth_record, derive_ephemeral_secret

from conftest import DAY_MS, T0, digest


class BrokenDeriver(EpochKeyDeriver):

    def derive(self, prev_public, seed, epoch_id):
        raise KeyDerivationFailedError(epoch_id, "derivation backend offline")


class TestScenarios:
    """Reference scenarios."""

    def test_a_due_rotation_on_entropy_event(self, ledger, clock, make_event):
        """Event admitted after the interval elapsed advances to epoch 1 at T."""
        t = clock.advance(DAY_MS + 1)
        event = make_event(latitude=35.0, longitude=139.0, magnitude=6.1, observed_at=t)

        reference = ledger.submit_entropy_event(event)

        current = ledger.rotation.current_epoch
        assert current.epoch_id == 1
        assert current.activation_time == t
        assert current.source_entropy_reference == reference

    def test_b_transfer_admitted(self, ledger, make_request):
        r0 = ledger.state_root
        r1 = ledger.submit_transfer(make_request(digest("N1"), [digest("C1")]))

        assert ledger.nullifiers.check(digest("N1"))
        assert ledger.accumulator.contains(digest("C1"))
        assert r1 != r0
        assert ledger.state_root == r1

    def test_c_reused_nullifier(self, ledger, make_request):
        r1 = ledger.submit_transfer(make_request(digest("N1"), [digest("C1")]))

        with pytest.raises(NullifierReusedError):
            ledger.submit_transfer(make_request(digest("N1"), [digest("C2")]))

        assert ledger.state_root == r1
        assert not ledger.accumulator.contains(digest("C2"))

    def test_c_resubmission_never_mutates(self, ledger, make_request):
        request = make_request(digest("N1"), [digest("C1")])
        r1 = ledger.submit_transfer(request)
        for _ in range(3):
            with pytest.raises(NullifierReusedError):
                ledger.submit_transfer(request)
        assert ledger.state_root == r1
        assert ledger.accumulator.size == 1

    def test_d_scan_yields_only_matching_record(self, ledger, make_request):
        recipient = StealthKeys.from_seed(b"recipient".ljust(32, b"\x00"))
        stranger = StealthKeys.from_seed(b"stranger".ljust(32, b"\x00"))
        paid = {}
        for i, keys in enumerate([stranger, recipient, stranger], start=1):
            ephemeral = derive_ephemeral_secret(digest("seed"), f"nonce-{i}".encode().ljust(16, b"\x00"))
            record, _ = create_stealth_record(
                keys.view_public, keys.spend_public, 100 * i, digest(f"C{i}"), ephemeral
            )
            paid[i] = record
            ledger.submit_transfer(make_request(digest(f"N{i}"), [digest(f"C{i}")], stealth_records=[record]))

        payments = list(ledger.scan(recipient.view_credential()))
        assert len(payments) == 1
        assert payments[0].record_index == 1
        assert payments[0].amount == 200
        assert payments[0].ephemeral_public_key == paid[2].ephemeral_public_key

    def test_e_implausible_magnitude(self, ledger, clock, make_event):
        clock.advance(DAY_MS + 1)
        event = make_event(magnitude=15.0)
        with pytest.raises(ImplausibleMagnitudeError):
            ledger.submit_entropy_event(event)
        assert ledger.rotation.current_epoch.epoch_id == 0
        assert not ledger.entropy.is_admitted(reference_for(event))


class TestEntropyEvents:
    """Entropy submission through the facade."""

    def test_event_admitted_without_rotation(self, ledger, make_event):
        reference = ledger.submit_entropy_event(make_event())
        assert ledger.entropy.is_admitted(reference)
        assert ledger.rotation.current_epoch.epoch_id == 0

    def test_replay_rejected(self, ledger, make_event):
        ledger.submit_entropy_event(make_event())
        with pytest.raises(ReplayedEventError):
            ledger.submit_entropy_event(make_event())

    def test_untrusted_source(self, ledger, make_event):
        with pytest.raises(UntrustedSourceError):
            ledger.submit_entropy_event(make_event(source_id="rogue"))

    def test_stale_event(self, ledger, clock, make_event):
        clock.advance(2 * 3_600_000)
        with pytest.raises(StaleEventError):
            ledger.submit_entropy_event(make_event(observed_at=T0))

    def test_failed_rotation_leaves_event_unrecorded(self, ledger, clock, make_event):
        ledger.rotation.deriver = BrokenDeriver()
        clock.advance(DAY_MS + 1)
        event = make_event()

        with pytest.raises(KeyDerivationFailedError):
            ledger.submit_entropy_event(event)
        assert not ledger.entropy.is_admitted(reference_for(event))
        assert ledger.rotation.current_epoch.epoch_id == 0

        ledger.rotation.deriver = EpochKeyDeriver()
        ledger.submit_entropy_event(event)
        assert ledger.rotation.current_epoch.epoch_id == 1

    def test_emergency_rotation(self, ledger, make_event):
        ledger.request_emergency_rotation("suspected key leak")
        ledger.submit_entropy_event(make_event())
        assert ledger.rotation.current_epoch.epoch_id == 1

    def test_epochs_monotonic_over_many_rotations(self, ledger, clock, make_event):
        for i in range(6):
            clock.advance(DAY_MS + 1)
            ledger.submit_entropy_event(make_event(raw_payload=f"event-{i}".encode()))
        table = ledger.rotation.epoch_table()
        assert [e.epoch_id for e in table] == [4, 5, 6]
        assert [e.activation_time for e in table] == sorted(e.activation_time for e in table)


class TestHalting:
    """Fatal errors stop all mutation."""

    def test_halted_ledger_rejects_everything(self, ledger, make_request, make_event):
        ledger._halt("test halt")
        assert ledger.halted
        with pytest.raises(LedgerHaltedError):
            ledger.submit_transfer(make_request(digest("n"), [digest("c")]))
        with pytest.raises(LedgerHaltedError):
            ledger.submit_entropy_event(make_event(raw_payload=b"late"))
        with pytest.raises(LedgerHaltedError):
            ledger.request_emergency_rotation("too late")

    def test_rotation_halt_propagates(self, ledger, make_request):
        ledger.rotation.halt("epoch table corrupted")
        with pytest.raises(LedgerHaltedError):
            ledger.submit_transfer(make_request(digest("n"), [digest("c")]))
        assert ledger.halted


class TestIntrospection:
    """Snapshot and status."""

    def test_snapshot_shape(self, ledger, make_request):
        ledger.submit_transfer(make_request(digest("n"), [digest("c")]))
        snapshot = ledger.snapshot()
        assert snapshot.accumulator_root == ledger.accumulator.root
        assert snapshot.nullifier_set_digest == ledger.nullifiers.digest()
        assert [e.epoch_id for e in snapshot.epoch_table] == [0]
        assert snapshot.stealth_records == []

    def test_snapshot_dict_round_trip(self, ledger, make_request):
        ledger.submit_transfer(make_request(digest("n"), [digest("c")]))
        snapshot = ledger.snapshot()
        assert LedgerSnapshot.from_dict(snapshot.to_dict()) == snapshot

    def test_status(self, ledger, make_request):
        ledger.submit_transfer(make_request(digest("n"), [digest("c")]))
        status = ledger.status()
        assert status["commitments"] == 1
        assert status["nullifiers"] == 1
        assert status["current_epoch"] == 0
        assert status["rotation_state"] == "ACTIVE"
        assert status["halted"] is False

    def test_facade_views_match_components(self, ledger, make_request):
        ledger.submit_transfer(make_request(digest("n"), [digest("c")]))
        assert ledger.is_spent(digest("n"))
        assert ledger.contains_commitment(digest("c"))
        assert not ledger.is_spent(digest("other"))

    @pytest.mark.timeout(10)
    def test_facade_views_wait_for_commit(self, ledger):
        """Reads through the facade block while a commit is in flight."""
        done = threading.Event()

        def read():
            ledger.is_spent(digest("n"))
            done.set()

        with ledger.gateway.commit_lock:
            reader = threading.Thread(target=read)
            reader.start()
            assert not done.wait(0.1)
        assert done.wait(5)
        reader.join()


class TestCollaborators:
    """Proof oracle and source policy wiring."""

    def test_proof_oracle_required(self, config, genesis_public, clock):
        with pytest.raises(InvalidParameterError):
            ShieldedLedger.create(
                config, genesis_public,
                source_policy=StaticSourcePolicy(["usgs"]), clock=clock, genesis_time=T0,
            )

    @pytest.mark.timeout(30)
    def test_stalled_oracle_does_not_block_entropy(self, config, genesis_public, clock, make_event):
        release = threading.Event()

        class StalledOracle:
            def verify(self, proof, statement, key):
                release.wait(5)
                return True

        config.gateway.workers = 2
        config.gateway.proof_timeout_ms = 50
        ledger = ShieldedLedger.create(
            config, genesis_public, StalledOracle(),
            StaticSourcePolicy(["usgs"]), clock=clock, genesis_time=T0,
        )
        try:
            reference = ledger.submit_entropy_event(make_event(raw_payload=b"first"))
            for i in range(2):
                request = TransferRequest(b"p", digest(f"n{i}"), (digest(f"c{i}"),), 0, reference)
                with pytest.raises(InvalidProofError):
                    ledger.submit_transfer(request)

            second = ledger.submit_entropy_event(make_event(raw_payload=b"second"))
            assert ledger.entropy.is_admitted(second)
        finally:
            release.set()
            ledger.close()
