"""
Veil Protocol v1 Test Fixtures
"""

import pytest

from veil.config import LedgerConfig
from veil.core.types import Hash
from veil.crypto.ed25519 import Ed25519Point
from veil.crypto.hash import sha3_256
from veil.entropy.gate import EntropyEvent, StaticSourcePolicy
from veil.ledger.gateway import TransferRequest
from veil.ledger.ledger import ShieldedLedger
from veil.ledger.oracle import MockProofOracle


T0 = 1_700_000_000_000
HOUR_MS = 3_600_000
DAY_MS = 86_400_000


class FakeClock:
    """Settable millisecond clock."""

    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


def digest(label: str) -> Hash:
    return sha3_256(label.encode())


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def genesis_secret() -> bytes:
    """Deterministic genesis signing scalar."""
    return Ed25519Point.hash_to_scalar(b"veil-test-genesis")


@pytest.fixture
def genesis_public(genesis_secret) -> bytes:
    return Ed25519Point.derive_public_key(genesis_secret)


@pytest.fixture
def config(tmp_path) -> LedgerConfig:
    """Small accumulator, one trusted source, short waits."""
    config = LedgerConfig(name="veil-test")
    config.accumulator.depth = 8
    config.entropy.trusted_sources = ["usgs"]
    config.entropy.source_policy_timeout_ms = 500
    config.rotation.epoch_wait_timeout_ms = 200
    config.gateway.proof_timeout_ms = 500
    config.gateway.workers = 4
    config.storage.data_dir = str(tmp_path)
    return config


@pytest.fixture
def oracle() -> MockProofOracle:
    return MockProofOracle()


@pytest.fixture
def ledger(config, genesis_public, oracle, clock):
    """Fresh ledger at T0 trusting source 'usgs'."""
    ledger = ShieldedLedger.create(
        config,
        genesis_public_key=genesis_public,
        proof_oracle=oracle,
        source_policy=StaticSourcePolicy(config.entropy.trusted_sources),
        clock=clock,
        genesis_time=T0,
    )
    yield ledger
    ledger.close()


@pytest.fixture
def make_event(clock):
    """Factory for entropy events observed 'now' unless told otherwise."""
    def _make(
        latitude: float = 35.0,
        longitude: float = 139.0,
        magnitude: float = 6.1,
        observed_at: int = None,
        source_id: str = "usgs",
        raw_payload: bytes = b"quake",
    ) -> EntropyEvent:
        return EntropyEvent(
            source_id=source_id,
            latitude=latitude,
            longitude=longitude,
            magnitude=magnitude,
            observed_at=clock() if observed_at is None else observed_at,
            raw_payload=raw_payload,
        )
    return _make


@pytest.fixture
def admitted_reference(ledger, make_event) -> Hash:
    """Reference of an entropy event admitted without rotating."""
    return ledger.submit_entropy_event(make_event(raw_payload=b"baseline"))


@pytest.fixture
def make_request(ledger, admitted_reference):
    """Factory for correctly proven transfer requests."""
    def _make(
        nullifier: Hash,
        commitments=(),
        epoch_id: int = None,
        entropy_reference: Hash = None,
        balance_deltas=(),
        stealth_records=(),
        proof: bytes = None,
    ) -> TransferRequest:
        if epoch_id is None:
            epoch_id = ledger.rotation.current_epoch.epoch_id
        unsigned = TransferRequest(
            proof=b"\x00",
            nullifier=nullifier,
            commitments=tuple(commitments),
            epoch_id=epoch_id,
            entropy_reference=entropy_reference or admitted_reference,
            balance_deltas=tuple(balance_deltas),
            stealth_records=tuple(stealth_records),
        )
        if proof is None:
            epoch = ledger.rotation.get_epoch(epoch_id)
            key = epoch.public_verification_key if epoch else bytes(32)
            proof = MockProofOracle.make_proof(unsigned.statement(), key)
        return TransferRequest(
            proof=proof,
            nullifier=unsigned.nullifier,
            commitments=unsigned.commitments,
            epoch_id=unsigned.epoch_id,
            entropy_reference=unsigned.entropy_reference,
            balance_deltas=unsigned.balance_deltas,
            stealth_records=unsigned.stealth_records,
        )
    return _make


