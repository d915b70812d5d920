"""
Veil Protocol v1 Ledger Snapshot

Persisted-state shape handed to storage collaborators.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import List

from veil.core.types import Hash
from veil.rotation.keys import KeyEpoch
from veil.stealth.records import StealthRecord


@dataclass(frozen=True)
class LedgerSnapshot:
    """
    accumulator_root, nullifier_set_digest, the ordered epoch table and the
    append-only stealth records.
    """
    accumulator_root: Hash
    nullifier_set_digest: Hash
    epoch_table: List[KeyEpoch] = field(default_factory=list)
    stealth_records: List[StealthRecord] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "accumulator_root": self.accumulator_root.hex(),
            "nullifier_set_digest": self.nullifier_set_digest.hex(),
            "epoch_table": [e.to_dict() for e in self.epoch_table],
            "stealth_records": [r.to_dict() for r in self.stealth_records],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LedgerSnapshot":
        return cls(
            accumulator_root=Hash.from_hex(data["accumulator_root"]),
            nullifier_set_digest=Hash.from_hex(data["nullifier_set_digest"]),
            epoch_table=[KeyEpoch.from_dict(e) for e in data.get("epoch_table", [])],
            stealth_records=[StealthRecord.from_dict(r) for r in data.get("stealth_records", [])],
        )
