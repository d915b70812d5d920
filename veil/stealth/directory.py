"""
Veil Protocol v1 Stealth Directory

Append-only public list of stealth records. Records are keyed by their
ephemeral key and indexed by view tag; nothing is indexed by recipient.

Scanning is wallet-side work over a snapshot of the directory:
1. a * R for every record, compare the 1-byte view tag (cheap filter)
2. on a match, open the sealed amount; the AEAD binds the commitment and
   the one-time key, so a successful open confirms ownership
"""

from __future__ import annotations
import logging
import threading
from typing import Dict, Iterable, Iterator, List, Sequence, Set

from veil.crypto.cipher import open_amount
from veil.crypto.ed25519 import Ed25519Point, GroupError
from veil.errors import DuplicateStealthRecordError, InvariantViolationError
from veil.stealth.keys import (
    ViewCredential,
    amount_aad,
    amount_key_for,
    one_time_public_key,
    spend_tweak_for,
    view_tag_for,
)
from veil.stealth.records import Payment, StealthRecord

logger = logging.getLogger(__name__)


class StealthScan:
    """
    Lazy, restartable iterable of payments for one view credential.

    Every iteration takes a fresh snapshot of the directory, so records
    published between passes appear on the next pass. candidates counts the
    view-tag matches of the latest pass.
    """

    def __init__(self, directory: "StealthDirectory", credential: ViewCredential):
        credential.validate()
        self._directory = directory
        self._credential = credential
        self.candidates = 0

    def __iter__(self) -> Iterator[Payment]:
        self.candidates = 0
        records = self._directory.records()
        view_secret = self._credential.view_secret
        spend_public = self._credential.spend_public

        for index, record in enumerate(records):
            try:
                shared = Ed25519Point.scalarmult(view_secret, record.ephemeral_public_key)
            except GroupError:
                continue
            if view_tag_for(shared) != record.view_tag:
                continue

            self.candidates += 1
            tweak = spend_tweak_for(shared, record.commitment_ref)
            one_time = one_time_public_key(tweak, spend_public)
            try:
                amount = open_amount(
                    amount_key_for(shared),
                    record.encrypted_amount,
                    amount_aad(record.commitment_ref, one_time),
                )
            except ValueError:
                # View tag collision
                continue

            yield Payment(
                amount=amount,
                commitment_ref=record.commitment_ref,
                one_time_public_key=one_time,
                spend_tweak=tweak,
                ephemeral_public_key=record.ephemeral_public_key,
                record_index=index,
            )


class StealthDirectory:
    """
    Append-only store of stealth records.

    Gateway staging:
        hold(records)    reserve ephemeral keys
        publish(records) append held records
        release(records) drop reservations
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._records: List[StealthRecord] = []
        self._by_ephemeral: Dict[bytes, int] = {}
        self._by_view_tag: Dict[int, List[int]] = {}
        self._pending: Set[bytes] = set()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def records(self) -> List[StealthRecord]:
        """Snapshot of all records in publication order."""
        with self._lock:
            return list(self._records)

    def get(self, ephemeral_public_key: bytes):
        with self._lock:
            index = self._by_ephemeral.get(ephemeral_public_key)
            return None if index is None else self._records[index]

    def with_view_tag(self, view_tag: int) -> List[StealthRecord]:
        with self._lock:
            return [self._records[i] for i in self._by_view_tag.get(view_tag, [])]

    def add(self, record: StealthRecord) -> int:
        """
        Publish one record directly.

        Raises:
            InvalidStealthRecordError: Malformed record
            DuplicateStealthRecordError: Ephemeral key already published or held
        """
        record.validate()
        with self._lock:
            self._check_new([record])
            return self._append(record)

    def hold(self, records: Sequence[StealthRecord]) -> None:
        for record in records:
            record.validate()
        with self._lock:
            self._check_new(records)
            self._pending.update(r.ephemeral_public_key for r in records)

    def publish(self, records: Sequence[StealthRecord]) -> List[int]:
        with self._lock:
            for record in records:
                if record.ephemeral_public_key not in self._pending:
                    raise InvariantViolationError(
                        "held-stealth-record",
                        f"record {record.ephemeral_public_key.hex()[:16]} was not held",
                    )
            indices = []
            for record in records:
                self._pending.discard(record.ephemeral_public_key)
                indices.append(self._append(record))
            return indices

    def release(self, records: Iterable[StealthRecord]) -> None:
        with self._lock:
            self._pending.difference_update(r.ephemeral_public_key for r in records)

    def scan(self, credential: ViewCredential) -> StealthScan:
        return StealthScan(self, credential)

    def _check_new(self, records: Sequence[StealthRecord]) -> None:
        seen: Set[bytes] = set()
        for record in records:
            key = record.ephemeral_public_key
            if key in self._by_ephemeral or key in self._pending or key in seen:
                raise DuplicateStealthRecordError(key)
            seen.add(key)

    def _append(self, record: StealthRecord) -> int:
        index = len(self._records)
        self._records.append(record)
        self._by_ephemeral[record.ephemeral_public_key] = index
        self._by_view_tag.setdefault(record.view_tag, []).append(index)
        logger.debug(f"Stealth record {index} published (tag {record.view_tag:02x})")
        return index

    @classmethod
    def from_records(cls, records: Iterable[StealthRecord]) -> "StealthDirectory":
        directory = cls()
        for record in records:
            directory.add(record)
        return directory
