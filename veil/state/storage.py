"""
Veil Protocol v1 State Storage

SQLite persistence for the shielded ledger.

A save writes the complete ledger in one transaction; a load replays the
commitments in index order and refuses state whose recomputed roots do not
match the stored ones.
"""

from __future__ import annotations
import logging
import sqlite3
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from veil.config import LedgerConfig
from veil.core.types import Hash
from veil.entropy.gate import SourcePolicy
from veil.errors import InvalidStateRootError, SchemaMismatchError
from veil.ledger.gateway import shielded_state_root
from veil.ledger.ledger import ShieldedLedger, system_clock
from veil.ledger.oracle import ProofOracle
from veil.rotation.keys import KeyEpoch
from veil.shielded.accumulator import CommitmentAccumulator
from veil.shielded.balances import BalanceBook
from veil.shielded.nullifiers import NullifierRegistry
from veil.stealth.directory import StealthDirectory
from veil.stealth.records import StealthRecord

logger = logging.getLogger(__name__)


# Schema version for migrations
SCHEMA_VERSION = 1


CREATE_TABLES_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_info (
    key TEXT PRIMARY KEY,
    value TEXT
);

-- Ledger roots and totals (balances are TEXT: u64 exceeds SQLite INTEGER)
CREATE TABLE IF NOT EXISTS ledger_state (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    accumulator_depth INTEGER NOT NULL,
    accumulator_root BLOB NOT NULL,
    nullifier_digest BLOB NOT NULL,
    state_root BLOB NOT NULL,
    pool_total TEXT NOT NULL,
    updated_at INTEGER NOT NULL
);

-- Output commitments in insertion order
CREATE TABLE IF NOT EXISTS commitments (
    leaf_index INTEGER PRIMARY KEY,
    commitment BLOB NOT NULL UNIQUE
);

-- Spent nullifiers
CREATE TABLE IF NOT EXISTS nullifiers (
    nullifier BLOB PRIMARY KEY
);

-- Retained key epochs
CREATE TABLE IF NOT EXISTS epochs (
    epoch_id INTEGER PRIMARY KEY,
    public_key BLOB NOT NULL,
    activation_time INTEGER NOT NULL,
    entropy_reference BLOB NOT NULL
);

-- Stealth records in publication order
CREATE TABLE IF NOT EXISTS stealth_records (
    record_index INTEGER PRIMARY KEY,
    ephemeral_key BLOB NOT NULL UNIQUE,
    encrypted_amount BLOB NOT NULL,
    view_tag INTEGER NOT NULL,
    commitment_ref BLOB NOT NULL
);

-- Transparent balances
CREATE TABLE IF NOT EXISTS balances (
    account BLOB PRIMARY KEY,
    balance TEXT NOT NULL
);

-- Admitted entropy events
CREATE TABLE IF NOT EXISTS entropy_references (
    reference BLOB PRIMARY KEY
);

CREATE INDEX IF NOT EXISTS idx_stealth_view_tag ON stealth_records(view_tag);
"""

_DATA_TABLES = (
    "ledger_state",
    "commitments",
    "nullifiers",
    "epochs",
    "stealth_records",
    "balances",
    "entropy_references",
)


@dataclass
class StateStorage:
    """
    SQLite-based ledger storage.

    Provides persistent storage for:
    - Accumulator leaves and roots
    - Nullifier set
    - Epoch table
    - Stealth directory
    - Balances and admitted entropy references
    """
    db_path: str
    _conn: Optional[sqlite3.Connection] = None

    def __post_init__(self):
        self._conn = None

    @classmethod
    def from_config(cls, config: LedgerConfig) -> "StateStorage":
        return cls(str(config.db_path))

    def connect(self) -> None:
        """Open database connection and initialize schema."""
        if self._conn is not None:
            return

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(
            self.db_path,
            isolation_level=None,  # Autocommit by default
            check_same_thread=False
        )

        # Enable WAL mode for better concurrency
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")

        self._init_schema()

        logger.info(f"Connected to state storage: {self.db_path}")

    def _init_schema(self) -> None:
        """Initialize database schema."""
        self._conn.executescript(CREATE_TABLES_SQL)

        row = self._conn.execute(
            "SELECT value FROM schema_info WHERE key = 'version'"
        ).fetchone()

        if row is None:
            self._conn.execute(
                "INSERT INTO schema_info (key, value) VALUES ('version', ?)",
                (str(SCHEMA_VERSION),)
            )
        elif int(row[0]) != SCHEMA_VERSION:
            found = int(row[0])
            self.close()
            raise SchemaMismatchError(found, SCHEMA_VERSION)

    def close(self) -> None:
        """Close database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("Closed state storage")

    def __enter__(self) -> "StateStorage":
        self.connect()
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def _ensure_connected(self) -> None:
        if self._conn is None:
            self.connect()

    # =========================================================================
    # Save
    # =========================================================================

    def has_ledger(self) -> bool:
        self._ensure_connected()
        return self._conn.execute("SELECT 1 FROM ledger_state WHERE id = 1").fetchone() is not None

    def save_ledger(self, ledger: ShieldedLedger) -> Hash:
        """
        Persist the whole ledger, replacing any previous save.

        Commits are paused for the duration so the saved roots and rows
        describe the same state.

        Returns:
            The saved state root
        """
        self._ensure_connected()

        with ledger.gateway.commit_lock:
            leaves = ledger.accumulator.leaves()
            accumulator_root = ledger.accumulator.root
            nullifiers = ledger.nullifiers.nullifiers()
            nullifier_digest = ledger.nullifiers.digest()
            epochs = ledger.rotation.epoch_table()
            records = ledger.directory.records()
            balances = ledger.balances.accounts()
            pool_total = ledger.balances.pool_total
            references = ledger.entropy.admitted_references()
        state_root = shielded_state_root(accumulator_root, nullifier_digest)

        self.begin_transaction()
        try:
            for table in _DATA_TABLES:
                self._conn.execute(f"DELETE FROM {table}")

            self._conn.execute(
                """INSERT INTO ledger_state
                   (id, accumulator_depth, accumulator_root, nullifier_digest,
                    state_root, pool_total, updated_at)
                   VALUES (1, ?, ?, ?, ?, ?, ?)""",
                (
                    ledger.accumulator.depth,
                    accumulator_root.data,
                    nullifier_digest.data,
                    state_root.data,
                    str(pool_total),
                    int(time.time() * 1000),
                )
            )
            self._conn.executemany(
                "INSERT INTO commitments (leaf_index, commitment) VALUES (?, ?)",
                [(i, c.data) for i, c in enumerate(leaves)]
            )
            self._conn.executemany(
                "INSERT INTO nullifiers (nullifier) VALUES (?)",
                [(n.data,) for n in nullifiers]
            )
            self._conn.executemany(
                """INSERT INTO epochs
                   (epoch_id, public_key, activation_time, entropy_reference)
                   VALUES (?, ?, ?, ?)""",
                [
                    (e.epoch_id, e.public_verification_key, e.activation_time,
                     e.source_entropy_reference.data)
                    for e in epochs
                ]
            )
            self._conn.executemany(
                """INSERT INTO stealth_records
                   (record_index, ephemeral_key, encrypted_amount, view_tag, commitment_ref)
                   VALUES (?, ?, ?, ?, ?)""",
                [
                    (i, r.ephemeral_public_key, r.encrypted_amount, r.view_tag,
                     r.commitment_ref.data)
                    for i, r in enumerate(records)
                ]
            )
            self._conn.executemany(
                "INSERT INTO balances (account, balance) VALUES (?, ?)",
                [(account, str(amount)) for account, amount in balances.items()]
            )
            self._conn.executemany(
                "INSERT INTO entropy_references (reference) VALUES (?)",
                [(r.data,) for r in references]
            )
            self.commit()
        except Exception:
            self.rollback()
            raise

        logger.info(
            f"Saved ledger: {len(leaves)} commitments, {len(nullifiers)} nullifiers, "
            f"root {state_root.short()}"
        )
        return state_root

    # =========================================================================
    # Load
    # =========================================================================

    def load_ledger(
        self,
        config: LedgerConfig,
        proof_oracle: Optional[ProofOracle] = None,
        source_policy: Optional[SourcePolicy] = None,
        clock: Callable[[], int] = system_clock,
    ) -> ShieldedLedger:
        """
        Restore a saved ledger.

        Raises:
            InvalidStateRootError: Recomputed roots differ from the saved ones
            LookupError: Nothing has been saved
            InvalidParameterError: No proof oracle given
        """
        self._ensure_connected()

        row = self._conn.execute(
            """SELECT accumulator_depth, accumulator_root, nullifier_digest,
                      state_root, pool_total
               FROM ledger_state WHERE id = 1"""
        ).fetchone()
        if row is None:
            raise LookupError(f"No ledger saved in {self.db_path}")
        depth, stored_acc_root, stored_nf_digest, stored_state_root, pool_total = row

        leaves = [
            Hash(bytes(r[0])) for r in
            self._conn.execute("SELECT commitment FROM commitments ORDER BY leaf_index")
        ]
        accumulator = CommitmentAccumulator.from_leaves(leaves, depth)
        if accumulator.root != bytes(stored_acc_root):
            raise InvalidStateRootError("accumulator_root", bytes(stored_acc_root), accumulator.root.data)

        nullifiers = NullifierRegistry(
            Hash(bytes(r[0])) for r in self._conn.execute("SELECT nullifier FROM nullifiers")
        )
        if nullifiers.digest() != bytes(stored_nf_digest):
            raise InvalidStateRootError("nullifier_digest", bytes(stored_nf_digest), nullifiers.digest().data)

        state_root = shielded_state_root(accumulator.root, nullifiers.digest())
        if state_root != bytes(stored_state_root):
            raise InvalidStateRootError("state_root", bytes(stored_state_root), state_root.data)

        epochs = [
            KeyEpoch(
                epoch_id=r[0],
                public_verification_key=bytes(r[1]),
                activation_time=r[2],
                source_entropy_reference=Hash(bytes(r[3])),
            )
            for r in self._conn.execute(
                """SELECT epoch_id, public_key, activation_time, entropy_reference
                   FROM epochs ORDER BY epoch_id"""
            )
        ]

        directory = StealthDirectory.from_records(
            StealthRecord(
                ephemeral_public_key=bytes(r[0]),
                encrypted_amount=bytes(r[1]),
                view_tag=r[2],
                commitment_ref=Hash(bytes(r[3])),
            )
            for r in self._conn.execute(
                """SELECT ephemeral_key, encrypted_amount, view_tag, commitment_ref
                   FROM stealth_records ORDER BY record_index"""
            )
        )

        balances = BalanceBook(
            balances={
                bytes(r[0]): int(r[1])
                for r in self._conn.execute("SELECT account, balance FROM balances")
            },
            pool_total=int(pool_total),
        )

        references = [
            Hash(bytes(r[0])) for r in self._conn.execute("SELECT reference FROM entropy_references")
        ]

        config = replace(config, accumulator=replace(config.accumulator, depth=depth))
        ledger = ShieldedLedger.restore(
            config=config,
            accumulator=accumulator,
            nullifiers=nullifiers,
            balances=balances,
            epochs=epochs,
            directory=directory,
            entropy_references=references,
            proof_oracle=proof_oracle,
            source_policy=source_policy,
            clock=clock,
        )

        logger.info(f"Loaded ledger: {len(leaves)} commitments, root {state_root.short()}")
        return ledger

    # =========================================================================
    # Transaction Support
    # =========================================================================

    def begin_transaction(self) -> None:
        """Begin a transaction."""
        self._ensure_connected()
        self._conn.execute("BEGIN TRANSACTION")

    def commit(self) -> None:
        """Commit current transaction."""
        self._ensure_connected()
        self._conn.execute("COMMIT")

    def rollback(self) -> None:
        """Rollback current transaction."""
        self._ensure_connected()
        self._conn.execute("ROLLBACK")

    def get_statistics(self) -> Dict[str, Any]:
        """Row counts per table."""
        self._ensure_connected()
        stats = {"schema_version": SCHEMA_VERSION}
        for table in _DATA_TABLES[1:]:
            stats[table] = self._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        return stats
