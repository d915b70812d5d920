"""
Veil Protocol v1 Nullifier Registry

Set of spent nullifiers. Insertion is the atomic spend event: a value can
be reserved at most once, however many threads race for it.
"""

from __future__ import annotations
import logging
import threading
from typing import Iterable, List, Optional, Set

from veil.core.types import Hash, Nullifier
from veil.crypto.merkle import merkle_root
from veil.errors import InvariantViolationError, NullifierReusedError

logger = logging.getLogger(__name__)


class NullifierRegistry:
    """
    Spent-nullifier set with a staging area for the gateway.

    Committed values are visible through check(); held values are not,
    but they still block a second hold or reserve of the same value.
    """

    def __init__(self, nullifiers: Optional[Iterable[Nullifier]] = None):
        self._lock = threading.Lock()
        self._spent: Set[Hash] = set(nullifiers or ())
        self._pending: Set[Hash] = set()
        self._digest: Optional[Hash] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._spent)

    def check(self, nullifier: Nullifier) -> bool:
        """True if the nullifier has been spent."""
        with self._lock:
            return nullifier in self._spent

    def reserve(self, nullifier: Nullifier) -> None:
        """
        Spend a nullifier.

        Raises:
            NullifierReusedError: If already spent or held
        """
        with self._lock:
            if nullifier in self._spent or nullifier in self._pending:
                raise NullifierReusedError(nullifier.data)
            self._spent.add(nullifier)
            self._digest = None

    def hold(self, nullifier: Nullifier) -> None:
        """
        Mark a nullifier pending.

        Raises:
            NullifierReusedError: If already spent or held
        """
        with self._lock:
            if nullifier in self._spent or nullifier in self._pending:
                raise NullifierReusedError(nullifier.data)
            self._pending.add(nullifier)

    def confirm(self, nullifier: Nullifier) -> None:
        """Move a held nullifier into the spent set."""
        with self._lock:
            if nullifier in self._spent:
                logger.critical(f"Nullifier {nullifier.short()} confirmed twice")
                raise InvariantViolationError(
                    "unique-nullifier",
                    f"nullifier {nullifier.short()} already spent",
                )
            if nullifier not in self._pending:
                raise InvariantViolationError(
                    "held-nullifier",
                    f"nullifier {nullifier.short()} was not held",
                )
            self._pending.discard(nullifier)
            self._spent.add(nullifier)
            self._digest = None

    def release(self, nullifier: Nullifier) -> None:
        with self._lock:
            self._pending.discard(nullifier)

    def is_pending(self, nullifier: Nullifier) -> bool:
        with self._lock:
            return nullifier in self._pending

    def digest(self) -> Hash:
        """
        Order-independent digest of the spent set.

        Merkle root over the sorted nullifiers; zero hash when empty.
        """
        with self._lock:
            if self._digest is None:
                self._digest = merkle_root(sorted(self._spent))
            return self._digest

    def nullifiers(self) -> List[Nullifier]:
        """Spent nullifiers in sorted order."""
        with self._lock:
            return sorted(self._spent)
