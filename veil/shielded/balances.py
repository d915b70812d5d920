"""
Veil Protocol v1 Transparent Balances

Transparent account balances and the shielded pool turnstile.

A positive delta credits an account from the shielded pool (unshield); a
negative delta debits it into the pool (shield). The pool total moves by
the negated sum of a transfer's deltas and may never become negative.
"""

from __future__ import annotations
import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from veil.constants import MAX_BALANCE
from veil.errors import (
    BalanceOverflowError,
    InsufficientFundsError,
    InvalidParameterError,
    InvariantViolationError,
)

logger = logging.getLogger(__name__)

POOL_ACCOUNT = "shielded-pool"


@dataclass(frozen=True)
class BalanceDelta:
    """Signed change to one transparent account."""
    account: bytes
    amount: int

    def __post_init__(self):
        if not isinstance(self.account, bytes) or not self.account:
            raise InvalidParameterError("account", "must be non-empty bytes")
        if not isinstance(self.amount, int) or isinstance(self.amount, bool):
            raise InvalidParameterError("amount", "must be an integer")
        if abs(self.amount) > MAX_BALANCE:
            raise InvalidParameterError("amount", f"magnitude exceeds {MAX_BALANCE}")

    def to_dict(self) -> dict:
        return {"account": self.account.hex(), "amount": self.amount}

    @classmethod
    def from_dict(cls, data: dict) -> "BalanceDelta":
        return cls(account=bytes.fromhex(data["account"]), amount=data["amount"])


@dataclass
class _Hold:
    per_account: Dict[bytes, int]
    pool_change: int


class BalanceBook:
    """
    Account balances plus the shielded pool total.

    hold() checks a transfer's deltas against balances net of other
    outstanding holds, settle() applies them, release() forgets them.
    """

    def __init__(self, balances: Optional[Dict[bytes, int]] = None, pool_total: int = 0):
        self._lock = threading.Lock()
        self._balances: Dict[bytes, int] = dict(balances or {})
        self._pool_total = pool_total
        self._holds: Dict[int, _Hold] = {}
        self._hold_ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def balance(self, account: bytes) -> int:
        with self._lock:
            return self._balances.get(account, 0)

    @property
    def pool_total(self) -> int:
        with self._lock:
            return self._pool_total

    def accounts(self) -> Dict[bytes, int]:
        with self._lock:
            return dict(self._balances)

    # ------------------------------------------------------------------
    # Genesis
    # ------------------------------------------------------------------

    def set_balance(self, account: bytes, amount: int) -> None:
        if amount < 0 or amount > MAX_BALANCE:
            raise InvalidParameterError("amount", f"must be in [0, {MAX_BALANCE}]")
        with self._lock:
            self._balances[account] = amount

    def credit(self, account: bytes, amount: int) -> int:
        """Credit an account outside of any transfer; returns the new balance."""
        if amount < 0:
            raise InvalidParameterError("amount", "credit must be non-negative")
        with self._lock:
            result = self._balances.get(account, 0) + amount
            if result > MAX_BALANCE:
                raise BalanceOverflowError(account.hex()[:16], result, MAX_BALANCE)
            self._balances[account] = result
            return result

    # ------------------------------------------------------------------
    # Staging
    # ------------------------------------------------------------------

    def hold(self, deltas: Sequence[BalanceDelta]) -> int:
        """
        Check and reserve a set of deltas.

        Returns:
            Hold id for settle() or release()

        Raises:
            InsufficientFundsError: An account or the pool would go negative
            BalanceOverflowError: An account or the pool would exceed MAX_BALANCE
        """
        per_account: Dict[bytes, int] = {}
        for delta in deltas:
            per_account[delta.account] = per_account.get(delta.account, 0) + delta.amount
        pool_change = -sum(per_account.values())

        with self._lock:
            for account, change in per_account.items():
                self._check(account.hex()[:16], self._balances.get(account, 0),
                            self._held(account), change)
            self._check(POOL_ACCOUNT, self._pool_total, self._held_pool(), pool_change)

            hold_id = next(self._hold_ids)
            self._holds[hold_id] = _Hold(per_account=per_account, pool_change=pool_change)
            return hold_id

    def settle(self, hold_id: int) -> None:
        """Apply a held set of deltas."""
        with self._lock:
            hold = self._holds.pop(hold_id, None)
            if hold is None:
                raise InvariantViolationError("held-balance", f"unknown hold {hold_id}")
            for account, change in hold.per_account.items():
                self._balances[account] = self._balances.get(account, 0) + change
            self._pool_total += hold.pool_change

    def release(self, hold_id: int) -> None:
        with self._lock:
            self._holds.pop(hold_id, None)

    # ------------------------------------------------------------------
    # Internals (lock held)
    # ------------------------------------------------------------------

    def _held(self, account: bytes) -> List[int]:
        return [h.per_account[account] for h in self._holds.values() if account in h.per_account]

    def _held_pool(self) -> List[int]:
        return [h.pool_change for h in self._holds.values()]

    @staticmethod
    def _check(name: str, current: int, held: List[int], change: int) -> None:
        if change < 0:
            available = current + sum(c for c in held if c < 0)
            if available + change < 0:
                raise InsufficientFundsError(name, max(available, 0), -change)
        elif change > 0:
            ceiling = current + sum(c for c in held if c > 0) + change
            if ceiling > MAX_BALANCE:
                raise BalanceOverflowError(name, ceiling, MAX_BALANCE)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        with self._lock:
            return {
                "pool_total": self._pool_total,
                "balances": {k.hex(): v for k, v in sorted(self._balances.items())},
            }

    @classmethod
    def from_dict(cls, data: dict) -> "BalanceBook":
        return cls(
            balances={bytes.fromhex(k): v for k, v in data.get("balances", {}).items()},
            pool_total=data.get("pool_total", 0),
        )
