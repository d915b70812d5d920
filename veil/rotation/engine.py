"""
Veil Protocol v1 Quantum Rotation Engine

State machine for verification-key rotation:

    ACTIVE(epoch) --interval elapsed / emergency--> ROTATION_DUE
    ROTATION_DUE  --validated entropy event-->      ROTATION_IN_PROGRESS
    ROTATION_IN_PROGRESS --derived--> ACTIVE(epoch + 1)
    ROTATION_IN_PROGRESS --failed-->  ROTATION_DUE

Only one rotation is in flight at a time. The new epoch becomes current
only after its key is fully derived; concurrent triggers wait for the
in-flight outcome instead of starting their own.
"""

from __future__ import annotations
import logging
import threading
import time
from enum import Enum, auto
from typing import Dict, List, Optional, Sequence

from veil.config import RotationConfig
from veil.core.types import EntropyReference, Hash
from veil.errors import (
    EpochExpiredError,
    EpochNotCommittedError,
    InvalidParameterError,
    InvariantViolationError,
    KeyDerivationFailedError,
    LedgerHaltedError,
    UnknownEpochError,
)
from veil.rotation.keys import EpochKeyDeriver, KeyEpoch

logger = logging.getLogger(__name__)


class RotationState(Enum):
    ACTIVE = auto()
    ROTATION_DUE = auto()
    ROTATION_IN_PROGRESS = auto()


class RotationEngine:
    """
    Epoch table plus the rotation state machine.

    The table keeps the current epoch and up to retention_epochs - 1
    predecessors; older epochs are pruned and fail EpochExpired.
    """

    def __init__(
        self,
        epochs: Sequence[KeyEpoch],
        config: Optional[RotationConfig] = None,
        deriver: Optional[EpochKeyDeriver] = None,
    ):
        if not epochs:
            raise InvalidParameterError("epochs", "at least the genesis epoch is required")
        self.config = config or RotationConfig()
        self.deriver = deriver or EpochKeyDeriver()

        self._cond = threading.Condition()
        self._epochs: Dict[int, KeyEpoch] = {}
        self._oldest_valid = epochs[0].epoch_id
        self._emergency: Optional[str] = None
        # Bumped per emergency request; a rotation clears only the requests
        # that preceded its start.
        self._emergency_generation = 0
        self._started_generation = 0
        self._in_progress: Optional[int] = None
        self._halted: Optional[str] = None

        previous = None
        for epoch in epochs:
            if previous is not None:
                self._check_successor(previous, epoch)
            self._epochs[epoch.epoch_id] = epoch
            previous = epoch
        self._current = previous
        self._prune()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def current_epoch(self) -> KeyEpoch:
        with self._cond:
            return self._current

    @property
    def halted(self) -> bool:
        return self._halted is not None

    @property
    def oldest_valid_epoch(self) -> int:
        with self._cond:
            return self._oldest_valid

    def epoch_table(self) -> List[KeyEpoch]:
        """Retained epochs, oldest first."""
        with self._cond:
            return [self._epochs[i] for i in sorted(self._epochs)]

    def get_epoch(self, epoch_id: int) -> Optional[KeyEpoch]:
        with self._cond:
            return self._epochs.get(epoch_id)

    def state(self, now: int) -> RotationState:
        with self._cond:
            return self._state(now)

    def _state(self, now: int) -> RotationState:
        if self._in_progress is not None:
            return RotationState.ROTATION_IN_PROGRESS
        if self._emergency is not None:
            return RotationState.ROTATION_DUE
        if now - self._current.activation_time > self.config.max_interval_ms:
            return RotationState.ROTATION_DUE
        return RotationState.ACTIVE

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def request_emergency_rotation(self, reason: str) -> None:
        """Force ROTATION_DUE until the next successful rotation."""
        with self._cond:
            self._ensure_running()
            self._emergency = reason
            self._emergency_generation += 1
        logger.warning(f"Emergency rotation requested: {reason}")

    def rotate(
        self,
        seed: Hash,
        reference: EntropyReference,
        observed_at: int,
        now: int,
    ) -> Optional[KeyEpoch]:
        """
        Rotate to the next epoch if a rotation is due.

        Returns:
            The new epoch, or None if no rotation was due

        Raises:
            KeyDerivationFailedError: Derivation failed (engine back to DUE)
            InvariantViolationError: The new epoch would break monotonicity
            LedgerHaltedError: Engine halted by an earlier violation
        """
        with self._cond:
            self._ensure_running()

            if self._in_progress is not None:
                return self._join_in_flight()

            if self._state(now) is not RotationState.ROTATION_DUE:
                return None

            previous = self._current
            target = previous.epoch_id + 1
            self._in_progress = target
            self._started_generation = self._emergency_generation

        logger.info(f"Rotating epoch {previous.epoch_id} -> {target}")
        try:
            new_key = self.deriver.derive(previous.public_verification_key, seed, target)
        except KeyDerivationFailedError:
            self._abort(target)
            raise
        except Exception as e:
            self._abort(target)
            raise KeyDerivationFailedError(target, str(e)) from e

        epoch = KeyEpoch(
            epoch_id=target,
            public_verification_key=new_key,
            activation_time=max(observed_at, previous.activation_time),
            source_entropy_reference=reference,
        )

        with self._cond:
            try:
                self._commit(epoch)
            finally:
                self._in_progress = None
                self._cond.notify_all()

        logger.info(f"Epoch {target} active (entropy {reference.short()})")
        return epoch

    def _join_in_flight(self) -> KeyEpoch:
        target = self._in_progress
        while self._in_progress == target:
            self._cond.wait()
        self._ensure_running()
        if self._current.epoch_id >= target:
            return self._epochs.get(target, self._current)
        raise KeyDerivationFailedError(target, "concurrent rotation failed")

    def _abort(self, target: int) -> None:
        with self._cond:
            self._in_progress = None
            self._cond.notify_all()
        logger.warning(f"Rotation to epoch {target} failed; rotation still due")

    def _commit(self, epoch: KeyEpoch) -> None:
        """Install a fully derived epoch (lock held)."""
        self._ensure_running()
        try:
            self._check_successor(self._current, epoch)
        except InvariantViolationError as e:
            self._halted = e.message
            logger.critical(f"Rotation engine halted: {e.message}")
            raise

        self._epochs[epoch.epoch_id] = epoch
        self._current = epoch
        if self._emergency_generation == self._started_generation:
            self._emergency = None
        else:
            logger.warning(f"Emergency raised during rotation to epoch {epoch.epoch_id}; rotation still due")
        self._prune()

    @staticmethod
    def _check_successor(previous: KeyEpoch, epoch: KeyEpoch) -> None:
        if epoch.epoch_id <= previous.epoch_id:
            raise InvariantViolationError(
                "epoch-order",
                f"epoch {epoch.epoch_id} does not follow {previous.epoch_id}",
            )
        if epoch.activation_time < previous.activation_time:
            raise InvariantViolationError(
                "activation-order",
                f"epoch {epoch.epoch_id} activates at {epoch.activation_time}, "
                f"before {previous.activation_time}",
            )

    def _prune(self) -> None:
        keep_from = self._current.epoch_id - self.config.retention_epochs + 1
        for epoch_id in [i for i in self._epochs if i < keep_from]:
            del self._epochs[epoch_id]
            logger.debug(f"Epoch {epoch_id} left the retention window")
        self._oldest_valid = max(self._oldest_valid, keep_from)

    def _ensure_running(self) -> None:
        if self._halted is not None:
            raise LedgerHaltedError(self._halted)

    def halt(self, reason: str) -> None:
        with self._cond:
            if self._halted is None:
                self._halted = reason
            self._cond.notify_all()

    # ------------------------------------------------------------------
    # Epoch validity
    # ------------------------------------------------------------------

    def validate_epoch(self, epoch_id: int, timeout_ms: Optional[int] = None) -> KeyEpoch:
        """
        Resolve a claimed epoch id to a valid epoch.

        Raises:
            EpochExpiredError: Below the retention window
            EpochNotCommittedError: Still being computed after timeout_ms
            UnknownEpochError: Any other future epoch
        """
        if not isinstance(epoch_id, int) or isinstance(epoch_id, bool) or epoch_id < 0:
            raise InvalidParameterError("epoch_id", "must be a non-negative integer")
        if timeout_ms is None:
            timeout_ms = self.config.epoch_wait_timeout_ms

        with self._cond:
            epoch = self._epochs.get(epoch_id)
            if epoch is not None:
                return epoch

            if epoch_id < self._oldest_valid:
                raise EpochExpiredError(epoch_id, self._oldest_valid)

            if epoch_id == self._in_progress:
                start = time.monotonic()
                self._cond.wait_for(lambda: self._in_progress != epoch_id, timeout=timeout_ms / 1000)
                epoch = self._epochs.get(epoch_id)
                if epoch is not None:
                    return epoch
                waited = int((time.monotonic() - start) * 1000)
                raise EpochNotCommittedError(epoch_id, waited)

            raise UnknownEpochError(epoch_id, self._current.epoch_id)
