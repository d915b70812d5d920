"""
Veil Protocol v1 Entropy Gate

Validates physical-randomness (seismic) events before they may drive key
rotation, and turns an admitted event into a deterministic seed.

Validation order:
1. Coordinates finite and in range          -> InvalidCoordinatesError
2. Magnitude finite and plausible           -> ImplausibleMagnitudeError
3. observed_at inside [now - age, now + skew] -> StaleEventError
4. Source recognised by the SourcePolicy    -> UntrustedSourceError
"""

from __future__ import annotations
import logging
import math
import threading
from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional, Protocol, Set

from veil.config import EntropyConfig
from veil.constants import (
    COORDINATE_SCALE,
    DOMAIN_ENTROPY_EVENT,
    DOMAIN_ENTROPY_SEED,
    MAGNITUDE_SCALE,
    RAW_PAYLOAD_MAX_SIZE,
    SOURCE_ID_MAX_LENGTH,
)
from veil.core.collaborator import CollaboratorPool
from veil.core.types import EntropyReference, Hash
from veil.crypto.hash import HashBuilder, sha3_256_raw
from veil.errors import (
    CollaboratorTimeoutError,
    ImplausibleMagnitudeError,
    InvalidCoordinatesError,
    InvalidParameterError,
    ReplayedEventError,
    StaleEventError,
    UntrustedSourceError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntropyEvent:
    """
    One seismic observation.

    observed_at is the observation time in integer milliseconds.
    raw_payload is the source's original message; it identifies the event
    but never feeds the seed.
    """
    source_id: str
    latitude: float
    longitude: float
    magnitude: float
    observed_at: int
    raw_payload: bytes = b""

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "magnitude": self.magnitude,
            "observed_at": self.observed_at,
            "raw_payload": self.raw_payload.hex(),
        }


class SourcePolicy(Protocol):
    """External trust decision for entropy sources."""

    def is_trusted(self, source_id: str) -> bool:
        ...


class StaticSourcePolicy:
    """Fixed allow-list of source ids. An empty list trusts nobody."""

    def __init__(self, trusted: Iterable[str] = ()):
        self._trusted: FrozenSet[str] = frozenset(trusted)

    def is_trusted(self, source_id: str) -> bool:
        return source_id in self._trusted


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _quantize(value: float, scale: int) -> int:
    return int(round(value * scale))


def derive_seed(event: EntropyEvent) -> Hash:
    """
    Deterministic one-way seed for an event.

    Coordinates are quantized to 1e-4 degree and magnitude to 0.01 before
    hashing, so equivalent float renderings yield the same seed.
    """
    return (
        HashBuilder(DOMAIN_ENTROPY_SEED)
        .update_var(event.source_id.encode("utf-8"))
        .update_i64(_quantize(event.latitude, COORDINATE_SCALE))
        .update_i64(_quantize(event.longitude, COORDINATE_SCALE))
        .update_i64(_quantize(event.magnitude, MAGNITUDE_SCALE))
        .update_u64(event.observed_at)
        .finalize()
    )


def reference_for(event: EntropyEvent) -> EntropyReference:
    """Public identifier of an event: canonical fields plus payload digest."""
    return (
        HashBuilder(DOMAIN_ENTROPY_EVENT)
        .update_var(event.source_id.encode("utf-8"))
        .update_i64(_quantize(event.latitude, COORDINATE_SCALE))
        .update_i64(_quantize(event.longitude, COORDINATE_SCALE))
        .update_i64(_quantize(event.magnitude, MAGNITUDE_SCALE))
        .update_u64(event.observed_at)
        .update(sha3_256_raw(event.raw_payload))
        .finalize()
    )


class EntropyGate:
    """
    Validation and replay protection for entropy events.

    Admission can be staged: hold() reserves a reference, record() commits
    it, release() drops it. admit() does all three in one step.
    """

    def __init__(
        self,
        config: Optional[EntropyConfig] = None,
        policy: Optional[SourcePolicy] = None,
        pool: Optional[CollaboratorPool] = None,
    ):
        self.config = config or EntropyConfig()
        self.policy = policy if policy is not None else StaticSourcePolicy(self.config.trusted_sources)
        self._pool = pool or CollaboratorPool(max_workers=2, name="veil-source-policy")
        self._lock = threading.Lock()
        self._admitted: Set[Hash] = set()
        self._pending: Set[Hash] = set()

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, event: EntropyEvent, now: int) -> None:
        """
        Validate an event against ledger time `now` (ms).

        Raises:
            InvalidParameterError: Malformed field types or sizes
            InvalidCoordinatesError, ImplausibleMagnitudeError,
            StaleEventError, UntrustedSourceError
        """
        self._check_shape(event)
        cfg = self.config

        lat, lon = event.latitude, event.longitude
        if not (_is_number(lat) and _is_number(lon)) or not (math.isfinite(lat) and math.isfinite(lon)):
            raise InvalidCoordinatesError(lat, lon)
        if not (cfg.min_latitude <= lat <= cfg.max_latitude and cfg.min_longitude <= lon <= cfg.max_longitude):
            raise InvalidCoordinatesError(lat, lon)

        mag = event.magnitude
        if not _is_number(mag) or not math.isfinite(mag) or not cfg.min_magnitude <= mag <= cfg.max_magnitude:
            raise ImplausibleMagnitudeError(mag, cfg.min_magnitude, cfg.max_magnitude)

        if now - event.observed_at > cfg.max_event_age_ms:
            raise StaleEventError(event.observed_at, now, f"older than {cfg.max_event_age_ms}ms")
        if event.observed_at > now + cfg.clock_skew_tolerance_ms:
            raise StaleEventError(event.observed_at, now, "observed in the future")

        self._check_source(event.source_id)

    def _check_shape(self, event: EntropyEvent) -> None:
        if not isinstance(event.observed_at, int) or isinstance(event.observed_at, bool) or event.observed_at < 0:
            raise InvalidParameterError("observed_at", "must be a non-negative integer (ms)")
        if not isinstance(event.raw_payload, (bytes, bytearray)):
            raise InvalidParameterError("raw_payload", "must be bytes")
        if len(event.raw_payload) > RAW_PAYLOAD_MAX_SIZE:
            raise InvalidParameterError("raw_payload", f"exceeds {RAW_PAYLOAD_MAX_SIZE} bytes")

    def _check_source(self, source_id: str) -> None:
        if not isinstance(source_id, str) or not source_id or len(source_id) > SOURCE_ID_MAX_LENGTH:
            raise UntrustedSourceError(str(source_id), "malformed source id")

        try:
            trusted = self._pool.call(
                "source-policy",
                self.policy.is_trusted,
                source_id,
                timeout_ms=self.config.source_policy_timeout_ms,
            )
        except CollaboratorTimeoutError:
            raise UntrustedSourceError(source_id, "policy timed out") from None
        except Exception as e:
            logger.warning(f"Source policy failed for {source_id}: {e}")
            raise UntrustedSourceError(source_id, "policy error") from e

        if not trusted:
            raise UntrustedSourceError(source_id)

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def hold(self, event: EntropyEvent) -> EntropyReference:
        """
        Reserve an event's reference.

        Raises:
            ReplayedEventError: If already admitted or being admitted
        """
        reference = reference_for(event)
        with self._lock:
            if reference in self._admitted or reference in self._pending:
                raise ReplayedEventError(reference.data)
            self._pending.add(reference)
        return reference

    def record(self, reference: EntropyReference) -> None:
        """Commit a held reference."""
        with self._lock:
            self._pending.discard(reference)
            self._admitted.add(reference)

    def release(self, reference: EntropyReference) -> None:
        with self._lock:
            self._pending.discard(reference)

    def admit(self, event: EntropyEvent, now: int) -> EntropyReference:
        """Validate, reject replays and record an event."""
        self.validate(event, now)
        reference = self.hold(event)
        self.record(reference)
        logger.info(f"Entropy event {reference.short()} admitted from {event.source_id}")
        return reference

    def is_admitted(self, reference: EntropyReference) -> bool:
        with self._lock:
            return reference in self._admitted

    def admitted_references(self) -> List[EntropyReference]:
        with self._lock:
            return sorted(self._admitted)

    def restore(self, references: Iterable[EntropyReference]) -> None:
        """Load previously admitted references (storage restore)."""
        with self._lock:
            self._admitted.update(references)

    def close(self) -> None:
        self._pool.shutdown(wait=False)
