"""
Veil Protocol v1 Error Handling

All error codes and exception classes.

Every error carries an ErrorCategory:
- VALIDATION: rejected synchronously, no state change
- CONFLICT:   rejected synchronously, no partial state change, not retryable
- RESOURCE:   arithmetic/capacity failure, never clamped
- SYSTEMIC:   retryable after remediation
- FATAL:      ledger state must stop mutating
"""

from enum import Enum, IntEnum
from typing import Optional, Any


class ErrorCode(IntEnum):
    """Protocol error codes."""

    # 1xxx - General errors
    UNKNOWN_ERROR = 1000
    INVALID_PARAMETER = 1001
    INTERNAL_ERROR = 1002
    INVARIANT_VIOLATION = 1003
    LEDGER_HALTED = 1004
    COLLABORATOR_TIMEOUT = 1005

    # 2xxx - Entropy gate errors
    INVALID_COORDINATES = 2001
    IMPLAUSIBLE_MAGNITUDE = 2002
    STALE_EVENT = 2003
    UNTRUSTED_SOURCE = 2004
    REPLAYED_EVENT = 2005
    UNKNOWN_ENTROPY_REFERENCE = 2006

    # 3xxx - Rotation errors
    EPOCH_EXPIRED = 3001
    KEY_DERIVATION_FAILED = 3002
    EPOCH_NOT_COMMITTED = 3003
    UNKNOWN_EPOCH = 3004

    # 4xxx - Shielded state errors
    INVALID_PROOF = 4001
    NULLIFIER_REUSED = 4002
    DUPLICATE_COMMITMENT = 4003
    COMMITMENT_NOT_FOUND = 4004
    ACCUMULATOR_FULL = 4005
    INSUFFICIENT_FUNDS = 4006
    OVERFLOW = 4007

    # 5xxx - Stealth directory errors
    DUPLICATE_STEALTH_RECORD = 5001
    INVALID_STEALTH_RECORD = 5002
    STEALTH_COMMITMENT_MISMATCH = 5003
    INVALID_VIEW_CREDENTIAL = 5004

    # 6xxx - Storage errors
    INVALID_STATE_ROOT = 6001
    SCHEMA_MISMATCH = 6002


class ErrorCategory(Enum):
    """How a caller should react to an error."""
    VALIDATION = "validation"
    CONFLICT = "conflict"
    RESOURCE = "resource"
    SYSTEMIC = "systemic"
    FATAL = "fatal"


class VeilError(Exception):
    """Base exception for all Veil protocol errors."""

    category: ErrorCategory = ErrorCategory.VALIDATION

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Any] = None
    ):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(f"[{code.value}] {message}")

    @property
    def retryable(self) -> bool:
        """True if the same request may succeed after remediation."""
        return self.category is ErrorCategory.SYSTEMIC

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict for outer layers."""
        result = {
            "code": self.code.value,
            "name": self.code.name,
            "category": self.category.value,
            "message": self.message,
        }
        if self.details is not None:
            result["details"] = self.details
        return result


def _short(digest: bytes) -> str:
    return digest.hex()[:16] + "..."


# ==============================================================================
# General Errors (1xxx)
# ==============================================================================

class InvalidParameterError(VeilError):
    def __init__(self, param: str, message: str = ""):
        msg = f"Invalid parameter: {param}"
        if message:
            msg += f" - {message}"
        super().__init__(ErrorCode.INVALID_PARAMETER, msg, {"parameter": param})


class InternalError(VeilError):
    category = ErrorCategory.FATAL

    def __init__(self, message: str = "Internal error", details: Any = None):
        super().__init__(ErrorCode.INTERNAL_ERROR, message, details)


class InvariantViolationError(VeilError):
    category = ErrorCategory.FATAL

    def __init__(self, invariant: str, message: str):
        super().__init__(
            ErrorCode.INVARIANT_VIOLATION,
            f"Invariant violated ({invariant}): {message}",
            {"invariant": invariant}
        )


class LedgerHaltedError(VeilError):
    category = ErrorCategory.FATAL

    def __init__(self, reason: str):
        super().__init__(
            ErrorCode.LEDGER_HALTED,
            f"Ledger halted after fatal fault: {reason}",
            {"reason": reason}
        )


class CollaboratorTimeoutError(VeilError):
    category = ErrorCategory.SYSTEMIC

    def __init__(self, collaborator: str, timeout_ms: int):
        super().__init__(
            ErrorCode.COLLABORATOR_TIMEOUT,
            f"{collaborator} did not answer within {timeout_ms}ms",
            {"collaborator": collaborator, "timeout_ms": timeout_ms}
        )


# ==============================================================================
# Entropy Gate Errors (2xxx)
# ==============================================================================

class InvalidCoordinatesError(VeilError):
    def __init__(self, latitude: float, longitude: float):
        super().__init__(
            ErrorCode.INVALID_COORDINATES,
            f"Coordinates out of range: lat={latitude}, lon={longitude}",
            {"latitude": latitude, "longitude": longitude}
        )


class ImplausibleMagnitudeError(VeilError):
    def __init__(self, magnitude: float, minimum: float, maximum: float):
        super().__init__(
            ErrorCode.IMPLAUSIBLE_MAGNITUDE,
            f"Implausible magnitude: {magnitude} not in [{minimum}, {maximum}]",
            {"magnitude": magnitude, "min": minimum, "max": maximum}
        )


class StaleEventError(VeilError):
    def __init__(self, observed_at: int, now: int, reason: str):
        super().__init__(
            ErrorCode.STALE_EVENT,
            f"Event outside acceptance window ({reason}): observed_at={observed_at}, now={now}",
            {"observed_at": observed_at, "now": now, "reason": reason}
        )


class UntrustedSourceError(VeilError):
    def __init__(self, source_id: str, reason: str = "not recognized"):
        super().__init__(
            ErrorCode.UNTRUSTED_SOURCE,
            f"Untrusted entropy source {source_id!r}: {reason}",
            {"source_id": source_id, "reason": reason}
        )


class ReplayedEventError(VeilError):
    def __init__(self, reference: bytes):
        super().__init__(
            ErrorCode.REPLAYED_EVENT,
            f"Entropy event already admitted: {_short(reference)}",
            {"reference": reference.hex()}
        )


class UnknownEntropyReferenceError(VeilError):
    category = ErrorCategory.SYSTEMIC

    def __init__(self, reference: bytes):
        super().__init__(
            ErrorCode.UNKNOWN_ENTROPY_REFERENCE,
            f"Entropy reference was never admitted: {_short(reference)}",
            {"reference": reference.hex()}
        )


# ==============================================================================
# Rotation Errors (3xxx)
# ==============================================================================

class EpochExpiredError(VeilError):
    category = ErrorCategory.CONFLICT

    def __init__(self, epoch_id: int, oldest_valid: int):
        super().__init__(
            ErrorCode.EPOCH_EXPIRED,
            f"Epoch {epoch_id} is outside the retention window (oldest valid: {oldest_valid})",
            {"epoch_id": epoch_id, "oldest_valid": oldest_valid}
        )


class KeyDerivationFailedError(VeilError):
    category = ErrorCategory.SYSTEMIC

    def __init__(self, epoch_id: int, reason: str):
        super().__init__(
            ErrorCode.KEY_DERIVATION_FAILED,
            f"Key derivation for epoch {epoch_id} failed: {reason}",
            {"epoch_id": epoch_id, "reason": reason}
        )


class EpochNotCommittedError(VeilError):
    category = ErrorCategory.SYSTEMIC

    def __init__(self, epoch_id: int, waited_ms: int):
        super().__init__(
            ErrorCode.EPOCH_NOT_COMMITTED,
            f"Epoch {epoch_id} not committed after waiting {waited_ms}ms",
            {"epoch_id": epoch_id, "waited_ms": waited_ms}
        )


class UnknownEpochError(VeilError):
    category = ErrorCategory.CONFLICT

    def __init__(self, epoch_id: int, current: int):
        super().__init__(
            ErrorCode.UNKNOWN_EPOCH,
            f"Unknown epoch {epoch_id} (current: {current})",
            {"epoch_id": epoch_id, "current": current}
        )


# ==============================================================================
# Shielded State Errors (4xxx)
# ==============================================================================

class InvalidProofError(VeilError):
    def __init__(self, reason: str = ""):
        msg = "Invalid proof"
        if reason:
            msg += f": {reason}"
        super().__init__(ErrorCode.INVALID_PROOF, msg)


class NullifierReusedError(VeilError):
    category = ErrorCategory.CONFLICT

    def __init__(self, nullifier: bytes):
        super().__init__(
            ErrorCode.NULLIFIER_REUSED,
            f"Nullifier already spent: {_short(nullifier)}",
            {"nullifier": nullifier.hex()}
        )


class DuplicateCommitmentError(VeilError):
    category = ErrorCategory.CONFLICT

    def __init__(self, commitment: bytes):
        super().__init__(
            ErrorCode.DUPLICATE_COMMITMENT,
            f"Commitment already present: {_short(commitment)}",
            {"commitment": commitment.hex()}
        )


class CommitmentNotFoundError(VeilError):
    def __init__(self, commitment: bytes):
        super().__init__(
            ErrorCode.COMMITMENT_NOT_FOUND,
            f"Commitment not in accumulator: {_short(commitment)}",
            {"commitment": commitment.hex()}
        )


class AccumulatorFullError(VeilError):
    category = ErrorCategory.RESOURCE

    def __init__(self, capacity: int):
        super().__init__(
            ErrorCode.ACCUMULATOR_FULL,
            f"Accumulator full: capacity {capacity} reached",
            {"capacity": capacity}
        )


class InsufficientFundsError(VeilError):
    category = ErrorCategory.RESOURCE

    def __init__(self, account: str, available: int, required: int):
        super().__init__(
            ErrorCode.INSUFFICIENT_FUNDS,
            f"Insufficient funds in {account}: {available} < {required}",
            {"account": account, "available": available, "required": required}
        )


class BalanceOverflowError(VeilError):
    category = ErrorCategory.RESOURCE

    def __init__(self, account: str, result: int, limit: int):
        super().__init__(
            ErrorCode.OVERFLOW,
            f"Balance overflow in {account}: {result} > {limit}",
            {"account": account, "result": result, "limit": limit}
        )


# ==============================================================================
# Stealth Directory Errors (5xxx)
# ==============================================================================

class DuplicateStealthRecordError(VeilError):
    category = ErrorCategory.CONFLICT

    def __init__(self, ephemeral_key: bytes):
        super().__init__(
            ErrorCode.DUPLICATE_STEALTH_RECORD,
            f"Stealth record already stored for ephemeral key {_short(ephemeral_key)}",
            {"ephemeral_public_key": ephemeral_key.hex()}
        )


class InvalidStealthRecordError(VeilError):
    def __init__(self, reason: str):
        super().__init__(
            ErrorCode.INVALID_STEALTH_RECORD,
            f"Invalid stealth record: {reason}"
        )


class StealthCommitmentMismatchError(VeilError):
    def __init__(self, commitment_ref: bytes):
        super().__init__(
            ErrorCode.STEALTH_COMMITMENT_MISMATCH,
            f"Stealth record references a commitment outside the transfer: {_short(commitment_ref)}",
            {"commitment_ref": commitment_ref.hex()}
        )


class InvalidViewCredentialError(VeilError):
    def __init__(self, reason: str):
        super().__init__(
            ErrorCode.INVALID_VIEW_CREDENTIAL,
            f"Invalid view credential: {reason}"
        )


# ==============================================================================
# Storage Errors (6xxx)
# ==============================================================================

class InvalidStateRootError(VeilError):
    category = ErrorCategory.FATAL

    def __init__(self, field: str, expected: bytes, got: bytes):
        super().__init__(
            ErrorCode.INVALID_STATE_ROOT,
            f"Restored {field} does not match stored value",
            {"field": field, "expected": expected.hex(), "got": got.hex()}
        )


class SchemaMismatchError(VeilError):
    category = ErrorCategory.FATAL

    def __init__(self, found: int, expected: int):
        super().__init__(
            ErrorCode.SCHEMA_MISMATCH,
            f"Storage schema version {found} (expected: {expected})",
            {"found": found, "expected": expected}
        )
