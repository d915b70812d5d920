"""
Veil Protocol v1 Constants

All protocol constants defined here for single source of truth.
"""

from typing import Final

# ==============================================================================
# PRIMITIVE SIZES
# ==============================================================================

HASH_SIZE: Final[int] = 32                      # SHA3-256 output
SHA3_256_OUTPUT_SIZE: Final[int] = 32
SHAKE256_OUTPUT_SIZE: Final[int] = 32           # Default, configurable
POINT_SIZE: Final[int] = 32                     # Compressed Ed25519 point
SCALAR_SIZE: Final[int] = 32                    # Ed25519 scalar (little-endian)

# Ed25519 prime-order subgroup size (L)
CURVE_ORDER: Final[int] = 2**252 + 27742317777372353535851937790883648493

# Byte order
BIG_ENDIAN: Final[str] = "big"
LITTLE_ENDIAN: Final[str] = "little"

# ==============================================================================
# DOMAIN SEPARATION TAGS
# ==============================================================================

DOMAIN_LEAF: Final[bytes] = b"VEIL_ACC_LEAF_V1"
DOMAIN_NODE: Final[bytes] = b"VEIL_ACC_NODE_V1"
DOMAIN_STATE_ROOT: Final[bytes] = b"VEIL_STATE_ROOT_V1"
DOMAIN_ENTROPY_SEED: Final[bytes] = b"VEIL_ENTROPY_SEED_V1"
DOMAIN_ENTROPY_EVENT: Final[bytes] = b"VEIL_ENTROPY_EVENT_V1"
DOMAIN_ROTATION: Final[bytes] = b"VEIL_ROTATION_V1"
DOMAIN_STEALTH: Final[bytes] = b"VEIL_STEALTH_V1"
DOMAIN_STEALTH_KEYS: Final[bytes] = b"VEIL_STEALTH_KEYS_V1"
DOMAIN_VIEW_TAG: Final[bytes] = b"VEIL_VIEW_TAG_V1"
DOMAIN_AMOUNT_KEY: Final[bytes] = b"VEIL_AMOUNT_KEY_V1"
DOMAIN_EPHEMERAL: Final[bytes] = b"VEIL_EPHEMERAL_V1"
DOMAIN_STATEMENT: Final[bytes] = b"VEIL_STATEMENT_V1"
DOMAIN_MOCK_PROOF: Final[bytes] = b"VEIL_MOCK_PROOF_V1"

# ==============================================================================
# COMMITMENT ACCUMULATOR
# ==============================================================================

ACCUMULATOR_DEPTH: Final[int] = 32              # 2^32 shielded outputs
ACCUMULATOR_MIN_DEPTH: Final[int] = 1
ACCUMULATOR_MAX_DEPTH: Final[int] = 64

# ==============================================================================
# ENTROPY GATE
# ==============================================================================

LATITUDE_MIN: Final[float] = -90.0
LATITUDE_MAX: Final[float] = 90.0
LONGITUDE_MIN: Final[float] = -180.0
LONGITUDE_MAX: Final[float] = 180.0
MAGNITUDE_MIN: Final[float] = 0.0
MAGNITUDE_MAX: Final[float] = 10.0              # Largest recorded is 9.5 (Valdivia 1960)

EVENT_MAX_AGE_MS: Final[int] = 3_600_000        # 1 hour
CLOCK_SKEW_TOLERANCE_MS: Final[int] = 30_000    # 30 seconds
SOURCE_POLICY_TIMEOUT_MS: Final[int] = 2_000

# Quantization applied before seed derivation
COORDINATE_SCALE: Final[int] = 10_000           # 1e-4 degree (~11 m)
MAGNITUDE_SCALE: Final[int] = 100               # 0.01 magnitude units
SOURCE_ID_MAX_LENGTH: Final[int] = 64
RAW_PAYLOAD_MAX_SIZE: Final[int] = 65_536

# ==============================================================================
# ROTATION ENGINE
# ==============================================================================

ROTATION_MAX_INTERVAL_MS: Final[int] = 86_400_000   # 24 hours
ROTATION_RETENTION_EPOCHS: Final[int] = 3           # Current + 2 prior
EPOCH_WAIT_TIMEOUT_MS: Final[int] = 5_000
GENESIS_EPOCH_ID: Final[int] = 0

# ==============================================================================
# STEALTH DIRECTORY
# ==============================================================================

VIEW_TAG_SIZE: Final[int] = 1                   # 1/256 false-positive rate
AMOUNT_PLAINTEXT_SIZE: Final[int] = 8           # u64 little-endian
AEAD_NONCE_SIZE: Final[int] = 12
AEAD_TAG_SIZE: Final[int] = 16
ENCRYPTED_AMOUNT_SIZE: Final[int] = AMOUNT_PLAINTEXT_SIZE + AEAD_TAG_SIZE

# ==============================================================================
# PROOF ADMISSION GATEWAY
# ==============================================================================

PROOF_TIMEOUT_MS: Final[int] = 10_000
GATEWAY_WORKERS: Final[int] = 8
MAX_COMMITMENTS_PER_TRANSFER: Final[int] = 16
MAX_BALANCE: Final[int] = 2**64 - 1             # Per account and pool total

# ==============================================================================
# STORAGE
# ==============================================================================

DEFAULT_DATA_DIR: Final[str] = "./data"
DEFAULT_DB_NAME: Final[str] = "veil_state.db"

PROTOCOL_VERSION: Final[int] = 1
