"""
Veil Protocol v1 Key Rotation
"""

from veil.rotation.keys import (
    KeyEpoch,
    EpochKeyDeriver,
    derive_epoch_secret,
    genesis_epoch,
)
from veil.rotation.engine import (
    RotationEngine,
    RotationState,
)

__all__ = [
    "KeyEpoch",
    "EpochKeyDeriver",
    "derive_epoch_secret",
    "genesis_epoch",
    "RotationEngine",
    "RotationState",
]
