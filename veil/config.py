"""
Veil Protocol v1 Ledger Configuration
"""

from __future__ import annotations
import json
import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import List, Optional

from veil.constants import (
    ACCUMULATOR_DEPTH,
    ACCUMULATOR_MAX_DEPTH,
    ACCUMULATOR_MIN_DEPTH,
    CLOCK_SKEW_TOLERANCE_MS,
    DEFAULT_DATA_DIR,
    DEFAULT_DB_NAME,
    EPOCH_WAIT_TIMEOUT_MS,
    EVENT_MAX_AGE_MS,
    GATEWAY_WORKERS,
    LATITUDE_MAX,
    LATITUDE_MIN,
    LONGITUDE_MAX,
    LONGITUDE_MIN,
    MAGNITUDE_MAX,
    MAGNITUDE_MIN,
    PROOF_TIMEOUT_MS,
    ROTATION_MAX_INTERVAL_MS,
    ROTATION_RETENTION_EPOCHS,
    SOURCE_POLICY_TIMEOUT_MS,
)

logger = logging.getLogger(__name__)


@dataclass
class AccumulatorConfig:
    """Commitment accumulator configuration."""
    depth: int = ACCUMULATOR_DEPTH


@dataclass
class EntropyConfig:
    """Entropy gate configuration."""
    min_latitude: float = LATITUDE_MIN
    max_latitude: float = LATITUDE_MAX
    min_longitude: float = LONGITUDE_MIN
    max_longitude: float = LONGITUDE_MAX
    min_magnitude: float = MAGNITUDE_MIN
    max_magnitude: float = MAGNITUDE_MAX
    max_event_age_ms: int = EVENT_MAX_AGE_MS
    clock_skew_tolerance_ms: int = CLOCK_SKEW_TOLERANCE_MS
    trusted_sources: List[str] = field(default_factory=list)
    source_policy_timeout_ms: int = SOURCE_POLICY_TIMEOUT_MS


@dataclass
class RotationConfig:
    """Key rotation configuration."""
    max_interval_ms: int = ROTATION_MAX_INTERVAL_MS
    retention_epochs: int = ROTATION_RETENTION_EPOCHS
    epoch_wait_timeout_ms: int = EPOCH_WAIT_TIMEOUT_MS


@dataclass
class GatewayConfig:
    """Proof admission gateway configuration."""
    proof_timeout_ms: int = PROOF_TIMEOUT_MS
    workers: int = GATEWAY_WORKERS


@dataclass
class StorageConfig:
    """Storage configuration."""
    data_dir: str = DEFAULT_DATA_DIR
    db_name: str = DEFAULT_DB_NAME


@dataclass
class LogConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = None
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    max_size_mb: int = 100
    backup_count: int = 5


@dataclass
class LedgerConfig:
    """
    Complete ledger configuration.

    All settings for running a shielded ledger instance.
    """
    name: str = "veil-ledger"
    testnet: bool = False

    accumulator: AccumulatorConfig = field(default_factory=AccumulatorConfig)
    entropy: EntropyConfig = field(default_factory=EntropyConfig)
    rotation: RotationConfig = field(default_factory=RotationConfig)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    log: LogConfig = field(default_factory=LogConfig)

    @property
    def data_path(self) -> Path:
        return Path(self.storage.data_dir)

    @property
    def db_path(self) -> Path:
        """Get database file path."""
        return self.data_path / self.storage.db_name

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not ACCUMULATOR_MIN_DEPTH <= self.accumulator.depth <= ACCUMULATOR_MAX_DEPTH:
            errors.append(
                f"accumulator depth must be in [{ACCUMULATOR_MIN_DEPTH}, "
                f"{ACCUMULATOR_MAX_DEPTH}], got {self.accumulator.depth}"
            )

        e = self.entropy
        if not LATITUDE_MIN <= e.min_latitude < e.max_latitude <= LATITUDE_MAX:
            errors.append(f"Invalid latitude bounds: [{e.min_latitude}, {e.max_latitude}]")
        if not LONGITUDE_MIN <= e.min_longitude < e.max_longitude <= LONGITUDE_MAX:
            errors.append(f"Invalid longitude bounds: [{e.min_longitude}, {e.max_longitude}]")
        if e.min_magnitude < 0 or e.min_magnitude >= e.max_magnitude:
            errors.append(f"Invalid magnitude bounds: [{e.min_magnitude}, {e.max_magnitude}]")
        if e.max_event_age_ms <= 0:
            errors.append("max_event_age_ms must be positive")
        if e.clock_skew_tolerance_ms < 0:
            errors.append("clock_skew_tolerance_ms cannot be negative")
        if e.source_policy_timeout_ms <= 0:
            errors.append("source_policy_timeout_ms must be positive")

        if self.rotation.max_interval_ms <= 0:
            errors.append("max_interval_ms must be positive")
        if self.rotation.retention_epochs < 1:
            errors.append("retention_epochs must be at least 1")
        if self.rotation.epoch_wait_timeout_ms < 0:
            errors.append("epoch_wait_timeout_ms cannot be negative")

        if self.gateway.proof_timeout_ms <= 0:
            errors.append("proof_timeout_ms must be positive")
        if self.gateway.workers < 1:
            errors.append("gateway workers must be at least 1")

        if not self.storage.data_dir:
            errors.append("data_dir cannot be empty")

        return errors

    def save(self, path: str) -> None:
        """Save configuration to file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

        logger.info(f"Configuration saved to {path}")

    @classmethod
    def load(cls, path: str) -> "LedgerConfig":
        """Load configuration from file."""
        with open(path, 'r') as f:
            data = json.load(f)

        config = cls(
            name=data.get("name", "veil-ledger"),
            testnet=data.get("testnet", False),
        )

        if "accumulator" in data:
            config.accumulator = AccumulatorConfig(**data["accumulator"])

        if "entropy" in data:
            config.entropy = EntropyConfig(**data["entropy"])

        if "rotation" in data:
            config.rotation = RotationConfig(**data["rotation"])

        if "gateway" in data:
            config.gateway = GatewayConfig(**data["gateway"])

        if "storage" in data:
            config.storage = StorageConfig(**data["storage"])

        if "log" in data:
            config.log = LogConfig(**data["log"])

        logger.info(f"Configuration loaded from {path}")
        return config

    @classmethod
    def default_testnet(cls) -> "LedgerConfig":
        """
        Testnet configuration: shallow accumulator, hourly rotation,
        short collaborator timeouts.
        """
        config = cls(name="veil-testnet-ledger", testnet=True)

        config.accumulator.depth = 20
        config.rotation.max_interval_ms = 3_600_000
        config.gateway.proof_timeout_ms = 2_000
        config.storage.data_dir = "./data-testnet"

        return config

    def to_dict(self) -> dict:
        """Export configuration as dictionary."""
        return {
            "name": self.name,
            "testnet": self.testnet,
            "accumulator": asdict(self.accumulator),
            "entropy": asdict(self.entropy),
            "rotation": asdict(self.rotation),
            "gateway": asdict(self.gateway),
            "storage": asdict(self.storage),
            "log": asdict(self.log),
        }


def setup_logging(config: LogConfig) -> None:
    """Configure logging based on config."""
    level = getattr(logging, config.level.upper(), logging.INFO)

    handlers = [logging.StreamHandler()]

    if config.file:
        from logging.handlers import RotatingFileHandler
        file_handler = RotatingFileHandler(
            config.file,
            maxBytes=config.max_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format=config.format,
        handlers=handlers,
    )
