"""
Configuration Management Module

Provides environment-based settings via pydantic-settings and the one-time
validation that turns a capacity/threshold pair into an immutable LedgerConfig.
"""

from dataclasses import dataclass
from typing import Any, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import InvalidConfig


@dataclass(frozen=True)
class LedgerConfig:
    """Immutable ledger bounds, only obtainable through initialize()"""
    capacity: int
    withdrawal_threshold: int


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def initialize(capacity: int, withdrawal_threshold: int) -> LedgerConfig:
    """
    Validate the two ledger bounds

    Args:
        capacity: Maximum total value the ledger may ever hold
        withdrawal_threshold: Maximum value movable in a single withdrawal

    Returns:
        Frozen LedgerConfig

    Raises:
        InvalidConfig: If either bound is not a positive integer, or if
            capacity < withdrawal_threshold
    """
    if not _is_positive_int(capacity) or not _is_positive_int(withdrawal_threshold):
        raise InvalidConfig(capacity, withdrawal_threshold)

    if capacity < withdrawal_threshold:
        raise InvalidConfig(capacity, withdrawal_threshold)

    return LedgerConfig(capacity=capacity, withdrawal_threshold=withdrawal_threshold)


class LedgerSettings(BaseSettings):
    """Capped ledger runtime settings"""

    model_config = SettingsConfigDict(
        env_prefix="CAPPED_LEDGER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Ledger bounds (validated by initialize())
    capacity: int = 10_000
    withdrawal_threshold: int = 1_000

    # Storage configuration
    database_url: str = "memory://"  # or sqlite:///path/to.db

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stderr

    # Feature flags
    enable_audit_logging: bool = True

    def to_ledger_config(self) -> LedgerConfig:
        """Validate the configured bounds"""
        return initialize(self.capacity, self.withdrawal_threshold)


# Global configuration instance
config = LedgerSettings()


def get_config() -> LedgerSettings:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerSettings:
    """Reload configuration from environment"""
    global config
    config = LedgerSettings()
    return config
