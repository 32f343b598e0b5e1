"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class LendingConfig(BaseSettings):
    """Lending engine configuration"""

    model_config = SettingsConfigDict(
        env_prefix="LENDING_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage configuration
    storage_backend: str = "sqlite"  # sqlite or memory
    sqlite_path: str = "lending.db"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Loan terms
    minimum_principal_major: int = 100
    max_base_rate_percent: str = "100"
    max_extra_rate_percent: str = "50"
    max_installments: int = 12

    # Risk flags
    default_threshold_days: int = 60

    # Payment allocation
    lock_timeout_seconds: float = 5.0
    payment_retry_attempts: int = 3
    payment_retry_backoff_seconds: float = 0.05

    # Credit scoring
    score_base_with_history: int = 700
    score_no_history: int = 650
    score_floor: int = 300
    score_cap: int = 850
    score_history_months: int = 12

    # Lender compliance
    compliance_min_proofs_for_rate: int = 5

    # Affordability
    affordability_buffer_percent: str = "20"
    affordability_target_dti_percent: str = "35"

    # Feature flags
    enable_audit_logging: bool = True


# Global configuration instance
config = LendingConfig()


def get_config() -> LendingConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LendingConfig:
    """Reload configuration from environment"""
    global config
    config = LendingConfig()
    return config
