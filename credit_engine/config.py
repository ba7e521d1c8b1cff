"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from decimal import Decimal
from typing import Optional

from pydantic_settings import BaseSettings


class CreditEngineConfig(BaseSettings):
    """Credit engine configuration"""

    # Database configuration
    database_url: str = "sqlite:///credit_engine.db"  # memory:// for in-memory storage

    # Credit defaults
    default_currency: str = "USD"

    # Settlement configuration
    settlement_interval_hours: float = 12.0
    settlement_penalty_rate: str = "0.10"  # Applied on insufficient funds
    late_grace_days: int = 5

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Feature flags
    enable_settlement_scheduler: bool = True
    enable_audit_logging: bool = True

    class Config:
        env_prefix = "CREDIT_ENGINE_"
        env_file = ".env"
        case_sensitive = False

    @property
    def penalty_rate(self) -> Decimal:
        return Decimal(self.settlement_penalty_rate)

    @property
    def settlement_interval_seconds(self) -> float:
        return self.settlement_interval_hours * 3600


# Global configuration instance
config = CreditEngineConfig()


def get_config() -> CreditEngineConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> CreditEngineConfig:
    """Reload configuration from environment"""
    global config
    config = CreditEngineConfig()
    return config
