"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class LedgerConfig(BaseSettings):
    """Wallet ledger configuration"""
    
    # Database configuration
    database_url: str = "sqlite:///wallet_ledger.db"  # memory://, sqlite:///path, postgresql://...
    transactions_table: str = "transactions"
    audit_table: str = "audit_events"
    
    # Storage call deadline in seconds; None disables the deadline
    storage_timeout_seconds: Optional[float] = 5.0
    storage_workers: int = 4
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    
    # Business rules configuration
    enforce_status_transitions: bool = True
    transfer_fee_rate: str = "0.01"  # Decimal as string, 1% by default
    default_page_size: int = 10
    max_page_size: int = 100
    
    # Feature flags
    enable_audit_logging: bool = True
    
    class Config:
        env_prefix = "WALLET_LEDGER_"
        env_file = ".env"
        case_sensitive = False


# Default configuration, read once from the environment
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get the default configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config
