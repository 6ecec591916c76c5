"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import List, Optional


class LedgerConfig(BaseSettings):
    """Ledger core configuration"""
    
    # Database configuration
    database_url: str = "sqlite:///ledger.db"  # memory:// for an in-process store
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    
    # Security configuration
    jwt_secret: str = "change-me-in-production-ledger-signing-key"
    jwt_expiry_hours: int = 24
    jwt_algorithm: str = "HS256"
    auth_enabled: bool = True
    admin_token: Optional[str] = None  # Enables tenant onboarding over HTTP when set
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout
    
    # Business rules configuration
    currency: str = "BRL"  # Single ledger currency, ISO 4217
    installment_frequency: str = "monthly"
    max_installments: int = 120
    balance_sheet_tolerance: str = "0.01"
    
    # Report classification conventions (account subtypes)
    current_subtypes: List[str] = [
        "current", "cash", "checking", "savings", "receivable",
        "credit_card", "payable", "short_term"
    ]
    non_operating_subtypes: List[str] = ["non_operating", "financial", "other"]
    
    # Pagination
    default_page_size: int = 20
    max_page_size: int = 100

    class Config:
        env_prefix = "LEDGER_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config
