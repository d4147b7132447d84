"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings


class BackofficeConfig(BaseSettings):
    """Back office configuration"""
    
    # Storage configuration
    storage_backend: str = "sqlite"  # sqlite or memory
    database_path: str = "backoffice.db"
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 3001
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    
    # Business rules configuration
    currency: str = "EUR"
    password_min_length: int = 6
    
    # Bootstrap admin, only seeded when a password is configured
    bootstrap_admin_email: str = "admin@bank.com"
    bootstrap_admin_name: str = "Admin System"
    bootstrap_admin_password: str = ""
    
    # Outbound webhook configuration
    webhook_url: str = ""  # Empty = disabled
    webhook_timeout: float = 2.0
    webhook_async: bool = True
    
    # Feature flags
    enable_audit_logging: bool = True
    
    class Config:
        env_prefix = "BACKOFFICE_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = BackofficeConfig()


def get_config() -> BackofficeConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> BackofficeConfig:
    """Reload configuration from environment"""
    global config
    config = BackofficeConfig()
    return config
