"""
Configuration management.
Simple .env based config for VPS deployment.
"""

from typing import Dict

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8080

    # Local history database
    database_path: str = "./data/app.db"

    # Logging
    log_level: str = "INFO"

    # Pricing tiers: tier name -> discount percentage off the regular price
    tier_discounts: Dict[str, float] = {"depot": 18, "warehouse": 26}
    # Tier name -> OpenCart customer_group_id, used when a store has no mapping saved
    default_tier_group_ids: Dict[str, int] = {"depot": 2, "warehouse": 3}

    # Store database connections
    db_use_ssl: bool = True
    ssl_ca_path: str = "./ssl/ca-cert.pem"
    ssl_cert_path: str = "./ssl/client-cert.pem"
    ssl_key_path: str = "./ssl/client-key.pem"
    db_pool_size: int = 10
    db_connect_timeout: int = 10  # seconds
    backup_table: str = "price_sync_backup"

    # Update processing
    max_concurrent_stores: int = 5
    failure_threshold: float = 0.1

    # Upload / preview
    preview_row_limit: int = 100
    validation_sample_size: int = 3
    max_upload_bytes: int = 10 * 1024 * 1024


# Global settings instance
settings = Settings()
