"""
Global settings from environment variables.
"""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class SessionStoreSettings(BaseSettings):
    """
    Configuration loaded from environment variables.

    Environment variables should be prefixed with SESSIONSTORES_
    Example: SESSIONSTORES_DEFAULT_STORE=mongo,
    SESSIONSTORES_MONGO_URI=mongodb://localhost:27017
    """

    model_config = SettingsConfigDict(
        env_prefix="SESSIONSTORES_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_json: bool = False

    # Store selection: memory | mongo | dgraph
    default_store: str = "memory"

    # MongoDB
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db_name: str = "sessions"
    # Sessions whose unique key index is remembered per process
    mongo_index_cache_size: int = 10_000

    # Dgraph alpha gRPC endpoint
    dgraph_target: str = "127.0.0.1:9080"


# Global settings instance (singleton)
settings = SessionStoreSettings()


__all__ = ["SessionStoreSettings", "settings"]
