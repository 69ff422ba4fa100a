"""
Configuration module for the SCIM connector.

This module provides environment variable configuration and settings management
using Pydantic Settings for type-safe configuration.
"""
from pathlib import Path
from typing import Optional

from pydantic import Field, validator
from pydantic_settings import BaseSettings


class ConnectorSettings(BaseSettings):
    """
    Configuration settings for the SCIM connector.

    All settings are loaded from environment variables with validation.
    """

    log_level: str = Field(
        "INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    mapping_file: Path = Field(
        Path("config/mapping.yaml"),
        description="YAML file holding the user and group attribute mapping tables"
    )

    store_file: Path = Field(
        Path("/data/scim_store.json"),
        description="JSON file backing the document store"
    )

    user_collection: str = Field(
        "users",
        description="Storage collection holding user records"
    )

    group_collection: str = Field(
        "groups",
        description="Storage collection holding group records"
    )

    membership_workers: int = Field(
        8,
        description="Thread pool size for membership fan-out (group cleanup, member resolution)"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    @validator("log_level")
    def validate_log_level(cls, v):
        """Validate log level is one of the standard Python logging levels."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of: {', '.join(valid_levels)}")
        return v.upper()

    @validator("user_collection", "group_collection")
    def validate_collection_names(cls, v):
        """Validate collection names are not empty."""
        if not v or not v.strip():
            raise ValueError("collection name cannot be empty")
        return v.strip()

    @validator("membership_workers")
    def validate_membership_workers(cls, v):
        if v < 1:
            raise ValueError("MEMBERSHIP_WORKERS must be at least 1")
        return v

    def ensure_data_directories(self) -> None:
        """Create the parent directory of the store file if it doesn't exist."""
        self.store_file.parent.mkdir(parents=True, exist_ok=True)


# Global settings instance
settings: Optional[ConnectorSettings] = None


def get_settings() -> ConnectorSettings:
    """
    Get the global settings instance, creating it if necessary.

    Returns:
        ConnectorSettings: The global settings instance

    Raises:
        ValueError: If environment variables are invalid
    """
    global settings
    if settings is None:
        settings = ConnectorSettings()
        settings.ensure_data_directories()
    return settings


def reload_settings() -> ConnectorSettings:
    """
    Force reload settings from environment variables.

    This is useful for testing or when environment variables change.

    Returns:
        ConnectorSettings: New settings instance
    """
    global settings
    settings = ConnectorSettings()
    settings.ensure_data_directories()
    return settings
