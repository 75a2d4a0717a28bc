"""Configuration loading and settings."""

from wildcert.config.settings import (
    LETSENCRYPT_DIRECTORY_URL,
    LETSENCRYPT_STAGING_DIRECTORY_URL,
    Settings,
    get_settings,
)

__all__ = [
    "LETSENCRYPT_DIRECTORY_URL",
    "LETSENCRYPT_STAGING_DIRECTORY_URL",
    "Settings",
    "get_settings",
]
