"""Configuration package."""

from comfy_provision.infrastructure.config.loader import (
    ConfigLoader,
    SanityConfig,
    BuildConfig,
    StartupConfig,
)

__all__ = ["ConfigLoader", "SanityConfig", "BuildConfig", "StartupConfig"]
