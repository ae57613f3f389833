"""Python dependency installation."""

from comfy_provision.infrastructure.pip.installer import (
    PipInstaller,
    REQUIREMENTS_FILENAME,
    filter_requirements,
)

__all__ = ["PipInstaller", "REQUIREMENTS_FILENAME", "filter_requirements"]
