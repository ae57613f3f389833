"""Infrastructure layer package."""

from comfy_provision.infrastructure.config import ConfigLoader, SanityConfig, BuildConfig, StartupConfig
from comfy_provision.infrastructure.manifest import ManifestLoader, parse_manifest
from comfy_provision.infrastructure.git import GitFetcher
from comfy_provision.infrastructure.pip import PipInstaller
from comfy_provision.infrastructure.probe import SubprocessImportProber
from comfy_provision.infrastructure.docker import BuildxImageBuilder

__all__ = [
    "ConfigLoader",
    "SanityConfig",
    "BuildConfig",
    "StartupConfig",
    "ManifestLoader",
    "parse_manifest",
    "GitFetcher",
    "PipInstaller",
    "SubprocessImportProber",
    "BuildxImageBuilder",
]
