"""Manifest loading."""

from comfy_provision.infrastructure.manifest.loader import ManifestLoader, parse_manifest

__all__ = ["ManifestLoader", "parse_manifest"]
