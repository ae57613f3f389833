"""Provisioning, sanity checking and image builds for ComfyUI GPU containers."""

__version__ = "0.1.0"
