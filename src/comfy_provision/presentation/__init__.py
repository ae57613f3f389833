"""Presentation layer package."""

from comfy_provision.presentation.cli import main, build_parser

__all__ = ["main", "build_parser"]
