"""Container image building."""

from comfy_provision.infrastructure.docker.builder import BuildxImageBuilder, build_command

__all__ = ["BuildxImageBuilder", "build_command"]
