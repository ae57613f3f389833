"""Git infrastructure."""

from comfy_provision.infrastructure.git.fetcher import GitFetcher

__all__ = ["GitFetcher"]
