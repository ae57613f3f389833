"""Import probing."""

from comfy_provision.infrastructure.probe.importer import (
    SubprocessImportProber,
    import_candidates,
    MAX_CANDIDATES,
)

__all__ = ["SubprocessImportProber", "import_candidates", "MAX_CANDIDATES"]
