"""Domain layer package."""

from .models import (
    ManifestEntry,
    Manifest,
    Phase,
    OutcomeStatus,
    PhaseOutcome,
    OutcomeLog,
    ProbeResult,
    CommandResult,
    RunSummary,
)
from .exceptions import (
    DomainException,
    ConfigurationError,
    ManifestUnavailable,
    InvalidManifestEntry,
    FetchError,
    InstallError,
    ImportProbeError,
    HostProvisioningError,
    ImageBuildError,
    ProvisioningCancelled,
)
from .protocols import (
    IRepositoryFetcher,
    IDependencyInstaller,
    IImportProber,
    IImageBuilder,
)

__all__ = [
    # Models
    "ManifestEntry",
    "Manifest",
    "Phase",
    "OutcomeStatus",
    "PhaseOutcome",
    "OutcomeLog",
    "ProbeResult",
    "CommandResult",
    "RunSummary",
    # Exceptions
    "DomainException",
    "ConfigurationError",
    "ManifestUnavailable",
    "InvalidManifestEntry",
    "FetchError",
    "InstallError",
    "ImportProbeError",
    "HostProvisioningError",
    "ImageBuildError",
    "ProvisioningCancelled",
    # Protocols
    "IRepositoryFetcher",
    "IDependencyInstaller",
    "IImportProber",
    "IImageBuilder",
]
