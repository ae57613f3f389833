"""Domain exceptions for the provisioning tooling."""


class DomainException(Exception):
    """Base exception for all domain errors."""
    pass


class ConfigurationError(DomainException):
    """Raised when configuration is invalid or a required input is missing."""
    pass


class ManifestUnavailable(ConfigurationError):
    """Raised when the manifest cannot be read, fetched, or is empty."""
    pass


class InvalidManifestEntry(ConfigurationError):
    """Raised when a manifest line names a target directory outside the root."""

    def __init__(self, line_number: int, line: str, reason: str):
        super().__init__(f"Manifest line {line_number}: {reason}: {line!r}")
        self.line_number = line_number
        self.line = line
        self.reason = reason


class FetchError(DomainException):
    """Raised when a repository cannot be cloned."""
    pass


class InstallError(DomainException):
    """Raised when the dependency installer fails."""
    pass


class ImportProbeError(DomainException):
    """Raised when the import probe child process cannot report a result."""
    pass


class HostProvisioningError(DomainException):
    """Raised when the host application (ComfyUI) itself cannot be provisioned."""
    pass


class ImageBuildError(DomainException):
    """Raised when docker buildx fails."""
    pass


class ProvisioningCancelled(DomainException):
    """Raised when a run is cancelled by a signal."""
    pass
