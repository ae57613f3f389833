"""Protocol definitions for the external collaborators."""

from typing import Protocol, Dict, List, Optional
from pathlib import Path
from .models import ProbeResult


class IRepositoryFetcher(Protocol):
    """Interface for cloning and updating git repositories."""

    def clone(
        self,
        url: str,
        destination: Path,
        log_path: Path,
        recursive: bool = False,
        depth: Optional[int] = None,
    ) -> None:
        """Clone ``url`` into ``destination``. Raises FetchError on failure."""
        ...

    def checkout(self, repo_dir: Path, ref: str, log_path: Path) -> None:
        """Check out ``ref`` in an existing clone. Raises FetchError on failure."""
        ...

    def fetch_tags(self, repo_dir: Path, log_path: Path) -> bool:
        """Fetch tags; returns False instead of raising."""
        ...

    def pull(self, repo_dir: Path, log_path: Path) -> bool:
        """Rebase-pull an existing clone; returns False instead of raising."""
        ...


class IDependencyInstaller(Protocol):
    """Interface for installing a requirements file."""

    def install(
        self,
        requirements: Path,
        log_path: Path,
        constraints: Optional[Path] = None,
    ) -> None:
        """Install ``requirements``. Raises InstallError on failure."""
        ...

    def check(self, log_path: Path) -> bool:
        """Verify installed packages have compatible dependencies."""
        ...


class IImportProber(Protocol):
    """Interface for checking that plugin directories import."""

    def probe_core(self, app_root: Path) -> ProbeResult:
        """Import the host application's node registry."""
        ...

    def probe(self, app_root: Path, plugin_dir: Path) -> ProbeResult:
        """Try the plugin's import candidates; never raises for import errors."""
        ...


class IImageBuilder(Protocol):
    """Interface for a container image builder."""

    def ensure_available(self) -> None:
        """Raise ConfigurationError if the builder cannot be used."""
        ...

    def prune(self, hard: bool = False) -> None:
        """Free build cache and dangling images. Never raises."""
        ...

    def report_disk_usage(self, label: str) -> None:
        ...

    def ensure_builder(self) -> None:
        """Make sure a usable builder instance exists. Raises ImageBuildError."""
        ...

    def build(
        self,
        image_ref: str,
        build_args: Dict[str, str],
        platform: str,
        target: Optional[str],
        output: str,
        no_cache: bool,
        context_dir: Path,
        extra_args: Optional[List[str]] = None,
    ) -> None:
        """Build (and push/load) the image. Raises ImageBuildError on failure."""
        ...
