"""Custom node manifest loading and parsing.

Manifest format, one directive per line::

    <repository-url> <target-dir> [--recursive]

Blank lines and ``#`` comments are ignored, CRLF line endings are tolerated.
"""

import shutil
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse

import requests

from comfy_provision.domain.exceptions import InvalidManifestEntry, ManifestUnavailable
from comfy_provision.domain.models import Manifest, ManifestEntry, RECURSIVE_FLAG
from comfy_provision.shared.logging import get_logger
from comfy_provision.shared.retry import retry_with_backoff

logger = get_logger(__name__)

SNAPSHOT_NAME = "manifest.list"


def parse_manifest(text: str, source: Optional[str] = None) -> Manifest:
    """
    Parse manifest text into an ordered Manifest.

    Lines with fewer than two fields are skipped. A target directory that
    would escape the custom nodes root raises InvalidManifestEntry.
    """
    entries = []
    for line_number, raw in enumerate(text.split("\n"), start=1):
        line = raw.rstrip("\r")
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue

        fields = stripped.split()
        if len(fields) < 2:
            logger.debug(f"Skipping manifest line {line_number}: fewer than two fields")
            continue

        repo, target_dir = fields[0], fields[1]
        flag = fields[2] if len(fields) > 2 else None
        if flag is not None and flag != RECURSIVE_FLAG:
            logger.debug(f"Ignoring unknown flag {flag!r} on manifest line {line_number}")

        try:
            entries.append(ManifestEntry(repo, target_dir, recursive=flag == RECURSIVE_FLAG))
        except ValueError as e:
            raise InvalidManifestEntry(line_number, line, str(e)) from e

    return Manifest(entries, source=source)


class ManifestLoader:
    """
    Snapshots a manifest from a local path or an HTTP(S) URL into the work
    root, then parses the snapshot. Both passes of a run use the returned
    in-memory Manifest, never the source again.
    """

    def __init__(self, work_root: Path, timeout: int = 30):
        """
        Args:
            work_root: Directory receiving the manifest snapshot
            timeout: HTTP timeout in seconds
        """
        self.work_root = work_root
        self.timeout = timeout
        self._logger = get_logger(__name__)

    @property
    def snapshot_path(self) -> Path:
        return self.work_root / SNAPSHOT_NAME

    def load(
        self,
        path: Optional[Union[str, Path]] = None,
        url: Optional[str] = None,
    ) -> Manifest:
        """
        Load the manifest. ``path`` wins when both are given.

        Raises:
            ManifestUnavailable: No source, missing file, failed download or
                empty manifest
            InvalidManifestEntry: A line names an unsafe target directory
        """
        if not path and not url:
            raise ManifestUnavailable("Set MANIFEST_PATH (preferred) or MANIFEST_URL")

        self.work_root.mkdir(parents=True, exist_ok=True)
        snapshot = self.snapshot_path

        if path:
            source = Path(path)
            if not source.is_file():
                raise ManifestUnavailable(f"Manifest not found: {source} (is it mounted?)")
            if source.resolve() != snapshot.resolve():
                self._logger.info(f"Copying manifest {source} to {snapshot}")
                shutil.copyfile(source, snapshot)
            source_name = str(source)
        else:
            self._download(url, snapshot)
            source_name = url

        if not snapshot.exists() or snapshot.stat().st_size == 0:
            raise ManifestUnavailable(f"Manifest empty: {source_name}")

        text = snapshot.read_bytes().decode("utf-8", errors="replace")
        manifest = parse_manifest(text, source=source_name)
        self._logger.info(f"Loaded {len(manifest)} manifest entries from {source_name}")
        return manifest

    def _download(self, url: str, destination: Path) -> None:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https"):
            raise ManifestUnavailable(f"Unsupported manifest URL scheme: {url}")

        self._logger.info(f"Downloading manifest {url}")
        try:
            response = self._get(url)
            response.raise_for_status()
        except requests.RequestException as e:
            raise ManifestUnavailable(f"Failed to download manifest {url}: {e}") from e

        destination.write_bytes(response.content)

    @retry_with_backoff(
        max_attempts=3,
        backoff_seconds=2,
        exceptions=(requests.ConnectionError, requests.Timeout),
        logger=logger,
    )
    def _get(self, url: str) -> requests.Response:
        return requests.get(url, timeout=self.timeout)
