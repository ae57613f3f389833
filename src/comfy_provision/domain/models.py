"""Domain models for custom node provisioning."""

import json
import threading
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Dict, Iterator, List, Optional, Sequence, Tuple
from urllib.parse import quote

RECURSIVE_FLAG = "--recursive"

# Exit codes shared by every command
EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_PROVISIONING_FAILED = 2
EXIT_INTERRUPTED = 130


class Phase(str, Enum):
    """Provisioning phases, in the order a run executes them."""

    FETCH = "fetch"
    INSTALL = "install"
    IMPORT_PROBE = "import_probe"

    @property
    def log_prefix(self) -> str:
        return {
            Phase.FETCH: "clone",
            Phase.INSTALL: "pip",
            Phase.IMPORT_PROBE: "import",
        }[self]


class OutcomeStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    WARNED = "warned"


def _check_target_dir(target_dir: str) -> None:
    if not target_dir or not target_dir.strip():
        raise ValueError("target_dir must not be empty")
    path = PurePosixPath(target_dir.replace("\\", "/"))
    if path.is_absolute():
        raise ValueError(f"target_dir must be relative: {target_dir}")
    parts = [p for p in path.parts if p != "."]
    if not parts:
        raise ValueError(f"target_dir must name a directory below the root: {target_dir}")
    if ".." in parts:
        raise ValueError(f"target_dir must not escape the custom nodes root: {target_dir}")


@dataclass(frozen=True)
class ManifestEntry:
    """One provisioning directive: clone ``repository_url`` into ``target_dir``."""

    repository_url: str
    target_dir: str
    recursive: bool = False

    def __post_init__(self):
        if not self.repository_url:
            raise ValueError("repository_url must not be empty")
        _check_target_dir(self.target_dir)

    @property
    def path_parts(self) -> Tuple[str, ...]:
        """Normalized components of ``target_dir``."""
        return tuple(p for p in PurePosixPath(self.target_dir.replace("\\", "/")).parts if p != ".")

    @property
    def log_name(self) -> str:
        """Filesystem-safe name used for this entry's log files.

        Percent-encodes the joined path, so distinct targets never share a log.
        """
        return quote("/".join(self.path_parts), safe="")

    def destination(self, custom_nodes_root: Path) -> Path:
        return custom_nodes_root / self.target_dir


class Manifest:
    """Ordered, immutable sequence of manifest entries.

    Order is source line order. Duplicates are kept; callers that materialize
    entries on disk resolve them by processing in order (last entry wins).
    """

    def __init__(self, entries: Sequence[ManifestEntry], source: Optional[str] = None):
        self._entries: Tuple[ManifestEntry, ...] = tuple(entries)
        self.source = source

    def __iter__(self) -> Iterator[ManifestEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, index: int) -> ManifestEntry:
        return self._entries[index]

    def __repr__(self) -> str:
        return f"Manifest(entries={len(self._entries)}, source={self.source!r})"

    def fetch_groups(self) -> List[List[Tuple[int, ManifestEntry]]]:
        """
        Indexed entries grouped so that no two groups touch the same tree.

        Entries land in one group when their target directories share a
        top-level component, which covers duplicates and nested targets
        (``a`` and ``a/b``). Groups keep source order, as does each group.
        """
        groups: Dict[str, List[Tuple[int, ManifestEntry]]] = {}
        for index, entry in enumerate(self._entries):
            groups.setdefault(entry.path_parts[0], []).append((index, entry))
        return list(groups.values())


@dataclass(frozen=True)
class PhaseOutcome:
    """Result of one phase for one manifest entry or plugin directory."""

    entry_name: str
    phase: Phase
    status: OutcomeStatus
    log_path: Optional[Path] = None
    detail: str = ""
    repository_url: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["phase"] = self.phase.value
        data["status"] = self.status.value
        data["log_path"] = str(self.log_path) if self.log_path else None
        return data


class OutcomeLog:
    """Run-scoped, append-only record of phase outcomes.

    Safe to append from several worker threads. When ``journal_path`` is set,
    every outcome is also written as one JSON line.
    """

    def __init__(self, journal_path: Optional[Path] = None):
        self._outcomes: List[PhaseOutcome] = []
        self._lock = threading.Lock()
        self._journal_path = journal_path
        if journal_path is not None:
            journal_path.parent.mkdir(parents=True, exist_ok=True)
            journal_path.write_text("", encoding="utf-8")

    def append(self, outcome: PhaseOutcome) -> None:
        with self._lock:
            self._outcomes.append(outcome)
            if self._journal_path is not None:
                record = outcome.to_dict()
                record["recorded_at"] = datetime.now().isoformat(timespec="seconds")
                with open(self._journal_path, "a", encoding="utf-8") as f:
                    f.write(json.dumps(record) + "\n")

    def extend(self, outcomes: Sequence[PhaseOutcome]) -> None:
        for outcome in outcomes:
            self.append(outcome)

    def outcomes(self, phase: Optional[Phase] = None) -> List[PhaseOutcome]:
        with self._lock:
            if phase is None:
                return list(self._outcomes)
            return [o for o in self._outcomes if o.phase == phase]

    def names_with(self, phase: Phase, status: OutcomeStatus) -> List[str]:
        return [o.entry_name for o in self.outcomes(phase) if o.status == status]

    def __len__(self) -> int:
        with self._lock:
            return len(self._outcomes)


@dataclass(frozen=True)
class ProbeResult:
    """Result of import-probing one plugin directory."""

    name: str
    ok: bool
    module: Optional[str] = None
    error: Optional[str] = None
    candidates_tried: int = 0


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one child process."""

    returncode: Optional[int]
    duration_seconds: float = 0.0
    timed_out: bool = False
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out and not self.cancelled

    def describe(self) -> str:
        if self.cancelled:
            return "cancelled"
        if self.timed_out:
            return f"timed out after {self.duration_seconds:.0f}s"
        return f"exit code {self.returncode}"


@dataclass
class RunSummary:
    """Aggregated result of a sanity run; drives the process exit code."""

    fetch_failures: int = 0
    install_failures: int = 0
    import_warnings: int = 0
    warned_names: List[str] = field(default_factory=list)
    plugin_total: int = 0
    failed_fetch_names: List[str] = field(default_factory=list)
    failed_install_names: List[str] = field(default_factory=list)
    core_import_ok: Optional[bool] = None
    pip_check_ok: Optional[bool] = None
    log_dir: Optional[Path] = None
    timings: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_outcomes(cls, log: OutcomeLog, **extra) -> "RunSummary":
        failed_fetch = log.names_with(Phase.FETCH, OutcomeStatus.FAILED)
        failed_install = log.names_with(Phase.INSTALL, OutcomeStatus.FAILED)
        warned = log.names_with(Phase.IMPORT_PROBE, OutcomeStatus.WARNED)
        return cls(
            fetch_failures=len(failed_fetch),
            install_failures=len(failed_install),
            import_warnings=len(warned),
            warned_names=warned,
            plugin_total=len(log.outcomes(Phase.IMPORT_PROBE)),
            failed_fetch_names=failed_fetch,
            failed_install_names=failed_install,
            **extra,
        )

    @property
    def exit_code(self) -> int:
        # Import warnings are informational only.
        if self.fetch_failures > 0 or self.install_failures > 0:
            return EXIT_PROVISIONING_FAILED
        return EXIT_OK

    @property
    def success(self) -> bool:
        return self.exit_code == EXIT_OK
