"""Provisioning batch runner: fetch, install and import-probe custom nodes."""

import json
import shutil
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from comfy_provision.domain.exceptions import (
    FetchError,
    HostProvisioningError,
    ImportProbeError,
    InstallError,
)
from comfy_provision.domain.models import (
    Manifest,
    ManifestEntry,
    OutcomeLog,
    OutcomeStatus,
    Phase,
    PhaseOutcome,
    ProbeResult,
    RunSummary,
)
from comfy_provision.domain.protocols import IDependencyInstaller, IImportProber, IRepositoryFetcher
from comfy_provision.infrastructure.config.loader import SanityConfig
from comfy_provision.infrastructure.pip.installer import REQUIREMENTS_FILENAME, filter_requirements
from comfy_provision.shared.cancellation import CancellationToken
from comfy_provision.shared.logging import get_logger
from comfy_provision.shared.metrics import MetricsCollector

logger = get_logger(__name__)

HOST_REQUIREMENTS_NAME = "requirements.host.txt"
# ComfyUI logs; manifest entries only ever use the clone/pip/import prefixes
HOST_LOG_PREFIX = "host"
IMPORT_REPORT_NAME = "import_sanity.log"
OUTCOME_JOURNAL_NAME = "outcomes.jsonl"
SUMMARY_NAME = "summary.json"


def remove_path(path: Path) -> None:
    """Remove a directory tree, file or symlink if present."""
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path)


class ProvisioningBatchRunner:
    """
    Runs the sanity batch for one manifest.

    Phases run in order (host prerequisite, fetch, install, import probe),
    each as a full pass over the manifest. Per-entry failures are turned into
    PhaseOutcome records so the batch always reaches every entry; only host
    provisioning failures and cancellation abort the run.
    """

    def __init__(
        self,
        config: SanityConfig,
        fetcher: IRepositoryFetcher,
        installer: IDependencyInstaller,
        prober: IImportProber,
        cancel: Optional[CancellationToken] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self._config = config
        self._fetcher = fetcher
        self._installer = installer
        self._prober = prober
        self._cancel = cancel or CancellationToken()
        self._metrics = metrics or MetricsCollector()
        self._logger = get_logger(__name__)

    @property
    def log_dir(self) -> Path:
        return self._config.log_dir

    def run(self, manifest: Manifest, provision_host: bool = True) -> RunSummary:
        """Execute every phase and return the aggregated summary."""
        self._config.check_files()
        self.log_dir.mkdir(parents=True, exist_ok=True)
        outcomes = OutcomeLog(self.log_dir / OUTCOME_JOURNAL_NAME)

        if provision_host:
            with self._metrics.timed("host"):
                self.prepare_host()
        self._config.custom_nodes_dir.mkdir(parents=True, exist_ok=True)

        with self._metrics.timed("fetch"):
            self.fetch_phase(manifest, outcomes)
        with self._metrics.timed("install"):
            self.install_phase(manifest, outcomes)
        with self._metrics.timed("import_probe"):
            core_ok = self.probe_phase(outcomes)
        self._cancel.raise_if_cancelled()

        pip_check_ok = None
        if self._config.run_pip_check:
            self._logger.info("== pip check (informational) ==")
            check_log = self.log_dir / f"{HOST_LOG_PREFIX}_pip_check.log"
            pip_check_ok = self._installer.check(check_log)
            self._cancel.raise_if_cancelled()
            if not pip_check_ok:
                self._logger.warning(f"pip check reported conflicts (see {check_log})")

        summary = RunSummary.from_outcomes(
            outcomes,
            core_import_ok=core_ok,
            pip_check_ok=pip_check_ok,
            log_dir=self.log_dir,
            timings=self._metrics.durations(),
        )
        self.write_summary(summary)
        return summary

    # Host prerequisite

    def prepare_host(self) -> None:
        """Reset the run root, clone ComfyUI at the configured ref and install its requirements."""
        cfg = self._config
        run_root = cfg.run_root

        self._logger.info("== Reset run directory ==")
        self._logger.info(f"Cleaning: {run_root}")
        try:
            remove_path(run_root)
        except OSError as e:
            raise HostProvisioningError(f"Failed to clean {run_root}: {e}") from e
        if cfg.app_dir.exists():
            raise HostProvisioningError(f"{cfg.app_dir} still exists after cleanup")
        run_root.mkdir(parents=True, exist_ok=True)

        self._logger.info(f"== Clone ComfyUI @ {cfg.comfy_ref} ==")
        self._cancel.raise_if_cancelled()
        try:
            self._fetcher.clone(cfg.comfy_repo_url, cfg.app_dir, self.log_dir / f"{HOST_LOG_PREFIX}_clone.log")
            self._fetcher.fetch_tags(cfg.app_dir, self.log_dir / f"{HOST_LOG_PREFIX}_fetch_tags.log")
            self._fetcher.checkout(cfg.app_dir, cfg.comfy_ref, self.log_dir / f"{HOST_LOG_PREFIX}_checkout.log")
        except FetchError as e:
            self._cancel.raise_if_cancelled()
            raise HostProvisioningError(f"Could not provision ComfyUI: {e}") from e

        requirements = cfg.app_dir / REQUIREMENTS_FILENAME
        if not requirements.is_file():
            self._logger.warning(f"ComfyUI has no {REQUIREMENTS_FILENAME} at {cfg.comfy_ref}; skipping")
            return

        stripped = ", ".join(cfg.strip_requirements) or "nothing"
        self._logger.info(f"== Install ComfyUI requirements (filter {stripped}) ==")
        filtered = cfg.work_root / HOST_REQUIREMENTS_NAME
        filtered.write_text(
            filter_requirements(requirements.read_text(encoding="utf-8"), cfg.strip_requirements),
            encoding="utf-8",
        )
        self._cancel.raise_if_cancelled()
        try:
            self._installer.install(
                filtered, self.log_dir / f"{HOST_LOG_PREFIX}_pip.log", constraints=cfg.constraints_path
            )
        except InstallError as e:
            self._cancel.raise_if_cancelled()
            raise HostProvisioningError(f"Could not install ComfyUI requirements: {e}") from e

    # Fetch

    def fetch_phase(self, manifest: Manifest, outcomes: OutcomeLog) -> List[PhaseOutcome]:
        """
        Materialize every manifest entry under the custom nodes root.

        Returns outcomes in manifest order. With more than one worker, entries
        whose targets overlap (duplicates or nested paths) stay in one
        sequential group so the last one still wins.
        """
        self._logger.info("== Clone custom nodes from manifest ==")
        self._config.custom_nodes_dir.mkdir(parents=True, exist_ok=True)
        groups = manifest.fetch_groups()
        workers = min(self._config.fetch_workers, max(1, len(groups)))

        if workers <= 1:
            results = self._fetch_group(list(enumerate(manifest)), outcomes)
        else:
            results = []
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fetch") as pool:
                futures = [pool.submit(self._fetch_group, group, outcomes) for group in groups]
                for future in futures:
                    results.extend(future.result())

        ordered = [outcome for _, outcome in sorted(results, key=lambda item: item[0])]
        failed = [o.entry_name for o in ordered if o.status == OutcomeStatus.FAILED]
        if failed:
            self._logger.error(f"Some clones failed ({', '.join(failed)}). See logs in: {self.log_dir}")
        return ordered

    def _fetch_group(
        self,
        group: Sequence[Tuple[int, ManifestEntry]],
        outcomes: OutcomeLog,
    ) -> List[Tuple[int, PhaseOutcome]]:
        results = []
        for index, entry in group:
            self._cancel.raise_if_cancelled()
            outcome = self._fetch_entry(entry)
            outcomes.append(outcome)
            results.append((index, outcome))
        return results

    def _fetch_entry(self, entry: ManifestEntry) -> PhaseOutcome:
        destination = entry.destination(self._config.custom_nodes_dir)
        log_path = self.log_dir / f"{Phase.FETCH.log_prefix}_{entry.log_name}.log"
        flag = " --recursive" if entry.recursive else ""
        self._logger.info(f"-> {entry.target_dir}  ({entry.repository_url}){flag}")

        try:
            remove_path(destination)
            self._fetcher.clone(entry.repository_url, destination, log_path, recursive=entry.recursive)
        except (FetchError, OSError) as e:
            self._cancel.raise_if_cancelled()
            self._logger.error(f"!! CLONE FAILED: {entry.target_dir}: {e}")
            self._metrics.increment_counter("fetch_failures")
            return PhaseOutcome(
                entry.target_dir, Phase.FETCH, OutcomeStatus.FAILED, log_path, str(e), entry.repository_url
            )

        return PhaseOutcome(entry.target_dir, Phase.FETCH, OutcomeStatus.OK, log_path, "", entry.repository_url)

    # Install

    def install_phase(self, manifest: Manifest, outcomes: OutcomeLog) -> List[PhaseOutcome]:
        """Install each entry's requirements, in manifest order, one at a time."""
        self._logger.info("== Install requirements for each custom node (if present) ==")
        results = []
        for entry in manifest:
            self._cancel.raise_if_cancelled()
            outcome = self._install_entry(entry)
            outcomes.append(outcome)
            results.append(outcome)
        return results

    def _install_entry(self, entry: ManifestEntry) -> PhaseOutcome:
        requirements = entry.destination(self._config.custom_nodes_dir) / REQUIREMENTS_FILENAME
        if not requirements.is_file():
            return PhaseOutcome(
                entry.target_dir, Phase.INSTALL, OutcomeStatus.OK, None,
                f"no {REQUIREMENTS_FILENAME}", entry.repository_url,
            )

        log_path = self.log_dir / f"{Phase.INSTALL.log_prefix}_{entry.log_name}.log"
        self._logger.info(f"-- requirements: {entry.target_dir}")
        try:
            self._installer.install(requirements, log_path, constraints=self._config.constraints_path)
        except InstallError as e:
            self._cancel.raise_if_cancelled()
            self._logger.error(f"!! REQUIREMENTS FAILED: {entry.target_dir}: {e}")
            self._metrics.increment_counter("install_failures")
            return PhaseOutcome(
                entry.target_dir, Phase.INSTALL, OutcomeStatus.FAILED, log_path, str(e), entry.repository_url
            )

        return PhaseOutcome(entry.target_dir, Phase.INSTALL, OutcomeStatus.OK, log_path, "", entry.repository_url)

    # Import probe

    def plugin_dirs(self) -> List[Path]:
        """Every plugin directory on disk, manifested or not, sorted by name."""
        root = self._config.custom_nodes_dir
        if not root.is_dir():
            return []
        return sorted(
            (p for p in root.iterdir() if p.is_dir() and p.name != "__pycache__"),
            key=lambda p: p.name,
        )

    def probe_phase(self, outcomes: OutcomeLog) -> Optional[bool]:
        """
        Import-probe every plugin directory. Never records FAILED.

        Returns whether ComfyUI's own ``nodes`` module imported, or None when
        the application directory is missing.
        """
        self._logger.info("== Import sanity (best-effort) ==")
        app_dir = self._config.app_dir
        lines = []

        core_ok = None
        if app_dir.is_dir():
            core = self._safe_probe(lambda: self._prober.probe_core(app_dir), "ComfyUI")
            core_ok = core.ok
            if core.ok:
                lines.append("[OK] import ComfyUI nodes")
            else:
                lines.append(f"[WARN] import ComfyUI nodes failed: {core.error}")
                self._logger.warning(f"ComfyUI core import failed: {core.error}")

        warned = []
        plugins = self.plugin_dirs()
        for plugin_dir in plugins:
            self._cancel.raise_if_cancelled()
            result = self._safe_probe(lambda: self._prober.probe(app_dir, plugin_dir), plugin_dir.name)
            log_path = self.log_dir / f"{Phase.IMPORT_PROBE.log_prefix}_{plugin_dir.name}.log"
            if result.ok:
                status = OutcomeStatus.OK
                lines.append(f"[OK]  {plugin_dir.name}")
                self._logger.info(f"[OK]  {plugin_dir.name}")
            else:
                # Many repos are GPU-only at import time; a warning, never a failure
                status = OutcomeStatus.WARNED
                warned.append(plugin_dir.name)
                lines.append(f"[WARN] {plugin_dir.name} (import failed; could be GPU-only or missing deps)")
                self._logger.warning(f"[WARN] {plugin_dir.name}: {result.error}")
            outcomes.append(
                PhaseOutcome(plugin_dir.name, Phase.IMPORT_PROBE, status, log_path, result.error or "")
            )

        lines += [
            "",
            "Summary:",
            f"  custom_nodes total: {len(plugins)}",
            f"  warnings: {len(warned)}",
        ]
        if warned:
            lines.append(f"  warn list: {', '.join(warned)}")
        (self.log_dir / IMPORT_REPORT_NAME).write_text("\n".join(lines) + "\n", encoding="utf-8")
        return core_ok

    def _safe_probe(self, probe, name: str) -> ProbeResult:
        """Run one probe; a probe cut short by cancellation aborts the run instead of warning."""
        try:
            result = probe()
        except (ImportProbeError, OSError) as e:
            result = ProbeResult(name=name, ok=False, error=str(e))
        self._cancel.raise_if_cancelled()
        return result

    # Reporting

    def write_summary(self, summary: RunSummary) -> Path:
        path = self.log_dir / SUMMARY_NAME
        data = {
            "fetch_failures": summary.fetch_failures,
            "install_failures": summary.install_failures,
            "import_warnings": summary.import_warnings,
            "warned_names": summary.warned_names,
            "plugin_total": summary.plugin_total,
            "failed_fetch_names": summary.failed_fetch_names,
            "failed_install_names": summary.failed_install_names,
            "core_import_ok": summary.core_import_ok,
            "pip_check_ok": summary.pip_check_ok,
            "timings": {k: round(v, 2) for k, v in summary.timings.items()},
            "exit_code": summary.exit_code,
        }
        path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
        return path
