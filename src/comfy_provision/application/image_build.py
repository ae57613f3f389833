"""Orchestrates building and publishing the inference image."""

from dataclasses import replace
from pathlib import Path
from typing import Optional

from comfy_provision.domain.protocols import IImageBuilder
from comfy_provision.infrastructure.config.loader import BuildConfig, utc_now_iso
from comfy_provision.infrastructure.process import run_capture
from comfy_provision.shared.logging import get_logger
from comfy_provision.shared.metrics import MetricsCollector

logger = get_logger(__name__)


def resolve_vcs_ref(repo_dir: Path) -> str:
    """Short commit hash of ``repo_dir``, or ``unknown`` outside a git checkout."""
    sha = run_capture(["git", "rev-parse", "--short", "HEAD"], cwd=repo_dir)
    return sha or "unknown"


class ImageBuildOrchestrator:
    """Runs the build steps in order: prune, builder, build, report."""

    def __init__(self, builder: IImageBuilder, metrics: Optional[MetricsCollector] = None):
        self._builder = builder
        self._metrics = metrics or MetricsCollector()
        self._logger = get_logger(__name__)

    def resolve(self, config: BuildConfig) -> BuildConfig:
        """Fill in build metadata left empty by the caller."""
        build_date = config.build_date or utc_now_iso()
        vcs_ref = config.vcs_ref or resolve_vcs_ref(config.context_dir)
        return replace(config, build_date=build_date, vcs_ref=vcs_ref)

    def run(self, config: BuildConfig) -> BuildConfig:
        """
        Build (and push or load) the image described by ``config``.

        Returns the resolved configuration. Raises ConfigurationError when
        docker or buildx is missing and ImageBuildError when a build step fails.
        """
        config = self.resolve(config)
        self._log_banner(config)

        self._builder.ensure_available()

        if config.dry_run:
            self._logger.info("Dry run: skipping prune and builder setup")
        else:
            if config.prune or config.prune_hard:
                self._builder.prune(hard=config.prune_hard)
            self._builder.report_disk_usage("before build")
            self._builder.ensure_builder()

        self._logger.info(f"== Building ({config.output_mode}) ==")
        with self._metrics.timed("build"):
            self._builder.build(
                image_ref=config.image_ref,
                build_args=config.build_args(),
                platform=config.platform,
                target=config.target,
                output=config.output_mode,
                no_cache=config.no_cache,
                context_dir=config.context_dir,
            )

        if config.dry_run:
            return config

        self._logger.info("== Done ==")
        self._logger.info(f"Image: {config.image_ref}")
        self._logger.info(f"Build time: {self._metrics.durations().get('build', 0.0):.1f}s")
        if config.output_mode == "load":
            self._logger.info("Loaded into local docker (not pushed).")
        else:
            self._logger.info("Pushed to registry.")
        self._builder.report_disk_usage("after build")
        return config

    def _log_banner(self, config: BuildConfig) -> None:
        self._logger.info("=" * 60)
        self._logger.info(f"Image: {config.image_ref}")
        self._logger.info(f"Platform: {config.platform}")
        self._logger.info(f"Output: {config.output_mode}")
        self._logger.info(f"No cache: {config.no_cache}")
        self._logger.info(f"Prune: {config.prune} (hard: {config.prune_hard})")
        self._logger.info(f"IMAGE_VERSION: {config.image_version}")
        self._logger.info(f"BUILD_DATE: {config.build_date}")
        self._logger.info(f"VCS_REF: {config.vcs_ref}")
        self._logger.info(f"TORCH_INDEX: {config.torch_index}")
        self._logger.info(f"TORCH_VER: {config.torch_ver}")
        self._logger.info(f"TORCHVISION_VER: {config.torchvision_ver}")
        self._logger.info(f"COMFYUI_REF: {config.comfy_ref}")
        if config.extra_build_args:
            self._logger.info(f"Extra build args: {' '.join(config.extra_build_args)}")
        self._logger.info("=" * 60)
