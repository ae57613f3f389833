"""Factories wiring configuration to concrete adapters."""

from typing import Optional

from comfy_provision.application.batch_runner import ProvisioningBatchRunner
from comfy_provision.application.image_build import ImageBuildOrchestrator
from comfy_provision.application.startup import ExecFn, RuntimeBootstrapper
from comfy_provision.infrastructure.config.loader import BuildConfig, SanityConfig, StartupConfig
from comfy_provision.infrastructure.docker.builder import BuildxImageBuilder
from comfy_provision.infrastructure.git.fetcher import GitFetcher
from comfy_provision.infrastructure.pip.installer import PipInstaller
from comfy_provision.infrastructure.probe.importer import SubprocessImportProber
from comfy_provision.shared.cancellation import CancellationToken
from comfy_provision.shared.metrics import MetricsCollector


def create_batch_runner(
    config: SanityConfig,
    cancel: Optional[CancellationToken] = None,
) -> ProvisioningBatchRunner:
    """Batch runner backed by git, pip and child-process import probes."""
    cancel = cancel or CancellationToken()
    return ProvisioningBatchRunner(
        config=config,
        fetcher=GitFetcher(timeout=config.fetch_timeout, cancel=cancel),
        installer=PipInstaller(python=config.python_bin, timeout=config.install_timeout, cancel=cancel),
        prober=SubprocessImportProber(
            log_dir=config.log_dir,
            python=config.python_bin,
            timeout=config.probe_timeout,
            cancel=cancel,
        ),
        cancel=cancel,
        metrics=MetricsCollector(),
    )


def create_build_orchestrator(config: BuildConfig) -> ImageBuildOrchestrator:
    builder = BuildxImageBuilder(use_sudo=config.use_sudo, dry_run=config.dry_run)
    return ImageBuildOrchestrator(builder=builder, metrics=MetricsCollector())


def create_bootstrapper(
    config: StartupConfig,
    cancel: Optional[CancellationToken] = None,
    exec_fn: Optional[ExecFn] = None,
) -> RuntimeBootstrapper:
    return RuntimeBootstrapper(config=config, fetcher=GitFetcher(cancel=cancel), exec_fn=exec_fn)
