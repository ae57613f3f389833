"""Application layer package."""

from comfy_provision.application.batch_runner import ProvisioningBatchRunner
from comfy_provision.application.image_build import ImageBuildOrchestrator
from comfy_provision.application.startup import RuntimeBootstrapper
from comfy_provision.application.factories import (
    create_batch_runner,
    create_build_orchestrator,
    create_bootstrapper,
)

__all__ = [
    "ProvisioningBatchRunner",
    "ImageBuildOrchestrator",
    "RuntimeBootstrapper",
    "create_batch_runner",
    "create_build_orchestrator",
    "create_bootstrapper",
]
