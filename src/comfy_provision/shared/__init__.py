"""Shared utilities package."""

from comfy_provision.shared.logging import setup_logger, get_logger, add_file_handler
from comfy_provision.shared.retry import retry_with_backoff, compute_backoff
from comfy_provision.shared.metrics import MetricsCollector
from comfy_provision.shared.cancellation import CancellationToken, install_signal_handlers

__all__ = [
    "setup_logger",
    "get_logger",
    "add_file_handler",
    "retry_with_backoff",
    "compute_backoff",
    "MetricsCollector",
    "CancellationToken",
    "install_signal_handlers",
]
