"""Cooperative cancellation shared by every phase of a run."""

import signal
import threading
from typing import Iterable, Optional

from comfy_provision.domain.exceptions import ProvisioningCancelled


class CancellationToken:
    """Set once; checked between entries and while waiting on child processes."""

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ProvisioningCancelled(self.reason or "cancelled")


def install_signal_handlers(
    token: CancellationToken,
    signals: Iterable[int] = (signal.SIGTERM, signal.SIGINT),
) -> None:
    """Route termination signals into ``token``.

    Only callable from the main thread (a restriction of ``signal.signal``).
    """
    def _handler(signum, _frame):
        token.cancel(f"received {signal.Signals(signum).name}")

    for signum in signals:
        signal.signal(signum, _handler)
