"""Dependency installer backed by ``python -m pip``."""

import re
import sys
from pathlib import Path
from typing import Iterable, Optional

from comfy_provision.domain.exceptions import InstallError
from comfy_provision.infrastructure.process import run_logged
from comfy_provision.shared.cancellation import CancellationToken
from comfy_provision.shared.logging import get_logger

logger = get_logger(__name__)

REQUIREMENTS_FILENAME = "requirements.txt"

_NAME_RE = re.compile(r"^([A-Za-z0-9][A-Za-z0-9._-]*)")


def normalize_name(name: str) -> str:
    """PEP 503 normalisation: case-insensitive, runs of -_. collapse to '-'."""
    return re.sub(r"[-_.]+", "-", name).lower()


def requirement_name(line: str) -> Optional[str]:
    """Project name declared by a requirements line, or None for options/URLs."""
    s = line.strip()
    if not s or s.startswith("#") or s.startswith("-"):
        return None
    m = _NAME_RE.match(s)
    return normalize_name(m.group(1)) if m else None


def filter_requirements(text: str, exclude: Iterable[str]) -> str:
    """
    Drop requirement lines naming any project in ``exclude``.

    Comments, blank lines and option lines are kept verbatim. Matching is
    on the exact normalised project name, so excluding ``torch`` keeps
    ``torchsde``.
    """
    excluded = {normalize_name(name) for name in exclude if name.strip()}
    kept = []
    for line in text.splitlines():
        name = requirement_name(line)
        if name is not None and name in excluded:
            logger.debug(f"Dropping requirement: {line.strip()}")
            continue
        kept.append(line)
    return "\n".join(kept) + "\n"


class PipInstaller:
    """
    Installs requirements files with pip, optionally under a constraints file.
    Implements IDependencyInstaller protocol.
    """

    def __init__(
        self,
        python: Optional[str] = None,
        timeout: Optional[float] = None,
        cancel: Optional[CancellationToken] = None,
    ):
        self.python = python or sys.executable
        self.timeout = timeout
        self.cancel = cancel
        self._logger = get_logger(__name__)

    def install(
        self,
        requirements: Path,
        log_path: Path,
        constraints: Optional[Path] = None,
    ) -> None:
        cmd = [self.python, "-m", "pip", "install"]
        if constraints is not None:
            cmd += ["-c", str(constraints)]
        cmd += ["-r", str(requirements)]

        result = run_logged(
            cmd,
            log_path,
            timeout=self.timeout,
            cancel=self.cancel,
            cwd=requirements.parent,
            env={"PIP_NO_INPUT": "1", "PIP_DISABLE_PIP_VERSION_CHECK": "1"},
        )
        if not result.success:
            raise InstallError(f"pip install -r {requirements} failed: {result.describe()} (log: {log_path})")

    def check(self, log_path: Path) -> bool:
        result = run_logged(
            [self.python, "-m", "pip", "check"],
            log_path,
            timeout=self.timeout,
            cancel=self.cancel,
        )
        return result.success
