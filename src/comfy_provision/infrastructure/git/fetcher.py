"""Repository fetcher backed by the git CLI."""

from pathlib import Path
from typing import Optional

from comfy_provision.domain.exceptions import FetchError
from comfy_provision.infrastructure.process import run_logged
from comfy_provision.shared.cancellation import CancellationToken
from comfy_provision.shared.logging import get_logger

logger = get_logger(__name__)

# Never block on a credentials prompt for private or missing repositories
GIT_ENV = {"GIT_TERMINAL_PROMPT": "0"}


class GitFetcher:
    """
    Clones and updates repositories with ``git``.
    Implements IRepositoryFetcher protocol.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        cancel: Optional[CancellationToken] = None,
        git_bin: str = "git",
    ):
        self.timeout = timeout
        self.cancel = cancel
        self.git_bin = git_bin
        self._logger = get_logger(__name__)

    def clone(
        self,
        url: str,
        destination: Path,
        log_path: Path,
        recursive: bool = False,
        depth: Optional[int] = None,
    ) -> None:
        cmd = [self.git_bin, "clone"]
        if recursive:
            cmd.append("--recursive")
        if depth:
            cmd += ["--depth", str(depth)]
        cmd += [url, str(destination)]

        destination.parent.mkdir(parents=True, exist_ok=True)
        result = run_logged(cmd, log_path, timeout=self.timeout, cancel=self.cancel, env=GIT_ENV)
        if not result.success:
            raise FetchError(f"git clone {url} failed: {result.describe()} (log: {log_path})")
        self._logger.debug(f"Cloned {url} into {destination} in {result.duration_seconds:.1f}s")

    def checkout(self, repo_dir: Path, ref: str, log_path: Path) -> None:
        result = run_logged(
            [self.git_bin, "checkout", ref],
            log_path,
            timeout=self.timeout,
            cancel=self.cancel,
            cwd=repo_dir,
            env=GIT_ENV,
        )
        if not result.success:
            raise FetchError(f"git checkout {ref} failed in {repo_dir}: {result.describe()} (log: {log_path})")

    def fetch_tags(self, repo_dir: Path, log_path: Path) -> bool:
        result = run_logged(
            [self.git_bin, "fetch", "--tags"],
            log_path,
            timeout=self.timeout,
            cancel=self.cancel,
            cwd=repo_dir,
            env=GIT_ENV,
        )
        if not result.success:
            self._logger.debug(f"git fetch --tags failed in {repo_dir}: {result.describe()}")
        return result.success

    def pull(self, repo_dir: Path, log_path: Path) -> bool:
        result = run_logged(
            [self.git_bin, "-C", str(repo_dir), "pull", "--rebase", "--autostash"],
            log_path,
            timeout=self.timeout,
            cancel=self.cancel,
            env=GIT_ENV,
        )
        return result.success
