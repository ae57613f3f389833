"""Image builder backed by ``docker buildx``."""

import shutil
import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Optional

from comfy_provision.domain.exceptions import ConfigurationError, ImageBuildError
from comfy_provision.infrastructure.process import format_command
from comfy_provision.shared.logging import get_logger

logger = get_logger(__name__)

# (cmd, quiet) -> return code
Runner = Callable[[List[str], bool], int]


def stream_command(cmd: List[str], quiet: bool = False) -> int:
    """Run a command with output going straight to the terminal (or nowhere)."""
    try:
        if quiet:
            completed = subprocess.run(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        else:
            completed = subprocess.run(cmd)
    except FileNotFoundError:
        return 127
    return completed.returncode


def build_command(
    docker: List[str],
    image_ref: str,
    build_args: Dict[str, str],
    platform: str,
    target: Optional[str],
    output: str,
    no_cache: bool,
    context_dir: Path,
    extra_args: Optional[List[str]] = None,
) -> List[str]:
    """Assemble the ``docker buildx build`` command line."""
    cmd = docker + ["buildx", "build", "-t", image_ref, "--platform", platform]
    if target:
        cmd += ["--target", target]
    for key, value in build_args.items():
        cmd += ["--build-arg", f"{key}={value}"]
    if no_cache:
        cmd.append("--no-cache")
    cmd.append("--push" if output == "push" else "--load")
    if extra_args:
        cmd += extra_args
    cmd.append(str(context_dir))
    return cmd


class BuildxImageBuilder:
    """
    Builds images with docker buildx.
    Implements IImageBuilder protocol.
    """

    def __init__(self, use_sudo: bool = False, runner: Optional[Runner] = None, dry_run: bool = False):
        self.docker = (["sudo"] if use_sudo else []) + ["docker"]
        self._run = runner or stream_command
        self.dry_run = dry_run
        self._logger = get_logger(__name__)

    def ensure_available(self) -> None:
        if shutil.which("docker") is None:
            raise ConfigurationError("docker not found")
        if self._run(self.docker + ["buildx", "version"], True) != 0:
            raise ConfigurationError("docker buildx not available")

    def prune(self, hard: bool = False) -> None:
        """Free disk space before building. Failures are logged, not raised."""
        if hard:
            self._logger.info("== Aggressive prune (docker system prune -af) ==")
            commands = [["system", "prune", "-af"]]
        else:
            self._logger.info("== Safe-ish prune (container/image/builder) ==")
            commands = [["container", "prune", "-f"], ["image", "prune", "-f"], ["builder", "prune", "-f"]]

        for args in commands:
            if self._run(self.docker + args, False) != 0:
                self._logger.warning(f"{format_command(self.docker + args)} failed; continuing")

    def report_disk_usage(self, label: str) -> None:
        self._logger.info(f"== Disk usage ({label}) ==")
        self._run(self.docker + ["system", "df"], False)
        self._run(["df", "-h"], False)

    def ensure_builder(self) -> None:
        if self._run(self.docker + ["buildx", "inspect"], True) == 0:
            return
        self._logger.info("Creating buildx builder 'default'")
        if self._run(self.docker + ["buildx", "create", "--use", "--name", "default"], True) != 0:
            raise ImageBuildError("Failed to create a buildx builder")

    def build(
        self,
        image_ref: str,
        build_args: Dict[str, str],
        platform: str,
        target: Optional[str],
        output: str,
        no_cache: bool,
        context_dir: Path,
        extra_args: Optional[List[str]] = None,
    ) -> None:
        cmd = build_command(
            self.docker, image_ref, build_args, platform, target, output, no_cache, context_dir, extra_args
        )
        self._logger.info(f"$ {format_command(cmd)}")
        if self.dry_run:
            self._logger.info("Dry run: build not started")
            return

        rc = self._run(cmd, False)
        if rc != 0:
            raise ImageBuildError(f"docker buildx build failed for {image_ref} (exit code {rc})")
