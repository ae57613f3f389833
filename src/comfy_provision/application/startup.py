"""Container entrypoint: refresh the pod runtime repo and hand off to its start script."""

import logging
import os
import shutil
import stat
from pathlib import Path
from typing import Callable, Optional

from comfy_provision.domain.exceptions import ConfigurationError
from comfy_provision.domain.protocols import IRepositoryFetcher
from comfy_provision.infrastructure.config.loader import StartupConfig
from comfy_provision.shared.logging import get_logger

logger = get_logger(__name__)

REPO_ROOT_PLACEHOLDER = "REPO_ROOT=<CHANGEME>"
DOTFILES = (".bash_functions", ".bash_aliases")
DOTFILE_MODE = 0o644

# (script, cwd) -> never returns in production
ExecFn = Callable[[Path, Path], None]


def exec_script(script: Path, cwd: Path) -> None:
    """Replace the current process with ``script``."""
    logging.shutdown()
    os.chdir(cwd)
    os.execv(str(script), [str(script)])


def install_file(source: Path, destination: Path, content: Optional[str] = None) -> None:
    """Copy ``source`` (or write ``content``) to ``destination`` with mode 0644."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    tmp = destination.with_name(destination.name + ".temp")
    if content is None:
        shutil.copyfile(source, tmp)
    else:
        tmp.write_text(content, encoding="utf-8")
    os.chmod(tmp, DOTFILE_MODE)
    os.replace(tmp, destination)


class RuntimeBootstrapper:
    """Clones or updates the runtime repo, installs shell dotfiles, then execs ``start.sh``."""

    def __init__(
        self,
        config: StartupConfig,
        fetcher: IRepositoryFetcher,
        exec_fn: Optional[ExecFn] = None,
    ):
        self._config = config
        self._fetcher = fetcher
        self._exec = exec_fn or exec_script
        self._logger = get_logger(__name__)

    @property
    def log_dir(self) -> Path:
        return self._config.workspace / "logs"

    def run(self) -> None:
        cfg = self._config
        cfg.workspace.mkdir(parents=True, exist_ok=True)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.sync_runtime()
        self.install_dotfiles()
        script = self.prepare_entry_script()

        self._logger.info(f"Handing off to runtime {cfg.entry_script}...")
        self._exec(script, cfg.runtime_dir)

    def sync_runtime(self) -> None:
        """Pull the runtime repo if present, clone it otherwise. Clone failures propagate."""
        cfg = self._config
        if (cfg.runtime_dir / ".git").is_dir():
            self._logger.info(f"Updating runtime repo in {cfg.runtime_dir}...")
            if not self._fetcher.pull(cfg.runtime_dir, self.log_dir / "pull_runtime.log"):
                self._logger.warning("git pull failed; continuing with the existing checkout")
        else:
            self._logger.info(f"Cloning runtime repo into {cfg.runtime_dir}...")
            self._fetcher.clone(
                cfg.runtime_repo_url, cfg.runtime_dir, self.log_dir / "clone_runtime.log", depth=1
            )

    def install_dotfiles(self) -> None:
        cfg = self._config
        bashrc = cfg.runtime_dir / ".bashrc"
        if bashrc.is_file():
            content = bashrc.read_text(encoding="utf-8").replace(
                REPO_ROOT_PLACEHOLDER, f'REPO_ROOT="{cfg.runtime_dir}"'
            )
            install_file(bashrc, cfg.home_dir / ".bashrc", content=content)
        else:
            self._logger.warning(f"{bashrc} not found; skipping")

        for name in DOTFILES:
            source = cfg.runtime_dir / name
            if not source.is_file():
                self._logger.warning(f"{source} not found; skipping")
                continue
            install_file(source, cfg.home_dir / name)

    def prepare_entry_script(self) -> Path:
        script = self._config.runtime_dir / self._config.entry_script
        if not script.is_file():
            raise ConfigurationError(f"Runtime entry script not found: {script}")
        mode = script.stat().st_mode
        if not mode & stat.S_IXUSR:
            script.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script
