"""Tests for the container entrypoint bootstrapper."""

import os
import stat

import pytest

from comfy_provision.application.startup import RuntimeBootstrapper
from comfy_provision.domain.exceptions import ConfigurationError, FetchError
from comfy_provision.infrastructure.config import StartupConfig

RUNTIME_URL = "https://github.com/example/pod-runtime.git"

RUNTIME_FILES = {
    ".bashrc": "export FOO=1\nREPO_ROOT=<CHANGEME>\nsource $REPO_ROOT/helpers.sh\n",
    ".bash_functions": "f() { :; }\n",
    ".bash_aliases": "alias ll='ls -l'\n",
    "start.sh": "#!/usr/bin/env bash\necho started\n",
}


@pytest.fixture
def startup_config(tmp_path):
    return StartupConfig(
        runtime_repo_url=RUNTIME_URL,
        runtime_dir=tmp_path / "workspace" / "pod-runtime",
        workspace=tmp_path / "workspace",
        home_dir=tmp_path / "root",
    )


class ExecRecorder:
    def __init__(self):
        self.calls = []

    def __call__(self, script, cwd):
        self.calls.append((script, cwd))


def test_fresh_clone_installs_dotfiles_and_execs(startup_config, fake_fetcher):
    fake_fetcher.files[RUNTIME_URL] = RUNTIME_FILES
    exec_fn = ExecRecorder()

    RuntimeBootstrapper(startup_config, fake_fetcher, exec_fn=exec_fn).run()

    url, dest, recursive, depth = fake_fetcher.clones[0]
    assert (url, dest, depth) == (RUNTIME_URL, startup_config.runtime_dir, 1)

    bashrc = startup_config.home_dir / ".bashrc"
    assert f'REPO_ROOT="{startup_config.runtime_dir}"' in bashrc.read_text()
    assert "<CHANGEME>" not in bashrc.read_text()
    assert stat.S_IMODE(bashrc.stat().st_mode) == 0o644
    assert (startup_config.home_dir / ".bash_aliases").read_text() == RUNTIME_FILES[".bash_aliases"]
    assert stat.S_IMODE((startup_config.home_dir / ".bash_functions").stat().st_mode) == 0o644

    script = startup_config.runtime_dir / "start.sh"
    assert os.access(script, os.X_OK)
    assert exec_fn.calls == [(script, startup_config.runtime_dir)]


def test_existing_checkout_is_pulled(startup_config, fake_fetcher):
    startup_config.runtime_dir.mkdir(parents=True)
    (startup_config.runtime_dir / ".git").mkdir()
    (startup_config.runtime_dir / "start.sh").write_text("#!/bin/sh\n")
    fake_fetcher.pull_ok = False
    exec_fn = ExecRecorder()

    RuntimeBootstrapper(startup_config, fake_fetcher, exec_fn=exec_fn).run()

    assert fake_fetcher.pulls == [startup_config.runtime_dir]
    assert fake_fetcher.clones == []
    assert len(exec_fn.calls) == 1


def test_missing_dotfiles_are_skipped(startup_config, fake_fetcher):
    fake_fetcher.files[RUNTIME_URL] = {"start.sh": "#!/bin/sh\n"}

    RuntimeBootstrapper(startup_config, fake_fetcher, exec_fn=ExecRecorder()).run()

    assert not (startup_config.home_dir / ".bashrc").exists()


def test_clone_failure_is_fatal(startup_config, fake_fetcher):
    fake_fetcher.failing.add(RUNTIME_URL)
    exec_fn = ExecRecorder()

    with pytest.raises(FetchError):
        RuntimeBootstrapper(startup_config, fake_fetcher, exec_fn=exec_fn).run()

    assert exec_fn.calls == []


def test_missing_start_script(startup_config, fake_fetcher):
    fake_fetcher.files[RUNTIME_URL] = {".bashrc": "REPO_ROOT=<CHANGEME>\n"}

    with pytest.raises(ConfigurationError, match="start.sh"):
        RuntimeBootstrapper(startup_config, fake_fetcher, exec_fn=ExecRecorder()).run()
