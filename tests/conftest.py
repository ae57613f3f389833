import sys
import os
from pathlib import Path

import pytest

# Ensure src/ is on sys.path so 'comfy_provision' is importable without installing
SRC = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src'))
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from comfy_provision.domain.exceptions import FetchError, InstallError  # noqa: E402
from comfy_provision.domain.models import ProbeResult  # noqa: E402
from comfy_provision.infrastructure.config.loader import SanityConfig  # noqa: E402


class FakeFetcher:
    """In-memory stand-in for GitFetcher: 'cloning' creates the directory and seeds files."""

    def __init__(self):
        self.files = {}
        self.failing = set()
        self.clones = []
        self.checkouts = []
        self.pulls = []
        self.pull_ok = True
        self.on_clone = None

    def clone(self, url, destination, log_path, recursive=False, depth=None):
        self.clones.append((url, Path(destination), recursive, depth))
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_path.write_text(f"$ git clone {url}\n")
        if self.on_clone is not None:
            self.on_clone(url)
        if url in self.failing:
            raise FetchError(f"git clone {url} failed: exit code 128 (log: {log_path})")
        destination.mkdir(parents=True)
        for rel, content in self.files.get(url, {}).items():
            path = destination / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)

    def checkout(self, repo_dir, ref, log_path):
        self.checkouts.append((Path(repo_dir), ref))

    def fetch_tags(self, repo_dir, log_path):
        return True

    def pull(self, repo_dir, log_path):
        self.pulls.append(Path(repo_dir))
        return self.pull_ok


class FakeInstaller:
    """Records installs; fails for requirement files whose directory is in ``failing``."""

    def __init__(self):
        self.installs = []
        self.failing = set()
        self.check_ok = True
        self.checks = 0

    def install(self, requirements, log_path, constraints=None):
        self.installs.append((Path(requirements), constraints))
        if requirements.parent.name in self.failing:
            raise InstallError(f"pip install -r {requirements} failed: exit code 1 (log: {log_path})")

    def check(self, log_path):
        self.checks += 1
        return self.check_ok


class FakeProber:
    """Import probe that fails for plugin names in ``broken``."""

    def __init__(self):
        self.broken = set()
        self.core_ok = True
        self.probed = []
        self.on_probe = None

    def probe_core(self, app_root):
        if self.on_probe is not None:
            result = self.on_probe("ComfyUI")
            if result is not None:
                return result
        return ProbeResult(name="ComfyUI", ok=self.core_ok, module="nodes")

    def probe(self, app_root, plugin_dir):
        self.probed.append(plugin_dir.name)
        if self.on_probe is not None:
            result = self.on_probe(plugin_dir.name)
            if result is not None:
                return result
        if plugin_dir.name in self.broken:
            return ProbeResult(name=plugin_dir.name, ok=False, error="RuntimeError: CUDA not available")
        return ProbeResult(name=plugin_dir.name, ok=True, module=f"custom_nodes.{plugin_dir.name}")


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()


@pytest.fixture
def fake_installer():
    return FakeInstaller()


@pytest.fixture
def fake_prober():
    return FakeProber()


@pytest.fixture
def sanity_config(tmp_path):
    manifest = tmp_path / "custom_nodes.list"
    manifest.write_text("")
    return SanityConfig(manifest_path=manifest, work_root=tmp_path / "workspace")


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Keep provisioning variables from the developer's shell out of the tests."""
    for name in (
        "COMFY_REF", "COMFY_REPO_URL", "MANIFEST_PATH", "MANIFEST_URL", "CONSTRAINTS_PATH",
        "WORKROOT", "PYTHON_BIN", "STRIP_REQUIREMENTS", "RUN_PIP_CHECK", "FETCH_TIMEOUT",
        "INSTALL_TIMEOUT", "PROBE_TIMEOUT", "FETCH_WORKERS", "IMAGE", "TAG", "PLATFORM",
        "IMAGE_VERSION", "TORCH_INDEX", "TORCH_VER", "TORCHVISION_VER", "COMFYUI_REF",
        "DOCKER_SUDO", "RUNTIME_REPO_URL", "RUNTIME_DIR",
    ):
        monkeypatch.delenv(name, raising=False)
