"""Configuration loading and validation."""

import os
import re
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any, List, Type, TypeVar

import yaml
from dotenv import load_dotenv

from comfy_provision.domain.exceptions import ConfigurationError
from comfy_provision.shared.logging import get_logger

logger = get_logger(__name__)

DEFAULT_COMFY_REPO = "https://github.com/comfyanonymous/ComfyUI.git"
DEFAULT_COMFY_REF = "v0.9.2"
DEFAULT_TORCH_INDEX = "https://download.pytorch.org/whl/nightly/cu128"
DEFAULT_TORCH_VER = "2.10.0.dev20251114+cu128"
DEFAULT_TORCHVISION_VER = "0.25.0.dev20251118+cu128"
DEFAULT_RUNTIME_REPO = "https://github.com/markwelshboy/pod-runtime.git"

_BUILD_ARG_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=.*$", re.DOTALL)

C = TypeVar("C")


@dataclass
class SanityConfig:
    """Configuration for the CPU sanity run."""

    # Host application
    comfy_ref: str = DEFAULT_COMFY_REF
    comfy_repo_url: str = DEFAULT_COMFY_REPO

    # Inputs (one manifest source is required)
    manifest_path: Optional[Path] = None
    manifest_url: Optional[str] = None
    constraints_path: Optional[Path] = None

    # Scratch root; run/ and logs/ live below it
    work_root: Path = Path("/workspace")

    # Per-entry limits, seconds
    fetch_timeout: float = 600.0
    install_timeout: float = 1800.0
    probe_timeout: float = 300.0

    fetch_workers: int = 1
    python_bin: Optional[str] = None

    # Removed from ComfyUI's requirements before installing them
    strip_requirements: List[str] = field(default_factory=lambda: ["torchaudio"])
    run_pip_check: bool = True

    def __post_init__(self):
        self.work_root = Path(self.work_root)
        if self.manifest_path is not None:
            self.manifest_path = Path(self.manifest_path)
        if self.constraints_path is not None:
            self.constraints_path = Path(self.constraints_path)
        self._validate()

    def _validate(self):
        if not self.manifest_path and not self.manifest_url:
            raise ConfigurationError("Set MANIFEST_PATH (preferred) or MANIFEST_URL")

        if not self.comfy_ref:
            raise ConfigurationError("comfy_ref must not be empty")

        for name in ("fetch_timeout", "install_timeout", "probe_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive, got: {getattr(self, name)}")

        if self.fetch_workers < 1:
            raise ConfigurationError(f"fetch_workers must be at least 1, got: {self.fetch_workers}")

    def check_files(self) -> None:
        """Verify referenced local files exist before any phase runs."""
        if self.constraints_path is not None and not self.constraints_path.is_file():
            raise ConfigurationError(
                f"CONSTRAINTS_PATH not found: {self.constraints_path} (is it mounted?)"
            )

    @property
    def run_root(self) -> Path:
        return self.work_root / "run"

    @property
    def app_dir(self) -> Path:
        return self.run_root / "ComfyUI"

    @property
    def custom_nodes_dir(self) -> Path:
        return self.app_dir / "custom_nodes"

    @property
    def log_dir(self) -> Path:
        return self.work_root / "logs"


@dataclass
class BuildConfig:
    """Configuration for building the inference image with docker buildx."""

    image: str = "markwelshboy/comfyui-inference"
    tag: str = "latest"
    platform: str = "linux/amd64"

    push: bool = True
    load: bool = False
    no_cache: bool = False
    prune: bool = False
    prune_hard: bool = False

    # Metadata; empty values are resolved at build time
    image_version: str = "0.1.0"
    build_date: str = ""
    vcs_ref: str = ""

    # Pins, must match constraints.txt
    torch_index: str = DEFAULT_TORCH_INDEX
    torch_ver: str = DEFAULT_TORCH_VER
    torchvision_ver: str = DEFAULT_TORCHVISION_VER
    comfy_ref: str = DEFAULT_COMFY_REF

    extra_build_args: List[str] = field(default_factory=list)
    use_sudo: bool = False
    context_dir: Path = Path(".")
    target: str = "final"
    dry_run: bool = False

    def __post_init__(self):
        self.context_dir = Path(self.context_dir)
        if self.load:
            self.push = False
        self._validate()

    def _validate(self):
        for name in ("image", "tag", "platform", "torch_index", "torch_ver", "torchvision_ver", "comfy_ref"):
            if not getattr(self, name):
                raise ConfigurationError(f"{name} requires a value")

        for arg in self.extra_build_args:
            if not _BUILD_ARG_RE.match(arg):
                raise ConfigurationError(f"--build-arg requires KEY=VALUE, got: {arg!r}")

    @property
    def image_ref(self) -> str:
        return f"{self.image}:{self.tag}"

    @property
    def output_mode(self) -> str:
        return "push" if self.push else "load"

    def build_args(self) -> Dict[str, str]:
        """Named build arguments, in the order they are passed to buildx."""
        args = {
            "BUILD_DATE": self.build_date,
            "VCS_REF": self.vcs_ref,
            "IMAGE_VERSION": self.image_version,
            "BUILD_GIT_SHA": self.vcs_ref,
            "IMAGE_TAG": self.tag,
            "TORCH_INDEX": self.torch_index,
            "TORCH_VER": self.torch_ver,
            "TORCHVISION_VER": self.torchvision_ver,
            "COMFYUI_REF": self.comfy_ref,
        }
        for arg in self.extra_build_args:
            key, value = arg.split("=", 1)
            args[key] = value
        return args


@dataclass
class StartupConfig:
    """Configuration for the container entrypoint."""

    runtime_repo_url: str = DEFAULT_RUNTIME_REPO
    runtime_dir: Path = Path("/workspace/pod-runtime")
    workspace: Path = Path("/workspace")
    home_dir: Path = Path("/root")
    entry_script: str = "start.sh"

    def __post_init__(self):
        self.runtime_dir = Path(self.runtime_dir)
        self.workspace = Path(self.workspace)
        self.home_dir = Path(self.home_dir)
        if not self.runtime_repo_url:
            raise ConfigurationError("runtime_repo_url requires a value")
        if not self.entry_script:
            raise ConfigurationError("entry_script requires a value")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _truthy(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


class ConfigLoader:
    """Loads configuration from a YAML file, .env, environment variables and CLI overrides.

    Precedence, lowest first: YAML section, environment (including values
    from .env, which never override the real environment), overrides.
    """

    def __init__(self, config_path: Optional[Path] = None, env_file: Optional[Path] = None):
        """
        Args:
            config_path: Optional path to YAML config file
            env_file: Optional .env file (default: ./.env when present)
        """
        self.config_path = config_path or Path("config.yaml")
        self.env_file = env_file or Path(".env")
        self._logger = get_logger(__name__)
        self._env_loaded = False

    def load_sanity(self, overrides: Optional[Dict[str, Any]] = None) -> SanityConfig:
        return self._build(SanityConfig, "sanity", self._sanity_env(), overrides)

    def load_build(self, overrides: Optional[Dict[str, Any]] = None) -> BuildConfig:
        return self._build(BuildConfig, "build", self._build_env(), overrides)

    def load_startup(self, overrides: Optional[Dict[str, Any]] = None) -> StartupConfig:
        return self._build(StartupConfig, "startup", self._startup_env(), overrides)

    def _build(
        self,
        config_cls: Type[C],
        section: str,
        env_config: Dict[str, Any],
        overrides: Optional[Dict[str, Any]],
    ) -> C:
        config_dict: Dict[str, Any] = {}
        config_dict.update(self._load_yaml_section(section))
        config_dict.update(env_config)

        if overrides:
            for k, v in overrides.items():
                if v is None:
                    continue
                config_dict[k] = v

        # Filter to only known fields
        valid_fields = {f.name for f in fields(config_cls)}
        unknown = sorted(set(config_dict) - valid_fields)
        if unknown:
            self._logger.warning(f"Ignoring unknown {section} settings: {', '.join(unknown)}")
        filtered = {k: v for k, v in config_dict.items() if k in valid_fields}

        try:
            return config_cls(**filtered)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid {section} configuration: {e}") from e

    def _load_yaml_section(self, section: str) -> Dict[str, Any]:
        if not self.config_path.exists():
            self._logger.debug(f"Config file not found: {self.config_path}")
            return {}

        self._logger.info(f"Loading config from {self.config_path}")
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {self.config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"{self.config_path} must contain a mapping")
        values = data.get(section) or {}
        if not isinstance(values, dict):
            raise ConfigurationError(f"Section '{section}' in {self.config_path} must be a mapping")
        return values

    def _ensure_env(self) -> None:
        if self._env_loaded:
            return
        if self.env_file.exists():
            self._logger.debug(f"Loading environment from {self.env_file}")
            load_dotenv(dotenv_path=self.env_file, override=False)
        self._env_loaded = True

    def _env_number(self, name: str, cast):
        value = os.getenv(name)
        if not value:
            return None
        try:
            return cast(value)
        except ValueError:
            self._logger.warning(f"Invalid {name} value: {value}")
            return None

    def _sanity_env(self) -> Dict[str, Any]:
        self._ensure_env()
        env_config: Dict[str, Any] = {}

        if ref := os.getenv("COMFY_REF"):
            env_config["comfy_ref"] = ref
        if repo := os.getenv("COMFY_REPO_URL"):
            env_config["comfy_repo_url"] = repo
        if manifest_path := os.getenv("MANIFEST_PATH"):
            env_config["manifest_path"] = Path(manifest_path)
        if manifest_url := os.getenv("MANIFEST_URL"):
            env_config["manifest_url"] = manifest_url
        if constraints := os.getenv("CONSTRAINTS_PATH"):
            env_config["constraints_path"] = Path(constraints)
        if work_root := os.getenv("WORKROOT"):
            env_config["work_root"] = Path(work_root)
        if python_bin := os.getenv("PYTHON_BIN"):
            env_config["python_bin"] = python_bin
        if strip := os.getenv("STRIP_REQUIREMENTS"):
            env_config["strip_requirements"] = [s.strip() for s in strip.split(",") if s.strip()]
        if pip_check := os.getenv("RUN_PIP_CHECK"):
            env_config["run_pip_check"] = _truthy(pip_check)

        for name, key, cast in (
            ("FETCH_TIMEOUT", "fetch_timeout", float),
            ("INSTALL_TIMEOUT", "install_timeout", float),
            ("PROBE_TIMEOUT", "probe_timeout", float),
            ("FETCH_WORKERS", "fetch_workers", int),
        ):
            value = self._env_number(name, cast)
            if value is not None:
                env_config[key] = value

        return env_config

    def _build_env(self) -> Dict[str, Any]:
        self._ensure_env()
        env_config: Dict[str, Any] = {}
        for name, key in (
            ("IMAGE", "image"),
            ("TAG", "tag"),
            ("PLATFORM", "platform"),
            ("IMAGE_VERSION", "image_version"),
            ("TORCH_INDEX", "torch_index"),
            ("TORCH_VER", "torch_ver"),
            ("TORCHVISION_VER", "torchvision_ver"),
            ("COMFYUI_REF", "comfy_ref"),
        ):
            if value := os.getenv(name):
                env_config[key] = value
        if sudo := os.getenv("DOCKER_SUDO"):
            env_config["use_sudo"] = _truthy(sudo)
        return env_config

    def _startup_env(self) -> Dict[str, Any]:
        self._ensure_env()
        env_config: Dict[str, Any] = {}
        if repo := os.getenv("RUNTIME_REPO_URL"):
            env_config["runtime_repo_url"] = repo
        if runtime_dir := os.getenv("RUNTIME_DIR"):
            env_config["runtime_dir"] = Path(runtime_dir)
        return env_config
