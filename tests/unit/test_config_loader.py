"""Tests for configuration loading."""

from pathlib import Path

import pytest

from comfy_provision.domain.exceptions import ConfigurationError
from comfy_provision.infrastructure.config import BuildConfig, ConfigLoader, SanityConfig, StartupConfig


def make_loader(tmp_path, yaml_text=None, env_text=None):
    config_path = tmp_path / "config.yaml"
    env_file = tmp_path / ".env"
    if yaml_text is not None:
        config_path.write_text(yaml_text)
    if env_text is not None:
        env_file.write_text(env_text)
    return ConfigLoader(config_path=config_path, env_file=env_file)


class TestSanityConfig:
    """Test SanityConfig validation."""

    def test_requires_manifest_source(self):
        with pytest.raises(ConfigurationError, match="MANIFEST_PATH"):
            SanityConfig()

    def test_derived_paths(self):
        config = SanityConfig(manifest_url="https://x/m.list", work_root="/scratch")

        assert config.app_dir == Path("/scratch/run/ComfyUI")
        assert config.custom_nodes_dir == Path("/scratch/run/ComfyUI/custom_nodes")
        assert config.log_dir == Path("/scratch/logs")

    @pytest.mark.parametrize("field, value", [
        ("fetch_timeout", 0),
        ("install_timeout", -1),
        ("probe_timeout", 0),
        ("fetch_workers", 0),
    ])
    def test_rejects_invalid_limits(self, field, value):
        with pytest.raises(ConfigurationError):
            SanityConfig(manifest_url="https://x/m.list", **{field: value})

    def test_missing_constraints_file(self, tmp_path):
        config = SanityConfig(manifest_url="https://x/m.list", constraints_path=tmp_path / "missing.txt")

        with pytest.raises(ConfigurationError, match="CONSTRAINTS_PATH"):
            config.check_files()


class TestBuildConfig:
    """Test BuildConfig."""

    def test_defaults(self):
        config = BuildConfig()

        assert config.image_ref == "markwelshboy/comfyui-inference:latest"
        assert config.output_mode == "push"
        assert config.target == "final"

    def test_load_implies_no_push(self):
        config = BuildConfig(load=True)

        assert config.push is False
        assert config.output_mode == "load"

    def test_build_args_order_and_extras(self):
        config = BuildConfig(
            tag="v1", build_date="2025-01-01T00:00:00Z", vcs_ref="abc123",
            extra_build_args=["FOO=bar", "TORCH_VER=custom"],
        )

        args = config.build_args()
        assert list(args)[:4] == ["BUILD_DATE", "VCS_REF", "IMAGE_VERSION", "BUILD_GIT_SHA"]
        assert args["BUILD_GIT_SHA"] == "abc123"
        assert args["IMAGE_TAG"] == "v1"
        assert args["FOO"] == "bar"
        assert args["TORCH_VER"] == "custom"

    def test_rejects_malformed_build_arg(self):
        with pytest.raises(ConfigurationError, match="KEY=VALUE"):
            BuildConfig(extra_build_args=["not-a-pair"])


class TestConfigLoader:
    """Test layered loading: YAML, .env, environment, overrides."""

    def test_yaml_section(self, tmp_path):
        loader = make_loader(tmp_path, yaml_text=(
            "sanity:\n"
            "  manifest_url: https://x/m.list\n"
            "  fetch_workers: 4\n"
            "  strip_requirements: [torch, torchaudio]\n"
            "build:\n"
            "  tag: nightly\n"
        ))

        sanity = loader.load_sanity()
        build = loader.load_build()

        assert sanity.manifest_url == "https://x/m.list"
        assert sanity.fetch_workers == 4
        assert sanity.strip_requirements == ["torch", "torchaudio"]
        assert build.tag == "nightly"

    def test_env_overrides_yaml(self, tmp_path, monkeypatch):
        loader = make_loader(tmp_path, yaml_text="sanity:\n  comfy_ref: v0.1.0\n  manifest_url: https://x/m\n")
        monkeypatch.setenv("COMFY_REF", "v0.9.2")
        monkeypatch.setenv("WORKROOT", str(tmp_path / "w"))
        monkeypatch.setenv("FETCH_WORKERS", "3")
        monkeypatch.setenv("STRIP_REQUIREMENTS", "torch, torchvision ,")
        monkeypatch.setenv("RUN_PIP_CHECK", "no")

        config = loader.load_sanity()

        assert config.comfy_ref == "v0.9.2"
        assert config.work_root == tmp_path / "w"
        assert config.fetch_workers == 3
        assert config.strip_requirements == ["torch", "torchvision"]
        assert config.run_pip_check is False

    def test_overrides_win_and_none_is_ignored(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MANIFEST_PATH", "/env/m.list")
        loader = make_loader(tmp_path)

        config = loader.load_sanity(overrides={"manifest_path": Path("/cli/m.list"), "comfy_ref": None})

        assert config.manifest_path == Path("/cli/m.list")
        assert config.comfy_ref == "v0.9.2"

    def test_invalid_number_in_env_is_ignored(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MANIFEST_URL", "https://x/m")
        monkeypatch.setenv("FETCH_TIMEOUT", "ten minutes")

        config = make_loader(tmp_path).load_sanity()

        assert config.fetch_timeout == 600.0

    def test_dotenv_does_not_override_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("COMFY_REF", "from-env")
        monkeypatch.setenv("MANIFEST_URL", "https://x/m")
        loader = make_loader(tmp_path, env_text="COMFY_REF=from-dotenv\nPROBE_TIMEOUT=42\n")

        config = loader.load_sanity()

        assert config.comfy_ref == "from-env"
        assert config.probe_timeout == 42.0

    def test_missing_manifest_source(self, tmp_path):
        with pytest.raises(ConfigurationError):
            make_loader(tmp_path).load_sanity()

    def test_invalid_yaml(self, tmp_path):
        loader = make_loader(tmp_path, yaml_text="sanity: [unclosed\n")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            loader.load_sanity()

    def test_non_mapping_section(self, tmp_path):
        loader = make_loader(tmp_path, yaml_text="build: just-a-string\n")

        with pytest.raises(ConfigurationError, match="mapping"):
            loader.load_build()

    def test_unknown_keys_ignored(self, tmp_path):
        loader = make_loader(tmp_path, yaml_text="startup:\n  runtime_dir: /rt\n  colour: blue\n")

        config = loader.load_startup()

        assert isinstance(config, StartupConfig)
        assert config.runtime_dir == Path("/rt")

    def test_build_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TAG", "2025-06")
        monkeypatch.setenv("COMFYUI_REF", "master")
        monkeypatch.setenv("DOCKER_SUDO", "1")

        config = make_loader(tmp_path).load_build(overrides={"load": True})

        assert config.tag == "2025-06"
        assert config.comfy_ref == "master"
        assert config.use_sudo is True
        assert config.output_mode == "load"

    def test_wrong_type_becomes_configuration_error(self, tmp_path):
        loader = make_loader(tmp_path, yaml_text="sanity:\n  manifest_url: https://x/m\n  fetch_workers: many\n")

        with pytest.raises(ConfigurationError):
            loader.load_sanity()
