"""Unit tests for configuration loading and version detection."""

import plistlib

import pytest
import yaml

from macrelease.config import detect_version, load_config, validate_version
from macrelease.errors import ConfigError


class TestLoadConfig:
    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError) as excinfo:
            load_config(tmp_path / "release.yaml")
        assert "not found" in excinfo.value.message
        assert "app_name" in excinfo.value.remediation

    def test_missing_required_keys(self, tmp_path):
        path = tmp_path / "release.yaml"
        path.write_text(yaml.safe_dump({"app_name": "Demo"}))
        with pytest.raises(ConfigError, match="scheme"):
            load_config(path)

    def test_needs_project_or_workspace(self, tmp_path):
        path = tmp_path / "release.yaml"
        path.write_text(yaml.safe_dump({"app_name": "Demo", "scheme": "Demo"}))
        with pytest.raises(ConfigError, match="xcode_project or xcode_workspace"):
            load_config(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "release.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_defaults_fill_gaps(self, config):
        assert config["app_name"] == "Demo"
        assert config["keychain_service"] == "macrelease"
        assert config.get("homebrew_tap") is None
        assert config.section("notarization")["timeout"] == 600
        assert config.section("notarization")["max_poll_interval"] == 120

    def test_paths_resolve_against_config_dir(self, config, config_path):
        assert config.resolve_path("appcast_path") == config_path.parent / "appcast.xml"


class TestVersions:
    @pytest.mark.parametrize("version", ["1.0", "1.2.3", "10.20.30"])
    def test_valid(self, version):
        assert validate_version(version)

    @pytest.mark.parametrize("version", ["1", "v1.2", "1.2.3.4", "1.2-beta", ""])
    def test_invalid(self, version):
        assert not validate_version(version)

    def test_detect_from_project_yml(self, config, project_dir):
        (project_dir / "project.yml").write_text(
            "settings:\n  base:\n    MARKETING_VERSION: \"2.4.1\"\n"
        )
        assert detect_version(config) == "2.4.1"

    def test_detect_from_info_plist(self, project_dir, config_data):
        project_dir.mkdir(parents=True, exist_ok=True)
        config_data["info_plist"] = "Info.plist"
        (project_dir / "release.yaml").write_text(yaml.safe_dump(config_data))
        with open(project_dir / "Info.plist", "wb") as f:
            plistlib.dump({"CFBundleShortVersionString": "3.0"}, f)
        assert detect_version(load_config(project_dir / "release.yaml")) == "3.0"

    def test_undetectable(self, config):
        with pytest.raises(ConfigError, match="detect version"):
            detect_version(config)
