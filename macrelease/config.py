"""release.yaml loading and project version detection"""

import plistlib
import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml  # type: ignore[import]

from .errors import ConfigError

DEFAULT_CONFIG_PATH = Path("release.yaml")

DEFAULTS: Dict[str, Any] = {
    "keychain_service": "macrelease",
    "local_config": "release.local.yaml",
    "archive_dir": "archive",
    "releases_dir": "releases",
    "appcast_path": "appcast.xml",
    "minimum_system_version": "12.3",
    "download_url_template": (
        "https://github.com/{github_owner}/{github_repo}/releases/download/v{version}/{file_name}"
    ),
    "staple_retry_delay": 20,
    "notarization": {
        "poll_interval": 30,
        "max_poll_interval": 120,
        "timeout": 7200,
    },
    "git_remote": "origin",
    "git_branch": "main",
}

REQUIRED_KEYS = ("app_name", "scheme")

EXAMPLE_CONFIG = """
# Example release.yaml configuration
app_name: "YourApp"
xcode_project: "YourApp.xcodeproj"   # or xcode_workspace
scheme: "YourApp"
team_id: "ABCDE12345"                # optional if supplied by credentials
github_owner: "yourusername"
github_repo: "YourApp"
minimum_system_version: "12.3"
"""


class Config:
    """Configuration container for release settings"""

    def __init__(self, config_dict: Dict[str, Any], path: Optional[Path] = None):
        self._config = config_dict
        self.path = path

    def __getitem__(self, key: str) -> Any:
        """Get a configuration value"""
        if key in self._config:
            return self._config[key]
        return DEFAULTS[key]

    def __contains__(self, key: str) -> bool:
        return key in self._config or key in DEFAULTS

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value with a default"""
        if key in self._config:
            return self._config[key]
        return DEFAULTS.get(key, default)

    def section(self, key: str) -> Dict[str, Any]:
        """Merge a nested section over its defaults"""
        merged = dict(DEFAULTS.get(key, {}))
        merged.update(self._config.get(key) or {})
        return merged

    @property
    def base_dir(self) -> Path:
        return self.path.parent if self.path else Path(".")

    def resolve_path(self, key: str) -> Path:
        path = Path(self[key])
        return path if path.is_absolute() else self.base_dir / path


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from YAML file"""
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    if not config_path.exists():
        raise ConfigError(
            f"Configuration file not found: {config_path}",
            remediation=f"Create {config_path} in your project root, e.g.:\n{EXAMPLE_CONFIG}",
        )

    try:
        with open(config_path, "r") as f:
            config_dict = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse configuration file: {e}") from e

    if not config_dict:
        raise ConfigError("Configuration file is empty")
    if not isinstance(config_dict, dict):
        raise ConfigError("Configuration file must contain a mapping")

    missing = [key for key in REQUIRED_KEYS if not config_dict.get(key)]
    if missing:
        raise ConfigError(
            f"Missing required configuration keys: {', '.join(missing)}",
            remediation=f"Add them to {config_path}",
        )
    if not (config_dict.get("xcode_project") or config_dict.get("xcode_workspace")):
        raise ConfigError(
            "Either xcode_project or xcode_workspace must be configured",
            remediation=f"Add one of them to {config_path}",
        )

    return Config(config_dict, path=config_path)


def validate_version(version: str) -> bool:
    """Validate a dotted numeric version (X.Y or X.Y.Z)"""
    return bool(re.match(r"^\d+\.\d+(\.\d+)?$", version))


def detect_version(config: Config) -> str:
    """Read MARKETING_VERSION from project.yml, falling back to Info.plist"""
    project_yml = config.base_dir / "project.yml"
    if project_yml.exists():
        match = re.search(
            r"MARKETING_VERSION:\s*[\"']?([\d.]+)[\"']?", project_yml.read_text()
        )
        if match:
            return match.group(1)

    info_plist = config.get("info_plist")
    if info_plist:
        plist_path = config.base_dir / info_plist
        if plist_path.exists():
            with open(plist_path, "rb") as f:
                version = plistlib.load(f).get("CFBundleShortVersionString")
            if version and not version.startswith("$("):
                return version

    raise ConfigError(
        "Could not detect version number",
        remediation="Pass the version explicitly: macrelease release 1.2.3",
    )
