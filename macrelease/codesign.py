"""Signing identity lookup and bundle signing helpers"""

import os
import re
from pathlib import Path
from typing import List, Optional

from .context import PipelineContext
from .errors import CommandError, ConfigError, ReleaseError

METADATA_FILE_NAMES = (".DS_Store",)
APPLE_DOUBLE_PREFIX = "._"


def get_developer_id_certificate(context: PipelineContext, team_id: Optional[str]) -> str:
    """Get the Developer ID Application certificate name from the keychain"""
    pinned = context.config.get("signing_identity")
    if pinned:
        return pinned
    if not team_id:
        raise ConfigError(
            "No team id available to pick a Developer ID certificate",
            stage="signing",
            remediation="Set team_id or signing_identity in release.yaml",
        )

    result = context.runner.run(
        ["security", "find-identity", "-v", "-p", "codesigning"], show_output=False
    )
    pattern = rf'"(Developer ID Application: [^"]+\({re.escape(team_id)}\))"'
    identities = sorted(set(re.findall(pattern, result.stdout or "")))

    if not identities:
        raise ConfigError(
            f"Could not find Developer ID Application certificate for team {team_id}",
            stage="signing",
            remediation="Install the certificate from developer.apple.com into your login keychain",
            diagnostic="security find-identity -v -p codesigning",
        )
    if len(identities) > 1:
        raise ConfigError(
            f"Several Developer ID certificates match team {team_id}: {', '.join(identities)}",
            stage="signing",
            remediation="Pin one with signing_identity in release.yaml",
        )
    return identities[0]


def strip_metadata_files(root: Path) -> List[Path]:
    """Delete AppleDouble (._*) and .DS_Store files; returns what was removed"""
    removed: List[Path] = []
    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        for name in filenames:
            if name.startswith(APPLE_DOUBLE_PREFIX) or name in METADATA_FILE_NAMES:
                path = Path(dirpath) / name
                path.unlink()
                removed.append(path)
    return removed


def find_metadata_files(root: Path) -> List[Path]:
    found: List[Path] = []
    for dirpath, _, filenames in os.walk(root, followlinks=False):
        found.extend(
            Path(dirpath) / name
            for name in filenames
            if name.startswith(APPLE_DOUBLE_PREFIX) or name in METADATA_FILE_NAMES
        )
    return found


def clear_extended_attributes(context: PipelineContext, path: Path) -> None:
    context.runner.run(["xattr", "-cr", str(path)], show_output=False)


def sign_path(context: PipelineContext, path: Path, identity: str, deep: bool = True) -> None:
    cmd = ["codesign", "--force"]
    if deep:
        cmd.append("--deep")
    cmd += ["--sign", identity, "--options", "runtime", "--timestamp", str(path)]
    context.runner.run(cmd, show_output=False)


def verify_signature(context: PipelineContext, path: Path) -> None:
    try:
        context.runner.run(
            ["codesign", "--verify", "--deep", "--strict", str(path)], show_output=False
        )
    except CommandError as e:
        raise ReleaseError(
            f"Signature verification failed for {path.name}: {e.output.strip()}",
            stage="signing",
            remediation="Rebuild the app; something modified the bundle after it was signed",
            diagnostic=f"codesign --verify --deep --strict --verbose=4 {path}",
        ) from e
