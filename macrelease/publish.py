"""Push the feed, create the GitHub release and bump the Homebrew cask"""

import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .context import PipelineContext
from .errors import CommandError, PublishError
from .models import PackageResult


@dataclass
class PublishResult:
    tag: Optional[str] = None
    release_url: Optional[str] = None
    cask_updated: bool = False
    pushed: bool = False


def update_cask_text(text: str, version: str, sha256: str) -> str:
    """Rewrite the version and sha256 stanzas of a cask file"""
    text = re.sub(r'version\s+"[^"]*"', f'version "{version}"', text, count=1)
    text = re.sub(r'sha256\s+"[^"]*"', f'sha256 "{sha256}"', text, count=1)
    return text


class ReleasePublisher:
    def __init__(self, context: PipelineContext):
        self.context = context
        self.remote = context.config["git_remote"]
        self.branch = context.config["git_branch"]

    def _git(self, args: List[str], cwd: Optional[Path] = None):
        return self.context.runner.run(["git"] + args, cwd=str(cwd) if cwd else None)

    def commit_and_tag(self, version: str, paths: List[Path], result: PublishResult) -> str:
        """Commit the feed and push an annotated tag"""
        cwd = self.context.config.base_dir
        tag = f"v{version}"
        self._git(["add"] + [str(p) for p in paths], cwd=cwd)
        status = self._git(["status", "--porcelain"] + [str(p) for p in paths], cwd=cwd)
        if (status.stdout or "").strip():
            self._git(["commit", "-m", f"Publish {tag}"], cwd=cwd)
        self._git(["tag", "-a", tag, "-m", f"Version {version}"], cwd=cwd)

        # Point of no return: after this the release is visible on the remote
        self._git(["push", self.remote, self.branch], cwd=cwd)
        self._git(["push", self.remote, tag], cwd=cwd)
        result.pushed = True
        result.tag = tag
        self.context.reporter.success(f"Created and pushed commit and tag {tag}")
        return tag

    def create_github_release(self, tag: str, version: str, files: List[Path]) -> str:
        cmd = ["gh", "release", "create", tag] + [str(f) for f in files]
        cmd += ["--latest", "--verify-tag", "--title", f"Version {version}", "--notes-from-tag"]
        output = self.context.runner.run(cmd, cwd=str(self.context.config.base_dir)).stdout or ""
        for line in output.strip().splitlines():
            if line.startswith("https://"):
                return line.strip()
        raise PublishError("Could not find release URL in gh output")

    def update_homebrew_cask(self, version: str, sha256: str) -> bool:
        tap = self.context.config.get("homebrew_tap")
        if not tap:
            return False
        repository = tap.get("repository")
        cask = tap.get("cask")
        if not repository or not cask:
            raise PublishError(
                "homebrew_tap needs repository and cask",
                remediation="Set homebrew_tap.repository and homebrew_tap.cask in release.yaml",
            )

        with tempfile.TemporaryDirectory(prefix="macrelease-tap-") as tmp:
            tap_dir = Path(tmp) / "tap"
            self._git(["clone", "--depth", "1", repository, str(tap_dir)])
            cask_path = tap_dir / cask
            if not cask_path.exists():
                raise PublishError(f"Cask file not found in tap: {cask}")

            original = cask_path.read_text()
            updated = update_cask_text(original, version, sha256)
            if updated == original:
                self.context.reporter.info("Homebrew cask already up to date")
                return False
            cask_path.write_text(updated)
            self._git(["add", cask], cwd=tap_dir)
            self._git(["commit", "-m", f"Update {self.context.app_name} to v{version}"], cwd=tap_dir)
            self._git(["push", "origin", "HEAD"], cwd=tap_dir)

        self.context.reporter.success(f"Homebrew cask updated to v{version}")
        return True

    def publish(self, version: str, packages: PackageResult, appcast_path: Path) -> PublishResult:
        result = PublishResult()
        try:
            tag = self.commit_and_tag(version, [appcast_path], result)
            result.release_url = self.create_github_release(
                tag, version, [packages.disk_image_path, packages.zip_path]
            )
            result.cask_updated = self.update_homebrew_cask(version, packages.disk_image_checksum)
        except PublishError as e:
            e.pushed = e.pushed or result.pushed
            raise
        except CommandError as e:
            raise PublishError(
                f"{e.message}\n{e.output.strip()}".strip(),
                pushed=result.pushed,
                remediation=(
                    "The tag is already on the remote; finish the remaining steps manually"
                    if result.pushed
                    else "Fix the git/gh problem and re-run: macrelease release --resume"
                ),
            ) from e
        return result
