"""Distributable zip and disk image creation"""

import hashlib
import json
import tempfile
from pathlib import Path
from typing import Tuple

from .codesign import sign_path
from .context import PipelineContext
from .models import BuildArtifact, PackageResult

CHUNK_SIZE = 1024 * 1024


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def checksum_sidecar(path: Path) -> Path:
    return path.with_name(path.name + ".sha256")


def cached_checksum(path: Path) -> str:
    """Checksum from the sidecar when size and mtime still match the file, else recompute"""
    sidecar = checksum_sidecar(path)
    stat = path.stat()
    stamp = {"size": stat.st_size, "mtime_ns": stat.st_mtime_ns}
    if sidecar.exists():
        try:
            record = json.loads(sidecar.read_text())
        except ValueError:
            record = {}
        if record.get("sha256") and all(record.get(k) == v for k, v in stamp.items()):
            return record["sha256"]
    checksum = sha256_file(path)
    sidecar.write_text(json.dumps(dict(stamp, sha256=checksum)))
    return checksum


class ArtifactPackager:
    def __init__(self, context: PipelineContext):
        self.context = context

    def paths(self, version: str) -> Tuple[Path, Path]:
        # The version's last dotted part is not a file suffix
        base = f"{self.context.app_name}-{version}"
        releases = self.context.releases_dir
        return releases / f"{base}.zip", releases / f"{base}.dmg"

    def _create_zip(self, artifact: BuildArtifact, zip_path: Path) -> None:
        self.context.runner.run(
            ["ditto", "-c", "-k", "--keepParent", str(artifact.bundle_path), str(zip_path)],
            show_output=False,
        )

    def _create_dmg(self, artifact: BuildArtifact, dmg_path: Path) -> None:
        runner = self.context.runner
        with tempfile.TemporaryDirectory(prefix="macrelease-dmg-") as staging:
            staged_app = Path(staging) / artifact.bundle_path.name
            runner.run(["ditto", str(artifact.bundle_path), str(staged_app)], show_output=False)
            runner.run(
                [
                    "hdiutil",
                    "create",
                    "-volname",
                    self.context.app_name,
                    "-srcfolder",
                    staging,
                    "-ov",
                    "-format",
                    "UDZO",
                    "-fs",
                    "HFS+",
                    str(dmg_path),
                ],
                show_output=False,
            )
        sign_path(self.context, dmg_path, artifact.signing_identity_used, deep=False)

    def package(self, artifact: BuildArtifact, version: str) -> PackageResult:
        """Build zip and dmg; outputs that already exist for this version are reused"""
        context = self.context
        zip_path, dmg_path = self.paths(version)
        zip_path.parent.mkdir(parents=True, exist_ok=True)

        if context.force:
            for path in (zip_path, dmg_path):
                for stale in (path, checksum_sidecar(path)):
                    if stale.exists():
                        stale.unlink()

        reused = True
        if zip_path.exists():
            context.reporter.info(f"Reusing existing {zip_path.name}")
        else:
            reused = False
            with context.reporter.status(f"Creating {zip_path.name}..."):
                self._create_zip(artifact, zip_path)

        if dmg_path.exists():
            context.reporter.info(f"Reusing existing {dmg_path.name}")
        else:
            reused = False
            with context.reporter.status(f"Creating {dmg_path.name}..."):
                self._create_dmg(artifact, dmg_path)

        result = PackageResult(
            zip_path=zip_path,
            disk_image_path=dmg_path,
            zip_checksum=cached_checksum(zip_path),
            disk_image_checksum=cached_checksum(dmg_path),
            reused=reused,
        )
        for path in (zip_path, dmg_path):
            size_mb = path.stat().st_size / (1024 * 1024)
            context.reporter.success(f"{path.name} ({size_mb:.1f} MB)")
        return result
