"""Archive and export a Developer ID signed app bundle"""

import plistlib
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from .codesign import get_developer_id_certificate
from .context import PipelineContext
from .errors import BuildError, ConfigError
from .models import BuildArtifact, Credential

LOG_TAIL_LINES = 20

_DIAGNOSTIC_LINE = re.compile(r"(error:|warning:|\*\* (ARCHIVE|EXPORT) FAILED)", re.IGNORECASE)


def log_tail(log_path: Path, lines: int = LOG_TAIL_LINES) -> str:
    """Last lines of a build log, preferring error/warning lines"""
    if not log_path.exists():
        return ""
    tail = log_path.read_text(errors="replace").splitlines()[-lines:]
    diagnostics = [line for line in tail if _DIAGNOSTIC_LINE.search(line)]
    return "\n".join(diagnostics or tail)


def write_export_options(path: Path, team_id: str, signing_identity: str) -> Path:
    """ExportOptions.plist pinning the Developer ID identity and team"""
    options = {
        "method": "developer-id",
        "teamID": team_id,
        "signingStyle": "manual",
        "signingCertificate": signing_identity,
        "uploadSymbols": False,
        "compileBitcode": False,
        "stripSwiftSymbols": True,
        "generateAppStoreInformation": False,
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        plistlib.dump(options, f)
    return path


class BuildArchiveExporter:
    def __init__(self, context: PipelineContext):
        self.context = context

    def _project_args(self) -> List[str]:
        config = self.context.config
        if config.get("xcode_workspace"):
            args = ["-workspace", str(config.base_dir / config["xcode_workspace"])]
        else:
            args = ["-project", str(config.base_dir / config["xcode_project"])]
        return args + ["-scheme", config["scheme"]]

    def _fail(self, message: str, log_path: Path, cleanup: List[Path]) -> BuildError:
        for path in cleanup:
            if path.exists():
                shutil.rmtree(path)
        tail = log_tail(log_path)
        return BuildError(
            f"{message}\n\nLast lines of {log_path.name}:\n{tail}" if tail else message,
            log_path=log_path,
            log_tail=tail,
            remediation=f"Fix the build, then re-run. Full log: cat {log_path}",
            diagnostic="security find-identity -v -p codesigning",
        )

    def build_and_export(self, credential: Credential, version: str) -> BuildArtifact:
        context = self.context
        team_id = credential.organization_id or context.config.get("team_id")
        if not team_id:
            raise ConfigError(
                "A team id is required for Developer ID signing",
                stage="build",
                remediation="Set team_id in release.yaml or APPLE_TEAM_ID",
            )
        identity = get_developer_id_certificate(context, team_id)

        work_dir = context.archive_dir
        app_name = context.app_name
        archive_path = work_dir / f"{app_name}.xcarchive"
        export_dir = work_dir / "export"
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        build_log = work_dir / "logs" / f"build-{stamp}.log"
        export_log = work_dir / "logs" / f"export-{stamp}.log"

        for stale in (archive_path, export_dir):
            if stale.exists():
                shutil.rmtree(stale)

        with context.reporter.status("Building Xcode archive..."):
            result = context.runner.run(
                ["xcodebuild", "archive"]
                + self._project_args()
                + [
                    "-configuration",
                    "Release",
                    "-destination",
                    "generic/platform=macOS",
                    "-archivePath",
                    str(archive_path),
                    "CODE_SIGN_STYLE=Manual",
                    f"CODE_SIGN_IDENTITY={identity}",
                    f"DEVELOPMENT_TEAM={team_id}",
                    "OTHER_CODE_SIGN_FLAGS=--timestamp",
                    "ENABLE_HARDENED_RUNTIME=YES",
                ],
                check=False,
                log_path=build_log,
            )
        if result.returncode != 0:
            raise self._fail("Build archive failed", build_log, [archive_path])
        context.reporter.success(f"Archive created: {archive_path.name}")

        export_options = write_export_options(work_dir / "ExportOptions.plist", team_id, identity)
        with context.reporter.status("Exporting with Developer ID signing..."):
            result = context.runner.run(
                [
                    "xcodebuild",
                    "-exportArchive",
                    "-archivePath",
                    str(archive_path),
                    "-exportPath",
                    str(export_dir),
                    "-exportOptionsPlist",
                    str(export_options),
                ],
                check=False,
                log_path=export_log,
            )
        if result.returncode != 0:
            raise self._fail("Export failed", export_log, [export_dir])

        app_path = export_dir / f"{app_name}.app"
        if not app_path.exists():
            raise self._fail(f"Exported app not found at {app_path}", export_log, [])

        context.reporter.success(f"Exported {app_path.name} signed by {identity}")
        return BuildArtifact(
            bundle_path=app_path,
            version=version,
            build_timestamp=datetime.now(timezone.utc),
            signing_identity_used=identity,
            archive_path=archive_path,
            log_path=build_log,
        )
