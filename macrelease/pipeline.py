"""Stage orchestration for one release attempt

Stages run strictly in order, each consuming the previous stage's artifact.
Pre-flight work (lock, tools, credentials) happens before anything expensive
or state-mutating. Progress is recorded per version in ``state.json`` so that
``release --resume`` skips stages that already completed.
"""

import json
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from rich.markup import escape  # type: ignore[import]

from .appcast import AppcastGenerator
from .build import BuildArchiveExporter
from .context import PipelineContext
from .credentials import CredentialResolver
from .errors import CommandError, NotarizationRejectedError, PublishError, ReleaseError
from .lock import ReleaseLock
from .models import (
    AppcastEntry,
    BuildArtifact,
    Credential,
    NotarizationSubmission,
    PackageResult,
    StapleResult,
    SubmissionStatus,
    ValidationResult,
)
from .notarize import NotarizationSubmitter, describe_issues
from .package import ArtifactPackager
from .prerequisites import PrerequisiteChecker
from .publish import PublishResult, ReleasePublisher
from .signing import DSA, SigningKey
from .staple import Stapler


@dataclass
class ReleaseOptions:
    resume: bool = False
    publish: bool = True
    appcast: bool = True
    signing_key: Optional[Path] = None
    notes: Optional[Path] = None


class ReleaseState:
    """Per-version record of completed stages; never holds secrets"""

    def __init__(self, directory: Path):
        self.path = directory / "state.json"
        self.data: Dict[str, Any] = {}

    def load(self) -> "ReleaseState":
        if self.path.exists():
            self.data = json.loads(self.path.read_text())
        return self

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self.data, indent=2))

    def reset(self) -> None:
        self.data = {}
        if self.path.exists():
            self.path.unlink()

    def artifact(self) -> Optional[BuildArtifact]:
        data = self.data.get("artifact")
        if not data:
            return None
        artifact = BuildArtifact.from_dict(data)
        return artifact if artifact.bundle_path.exists() else None

    def record_artifact(self, artifact: BuildArtifact) -> None:
        self.data["artifact"] = artifact.to_dict()
        self.save()


class RollbackManager:
    """Manages rollback of changes if the release fails before pushing"""

    def __init__(self, context: PipelineContext):
        self.context = context
        self.backup_files: Dict[Path, Optional[str]] = {}

    def backup_file(self, filepath: Path) -> None:
        """Backup a file before modifying it; a missing file is deleted on rollback"""
        if filepath in self.backup_files:
            return
        self.backup_files[filepath] = filepath.read_text() if filepath.exists() else None

    def rollback(self) -> None:
        reporter = self.context.reporter
        if not self.backup_files:
            return
        reporter.warning("Rolling back changes...")
        for filepath, content in self.backup_files.items():
            try:
                if content is None:
                    filepath.unlink(missing_ok=True)
                    reporter.detail(f"Deleted {filepath}")
                else:
                    filepath.write_text(content)
                    reporter.detail(f"Restored {filepath}")
            except OSError as e:
                reporter.error(f"Failed to restore {filepath}: {e}")
        self.backup_files.clear()


@dataclass
class ReleaseReport:
    version: str
    artifact: Optional[BuildArtifact] = None
    submission: Optional[NotarizationSubmission] = None
    staple: Optional[StapleResult] = None
    packages: Optional[PackageResult] = None
    entry: Optional[AppcastEntry] = None
    published: Optional[PublishResult] = None
    skipped: List[str] = field(default_factory=list)


class ReleasePipeline:
    def __init__(self, context: PipelineContext, options: Optional[ReleaseOptions] = None):
        self.context = context
        self.options = options or ReleaseOptions()
        self.reporter = context.reporter
        self.state = ReleaseState(context.archive_dir)
        self.rollback = RollbackManager(context)
        self.submitter = NotarizationSubmitter(context)
        self.signing_key: Optional[SigningKey] = None
        self.reused_artifact = False

    @contextmanager
    def stage(self, name: str, title: str) -> Iterator[None]:
        """Label failures from generic commands with the stage they broke"""
        self.reporter.rule(title)
        try:
            yield
        except ReleaseError as e:
            if type(e) in (ReleaseError, CommandError) and e.stage == ReleaseError.default_stage:
                e.stage = name
            raise

    def lock(self) -> ReleaseLock:
        return ReleaseLock(self.context.config.resolve_path("archive_dir"), self.context.version)

    # Pre-flight

    def preflight(self) -> ValidationResult:
        """Tools, then credentials, then one live validation call"""
        options = self.options
        key_path = options.signing_key or self.context.config.get("sparkle_private_key")
        if key_path and options.appcast:
            self.signing_key = SigningKey.load(Path(key_path))

        with self.stage("prerequisites", "Validation Phase"):
            PrerequisiteChecker(
                self.context,
                publish=options.publish,
                dsa_signing=self.signing_key is not None and self.signing_key.scheme == DSA,
            ).check()

        with self.stage("credentials", "Credentials"):
            resolver = CredentialResolver(self.context)
            credential = resolver.resolve()
            self.context.use_credential(credential)
            self.reporter.success(f"Using {credential.describe()}")
            with self.reporter.status("Validating credentials with Apple..."):
                validation = resolver.validate(credential)
            self.reporter.success("Credentials validated")
        return validation

    # Stages

    def build_stage(self, credential: Credential) -> BuildArtifact:
        with self.stage("build", "Building Release"):
            if self.options.resume:
                artifact = self.state.artifact()
                recorded = self.submitter.store.load()
                if recorded is not None and recorded.status == SubmissionStatus.INVALID:
                    # A rejected bundle is rebuilt, never resubmitted as-is
                    artifact = None
                if artifact is not None:
                    self.reporter.info(f"Reusing built bundle {artifact.bundle_path}")
                    self.reused_artifact = True
                    return artifact
            artifact = BuildArchiveExporter(self.context).build_and_export(
                credential, self.context.version
            )
            self.state.record_artifact(artifact)
            return artifact

    def notarize_stage(
        self, artifact: BuildArtifact, credential: Credential
    ) -> NotarizationSubmission:
        with self.stage("notarize", "Notarization"):
            submission = None
            if self.reused_artifact:
                recorded = self.submitter.store.load()
                if recorded is not None and recorded.status != SubmissionStatus.INVALID:
                    self.reporter.info(
                        f"Resuming submission {recorded.submission_id} ({recorded.status.value})"
                    )
                    submission = recorded
            if submission is None:
                submission = self.submitter.submit(artifact, credential)
            submission = self.submitter.poll(submission, credential)

            if submission.status == SubmissionStatus.INVALID:
                self.report_rejection(submission, credential)
            self.reporter.success(f"Notarization accepted ({submission.submission_id})")
            return submission

    def report_rejection(self, submission: NotarizationSubmission, credential: Credential) -> None:
        """Fetch the detailed log once, show it, and stop the release"""
        log = self.submitter.fetch_log(submission, credential)
        issues = describe_issues(log) or ["No issues listed in the notarization log"]
        self.reporter.panel(
            "\n".join(escape(line) for line in issues),
            title=f"Notarization rejected ({submission.submission_id})",
            style="red",
        )
        raise NotarizationRejectedError(
            f"Apple rejected submission {submission.submission_id}",
            submission=submission,
            remediation="Fix the listed issues and run a new release",
            diagnostic=self.submitter.client.diagnostic_command(
                "log", credential, submission.submission_id
            ),
        )

    def staple_stage(self, artifact: BuildArtifact) -> StapleResult:
        with self.stage("staple", "Stapling"):
            if artifact.stapled:
                self.reporter.info("Ticket already stapled")
                return StapleResult(success=True, attempts=0)
            result = Stapler(self.context).staple(artifact)
            self.state.record_artifact(artifact)
            return result

    def package_stage(self, artifact: BuildArtifact) -> PackageResult:
        with self.stage("package", "Packaging"):
            packages = ArtifactPackager(self.context).package(artifact, self.context.version)
            self.state.data["packages"] = {
                "zip_path": str(packages.zip_path),
                "disk_image_path": str(packages.disk_image_path),
                "zip_checksum": packages.zip_checksum,
                "disk_image_checksum": packages.disk_image_checksum,
            }
            self.state.save()
            return packages

    def appcast_stage(self, packages: PackageResult) -> AppcastEntry:
        with self.stage("appcast", "Appcast Update"):
            generator = AppcastGenerator(self.context)
            self.rollback.backup_file(generator.feed_path)
            feed = generator.load_feed()
            entry = generator.generate(
                self.context.version,
                packages.disk_image_path,
                signing_key=self.signing_key,
                notes_path=self.options.notes,
                feed=feed,
            )
            generator.write_entry(entry, feed)
            return entry

    def publish_stage(self, packages: PackageResult) -> PublishResult:
        with self.stage("publish", "Git & GitHub Release"):
            feed_path = self.context.config.resolve_path("appcast_path")
            return ReleasePublisher(self.context).publish(self.context.version, packages, feed_path)

    # Entry points

    def run(self) -> ReleaseReport:
        report = ReleaseReport(version=self.context.version)
        start_time = time.time()
        with self.lock():
            if not self.options.resume:
                self.state.reset()
            else:
                self.state.load()

            self.preflight()
            credential = self.context.require_credential()
            try:
                report.artifact = self.build_stage(credential)
                report.submission = self.notarize_stage(report.artifact, credential)
                report.staple = self.staple_stage(report.artifact)
                if report.staple.deferred:
                    report.skipped.append("Stapling (deferred)")
                report.packages = self.package_stage(report.artifact)

                if self.options.appcast:
                    report.entry = self.appcast_stage(report.packages)
                else:
                    report.skipped.append("Appcast update")

                if self.options.publish:
                    report.published = self.publish_stage(report.packages)
                else:
                    report.skipped.append("Git push & GitHub release")
            except PublishError as e:
                if not e.pushed:
                    self.rollback.rollback()
                raise
            except (ReleaseError, KeyboardInterrupt):
                self.rollback.rollback()
                raise

        self.show_summary(report, start_time)
        return report

    def check(self) -> ValidationResult:
        """Pre-flight only: tools, credential resolution, live validation"""
        return self.preflight()

    def status(self, wait: bool = False) -> Optional[NotarizationSubmission]:
        """Inspect (and optionally keep polling) the recorded submission"""
        submission = self.submitter.store.load()
        if submission is None:
            self.reporter.warning(f"No notarization submission recorded for {self.context.version}")
            return None
        self.reporter.info(
            f"Submission {submission.submission_id}: {submission.status.value} "
            f"(submitted {submission.submitted_at:%Y-%m-%d %H:%M} UTC)"
        )
        if not wait or submission.is_terminal:
            return submission

        with self.lock():
            with self.stage("credentials", "Credentials"):
                credential = CredentialResolver(self.context).resolve()
                self.context.use_credential(credential)
            with self.stage("notarize", "Notarization"):
                submission = self.submitter.poll(submission, credential)
                if submission.status == SubmissionStatus.INVALID:
                    self.report_rejection(submission, credential)
                self.reporter.success(f"Notarization accepted ({submission.submission_id})")
        return submission

    def show_summary(self, report: ReleaseReport, start_time: float) -> None:
        if self.reporter.quiet:
            url = report.published.release_url if report.published else ""
            self.reporter.console.print(f"Release v{report.version} complete {url}".strip())
            return

        duration = time.time() - start_time
        lines = [
            f"[bold green]Release v{report.version} completed![/bold green]",
            "",
            f"[bold]Duration:[/bold] {int(duration // 60)}m {int(duration % 60)}s",
        ]
        if report.submission:
            lines.append(f"[bold]Submission:[/bold] {report.submission.submission_id}")
        if report.packages:
            lines.append(f"[bold]DMG:[/bold] {report.packages.disk_image_path}")
            lines.append(f"[bold]ZIP:[/bold] {report.packages.zip_path}")
            lines.append(f"[bold]SHA-256:[/bold] {report.packages.disk_image_checksum}")
        if report.published and report.published.release_url:
            lines.append("")
            url = report.published.release_url
            lines.append(f"[bold]GitHub Release:[/bold] [link={url}]{url}[/link]")
        if report.skipped:
            lines.append("")
            lines.append("[bold yellow]Skipped:[/bold yellow]")
            lines.extend(f"  • {item}" for item in report.skipped)
        self.reporter.panel("\n".join(lines), title="Release Summary", style="green")
