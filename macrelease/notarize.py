"""Notarization submission and the status poll loop

The submission id is written to disk as soon as Apple hands it back, before
any polling, so an interrupted run can be inspected or resumed with
``macrelease status <version>``.
"""

import json
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from .codesign import (
    clear_extended_attributes,
    find_metadata_files,
    sign_path,
    strip_metadata_files,
    verify_signature,
)
from .context import PipelineContext
from .errors import (
    CommandError,
    NotarizationTimeoutError,
    PollCancelledError,
    SubmissionError,
)
from .models import BuildArtifact, Credential, NotarizationSubmission, SubmissionStatus
from .notary import NotaryClient

MIN_POLL_INTERVAL = 10.0
BACKOFF_FACTOR = 1.5
MAX_CONSECUTIVE_POLL_FAILURES = 3


class SubmissionStore:
    """Durable record of the current version's notarization submission"""

    def __init__(self, directory: Path):
        self.directory = directory / "notarization"
        self.path = self.directory / "submission.json"

    def save(self, submission: NotarizationSubmission) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(submission.to_dict(), indent=2))
        tmp.replace(self.path)

    def load(self) -> Optional[NotarizationSubmission]:
        if not self.path.exists():
            return None
        return NotarizationSubmission.from_dict(json.loads(self.path.read_text()))

    def save_log(self, submission_id: str, text: str) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        log_path = self.directory / f"notarization-log-{submission_id}.json"
        log_path.write_text(text)
        return log_path


def describe_issues(log: Dict[str, Any]) -> List[str]:
    """Flatten a notarytool log into printable lines"""
    lines = []
    for issue in log.get("issues") or []:
        severity = (issue.get("severity") or "unknown").upper()
        path = issue.get("path") or "Unknown path"
        message = issue.get("message") or "No message"
        lines.append(f"[{severity}] {path}: {message}")
    for error in log.get("productErrors") or []:
        code = error.get("code", "unknown")
        description = (error.get("userInfo") or {}).get("NSLocalizedDescription", "No description")
        lines.append(f"[{code}] {description}")
    if not lines and log.get("statusSummary"):
        lines.append(str(log["statusSummary"]))
    return lines


class NotarizationSubmitter:
    def __init__(self, context: PipelineContext, client: Optional[NotaryClient] = None):
        self.context = context
        self.client = client or NotaryClient(context.runner)
        self.store = SubmissionStore(context.archive_dir)
        settings = context.config.section("notarization")
        self.poll_interval = max(float(settings["poll_interval"]), MIN_POLL_INTERVAL)
        self.max_poll_interval = max(float(settings["max_poll_interval"]), self.poll_interval)
        self.timeout = float(settings["timeout"])

    def prepare(self, artifact: BuildArtifact) -> List[Path]:
        """Strip metadata files that break the signature; re-sign if any were found"""
        context = self.context
        bundle = artifact.bundle_path
        removed = strip_metadata_files(bundle)
        clear_extended_attributes(context, bundle)

        if removed or find_metadata_files(bundle):
            context.reporter.warning(
                f"Removed {len(removed)} AppleDouble/.DS_Store file(s); re-signing {bundle.name}"
            )
            strip_metadata_files(bundle)
            sign_path(context, bundle, artifact.signing_identity_used)
        verify_signature(context, bundle)
        return removed

    def create_upload(self, artifact: BuildArtifact) -> Path:
        """Zip the bundle with ditto, which keeps symlinks and resource forks intact"""
        upload = self.store.directory / f"{self.context.app_name}-{artifact.version}-notarize.zip"
        upload.parent.mkdir(parents=True, exist_ok=True)
        if upload.exists():
            upload.unlink()
        self.context.runner.run(
            ["ditto", "-c", "-k", "--keepParent", str(artifact.bundle_path), str(upload)],
            show_output=False,
        )
        return upload

    def submit(self, artifact: BuildArtifact, credential: Credential) -> NotarizationSubmission:
        self.prepare(artifact)
        upload = self.create_upload(artifact)

        with self.context.reporter.status("Uploading to Apple notary service..."):
            try:
                payload = self.client.submit(upload, credential)
            except CommandError as e:
                raise SubmissionError(
                    f"Upload to the notary service failed: {e.output.strip() or e.message}",
                    remediation="Check your network connection and re-run: macrelease release --resume",
                    diagnostic=self.client.diagnostic_command("history", credential),
                ) from e

        submission_id = payload.get("id")
        if not submission_id:
            raise SubmissionError(
                f"notarytool did not return a submission id: {payload}",
                remediation="Re-run: macrelease release --resume",
            )

        submission = NotarizationSubmission(
            submission_id=submission_id,
            version=artifact.version,
            bundle_path=artifact.bundle_path,
            upload_path=upload,
            raw_response_payload=payload,
        )
        self.store.save(submission)
        self.context.reporter.success(f"Submitted for notarization: {submission_id}")
        return submission

    def poll(
        self,
        submission: NotarizationSubmission,
        credential: Credential,
        cancel: Optional[threading.Event] = None,
    ) -> NotarizationSubmission:
        """Wait for a terminal verdict, backing off between status checks"""
        context = self.context
        cancel = cancel or context.cancel
        start = context.clock()
        interval = self.poll_interval
        failures = 0

        with context.reporter.status("Waiting for Apple...") as live:
            while not submission.is_terminal:
                if cancel.is_set():
                    self.store.save(submission)
                    raise PollCancelledError(
                        f"Stopped waiting for submission {submission.submission_id}",
                        remediation=f"Resume later with: macrelease status {submission.version} --wait",
                    )

                try:
                    payload = self.client.info(submission.submission_id, credential)
                    status = SubmissionStatus.from_remote(payload.get("status", ""))
                except (CommandError, ValueError) as e:
                    failures += 1
                    context.reporter.detail(f"Status check failed ({failures}): {e}")
                    if failures >= MAX_CONSECUTIVE_POLL_FAILURES:
                        self.store.save(submission)
                        raise SubmissionError(
                            f"Could not read the status of submission {submission.submission_id}",
                            remediation=f"Resume later with: macrelease status {submission.version} --wait",
                            diagnostic=self.client.diagnostic_command(
                                "info", credential, submission.submission_id
                            ),
                        ) from e
                else:
                    failures = 0
                    submission.raw_response_payload = payload
                    if submission.transition(status):
                        self.store.save(submission)
                        context.reporter.detail(f"Notarization status: {status.value}")

                if submission.is_terminal:
                    break

                elapsed = context.clock() - start
                if elapsed >= self.timeout:
                    self.store.save(submission)
                    raise NotarizationTimeoutError(
                        f"Submission {submission.submission_id} still {submission.status.value} "
                        f"after {int(elapsed // 60)} minutes",
                        remediation=f"Check again later with: macrelease status {submission.version} --wait",
                        diagnostic=self.client.diagnostic_command(
                            "info", credential, submission.submission_id
                        ),
                    )
                if live is not None:
                    live.update(
                        f"Waiting for Apple... {submission.status.value} "
                        f"({int(elapsed // 60)}m {int(elapsed % 60)}s)"
                    )
                context.wait(min(interval, self.timeout - elapsed))
                interval = min(interval * BACKOFF_FACTOR, self.max_poll_interval)

        self.store.save(submission)
        return submission

    def fetch_log(self, submission: NotarizationSubmission, credential: Credential) -> Dict[str, Any]:
        """Separate authenticated call; the submit/info payloads carry no issue detail"""
        try:
            text = self.client.log(submission.submission_id, credential)
        except CommandError as e:
            raise SubmissionError(
                f"Could not fetch the notarization log: {e.output.strip() or e.message}",
                diagnostic=self.client.diagnostic_command("log", credential, submission.submission_id),
            ) from e
        self.store.save_log(submission.submission_id, text)
        try:
            log = json.loads(text)
        except json.JSONDecodeError:
            log = {"statusSummary": text.strip()}
        submission.error_log = log
        return log
