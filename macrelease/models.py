"""Release pipeline data model"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import SubmissionStateError


class SourceTier(Enum):
    SECURE_STORE = "keychain"
    CONFIG_FILE = "local config file"
    ENVIRONMENT = "environment variables"
    INTERACTIVE_PROMPT = "interactive prompt"


@dataclass
class Credential:
    identity: str
    secret: str = field(repr=False)
    source_tier: SourceTier
    organization_id: Optional[str] = None
    # notarytool keychain profile; when set, the secret never goes on argv
    keychain_profile: Optional[str] = None

    def describe(self) -> str:
        """Loggable summary; never includes the secret"""
        team = f", team {self.organization_id}" if self.organization_id else ""
        return f"{self.identity} (from {self.source_tier.value}{team})"


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    identity: str
    organization_id: Optional[str] = None
    submission_count: int = 0
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class PrerequisiteResult:
    tool_name: str
    available: bool
    version_string: str = ""
    required: bool = True
    detail: str = ""


@dataclass
class BuildArtifact:
    bundle_path: Path
    version: str
    build_timestamp: datetime
    signing_identity_used: str
    archive_path: Optional[Path] = None
    log_path: Optional[Path] = None
    stapled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bundle_path": str(self.bundle_path),
            "version": self.version,
            "build_timestamp": self.build_timestamp.isoformat(),
            "signing_identity_used": self.signing_identity_used,
            "archive_path": str(self.archive_path) if self.archive_path else None,
            "log_path": str(self.log_path) if self.log_path else None,
            "stapled": self.stapled,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BuildArtifact":
        return cls(
            bundle_path=Path(data["bundle_path"]),
            version=data["version"],
            build_timestamp=datetime.fromisoformat(data["build_timestamp"]),
            signing_identity_used=data["signing_identity_used"],
            archive_path=Path(data["archive_path"]) if data.get("archive_path") else None,
            log_path=Path(data["log_path"]) if data.get("log_path") else None,
            stapled=bool(data.get("stapled", False)),
        )


class SubmissionStatus(Enum):
    SUBMITTED = "Submitted"
    IN_PROGRESS = "In Progress"
    ACCEPTED = "Accepted"
    INVALID = "Invalid"

    @property
    def is_terminal(self) -> bool:
        return self in (SubmissionStatus.ACCEPTED, SubmissionStatus.INVALID)

    @classmethod
    def from_remote(cls, value: str) -> "SubmissionStatus":
        """Map a notarytool status string"""
        normalized = (value or "").strip().lower()
        if normalized in ("in progress", "inprogress", "in_progress"):
            return cls.IN_PROGRESS
        if normalized == "accepted":
            return cls.ACCEPTED
        if normalized in ("invalid", "rejected"):
            return cls.INVALID
        if normalized == "submitted":
            return cls.SUBMITTED
        raise ValueError(f"Unknown notarization status: {value!r}")


_TRANSITIONS = {
    SubmissionStatus.SUBMITTED: {
        SubmissionStatus.IN_PROGRESS,
        SubmissionStatus.ACCEPTED,
        SubmissionStatus.INVALID,
    },
    SubmissionStatus.IN_PROGRESS: {SubmissionStatus.ACCEPTED, SubmissionStatus.INVALID},
    SubmissionStatus.ACCEPTED: set(),
    SubmissionStatus.INVALID: set(),
}


@dataclass
class NotarizationSubmission:
    submission_id: str
    version: str
    bundle_path: Path
    upload_path: Path
    status: SubmissionStatus = SubmissionStatus.SUBMITTED
    raw_response_payload: Dict[str, Any] = field(default_factory=dict)
    error_log: Optional[Dict[str, Any]] = None
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def transition(self, status: SubmissionStatus) -> bool:
        """Move to a new status; returns True when the status changed"""
        if status == self.status:
            return False
        if status not in _TRANSITIONS[self.status]:
            raise SubmissionStateError(
                f"Submission {self.submission_id} cannot move from "
                f"{self.status.value} to {status.value}"
            )
        self.status = status
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "submission_id": self.submission_id,
            "version": self.version,
            "bundle_path": str(self.bundle_path),
            "upload_path": str(self.upload_path),
            "status": self.status.value,
            "raw_response_payload": self.raw_response_payload,
            "submitted_at": self.submitted_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NotarizationSubmission":
        return cls(
            submission_id=data["submission_id"],
            version=data["version"],
            bundle_path=Path(data["bundle_path"]),
            upload_path=Path(data["upload_path"]),
            status=SubmissionStatus(data["status"]),
            raw_response_payload=data.get("raw_response_payload") or {},
            submitted_at=datetime.fromisoformat(data["submitted_at"]),
        )


@dataclass(frozen=True)
class StapleResult:
    success: bool
    attempts: int = 1
    output: str = ""

    @property
    def deferred(self) -> bool:
        return not self.success


@dataclass(frozen=True)
class PackageResult:
    zip_path: Path
    disk_image_path: Path
    zip_checksum: str
    disk_image_checksum: str
    reused: bool = False


@dataclass(frozen=True)
class AppcastEntry:
    version: str
    download_url: str
    file_size_bytes: int
    checksum: str
    release_notes_html: str
    publication_date: datetime
    short_version: Optional[str] = None
    minimum_system_version: Optional[str] = None
    signature: Optional[str] = None
    signature_scheme: Optional[str] = None
