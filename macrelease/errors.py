"""Error taxonomy for the release pipeline.

Every error names the stage it came from and the command the operator should
run next. The CLI turns these into a panel and a process exit code.
"""

from typing import Optional


class ReleaseError(Exception):
    """Base exception for release pipeline errors"""

    exit_code = 1
    default_stage = "release"

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        remediation: Optional[str] = None,
        diagnostic: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.stage = stage or self.default_stage
        self.remediation = remediation
        self.diagnostic = diagnostic


class ConfigError(ReleaseError):
    default_stage = "configuration"


class CommandError(ReleaseError):
    """A subprocess exited non-zero"""

    def __init__(
        self,
        message: str,
        returncode: int = 1,
        stdout: str = "",
        stderr: str = "",
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.returncode = returncode
        self.stdout = stdout or ""
        self.stderr = stderr or ""

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class PrerequisiteError(ReleaseError):
    exit_code = 2
    default_stage = "prerequisites"


class MissingCredentialError(ReleaseError):
    exit_code = 3
    default_stage = "credentials"


class InvalidCredentialError(ReleaseError):
    exit_code = 3
    default_stage = "credentials"


class AmbiguousOrganizationError(ReleaseError):
    """The account belongs to several teams and no team id was supplied"""

    exit_code = 3
    default_stage = "credentials"

    def __init__(self, remote_message: str, **kwargs):
        super().__init__(remote_message, **kwargs)
        self.remote_message = remote_message


class ConcurrentReleaseError(ReleaseError):
    exit_code = 4
    default_stage = "lock"


class BuildError(ReleaseError):
    exit_code = 5
    default_stage = "build"

    def __init__(self, message: str, log_path=None, log_tail: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.log_path = log_path
        self.log_tail = log_tail


class SubmissionError(ReleaseError):
    """Transport-level notarization failure; re-running the stage is safe"""

    exit_code = 6
    default_stage = "notarize"


class NotarizationTimeoutError(SubmissionError):
    pass


class PollCancelledError(SubmissionError):
    pass


class SubmissionStateError(ValueError):
    """Illegal status transition on a notarization submission"""


class NotarizationRejectedError(ReleaseError):
    exit_code = 7
    default_stage = "notarize"

    def __init__(self, message: str, submission=None, **kwargs):
        super().__init__(message, **kwargs)
        self.submission = submission


class PublishError(ReleaseError):
    exit_code = 8
    default_stage = "publish"

    def __init__(self, message: str, pushed: bool = False, **kwargs):
        super().__init__(message, **kwargs)
        self.pushed = pushed
