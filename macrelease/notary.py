"""Thin client for Apple's notary service via ``xcrun notarytool``"""

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import CommandError
from .models import Credential
from .process import CommandRunner

NOTARYTOOL = ["xcrun", "notarytool"]

PASSWORD_PLACEHOLDER = "<app-specific-password>"

# notarytool / altool wording for accounts attached to several teams
_AMBIGUOUS_TEAM_PATTERNS = [
    re.compile(r"multiple\s+(teams|providers)", re.IGNORECASE),
    re.compile(r"attached to other .*providers", re.IGNORECASE),
    re.compile(r"specify (a|the|which) (team|provider)", re.IGNORECASE),
]


def is_ambiguous_team_response(output: str) -> bool:
    return any(pattern.search(output) for pattern in _AMBIGUOUS_TEAM_PATTERNS)


class NotaryClient:
    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def auth_args(self, credential: Credential) -> List[str]:
        if credential.keychain_profile:
            return ["--keychain-profile", credential.keychain_profile]
        args = ["--apple-id", credential.identity, "--password", credential.secret]
        if credential.organization_id:
            args += ["--team-id", credential.organization_id]
        return args

    def diagnostic_command(
        self, action: str, credential: Credential, submission_id: Optional[str] = None
    ) -> str:
        """A copy-pasteable command for the operator, password masked"""
        parts = ["xcrun", "notarytool", action]
        if submission_id:
            parts.append(f'"{submission_id}"')
        if credential.keychain_profile:
            parts += ["--keychain-profile", f'"{credential.keychain_profile}"']
            return " ".join(parts)
        parts += ["--apple-id", f'"{credential.identity}"', "--password", f'"{PASSWORD_PLACEHOLDER}"']
        if credential.organization_id:
            parts += ["--team-id", f'"{credential.organization_id}"']
        return " ".join(parts)

    def _json(self, cmd: List[str], check: bool = True) -> Dict[str, Any]:
        result = self.runner.run(cmd, check=check)
        try:
            return json.loads(result.stdout or "{}")
        except json.JSONDecodeError as e:
            raise CommandError(
                f"Unexpected notarytool output: {self.runner.redact(result.stdout or '')[:200]}",
                returncode=result.returncode,
                stdout=result.stdout or "",
                stderr=result.stderr or "",
            ) from e

    def version(self) -> str:
        result = self.runner.run(NOTARYTOOL + ["--version"], check=False)
        if result.returncode != 0:
            raise CommandError(
                "notarytool is not available",
                returncode=result.returncode,
                stdout=result.stdout or "",
                stderr=result.stderr or "",
            )
        return (result.stdout or "").strip()

    def history(self, credential: Credential) -> Dict[str, Any]:
        """Read-only listing of past submissions"""
        return self._json(
            NOTARYTOOL + ["history"] + self.auth_args(credential) + ["--output-format", "json"]
        )

    def submit(self, upload_path: Path, credential: Credential) -> Dict[str, Any]:
        return self._json(
            NOTARYTOOL
            + ["submit", str(upload_path)]
            + self.auth_args(credential)
            + ["--output-format", "json"]
        )

    def info(self, submission_id: str, credential: Credential) -> Dict[str, Any]:
        return self._json(
            NOTARYTOOL
            + ["info", submission_id]
            + self.auth_args(credential)
            + ["--output-format", "json"]
        )

    def log(self, submission_id: str, credential: Credential) -> str:
        result = self.runner.run(
            NOTARYTOOL + ["log", submission_id] + self.auth_args(credential)
        )
        return result.stdout or ""
