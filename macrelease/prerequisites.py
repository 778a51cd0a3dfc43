"""Pre-flight tool checks"""

import re
import shutil
from typing import Callable, List, Optional, Tuple

from .context import PipelineContext
from .errors import CommandError, PrerequisiteError
from .models import PrerequisiteResult

MIN_XCODE_VERSION = (13, 0)
MIN_NOTARYTOOL_VERSION = (1, 0)

BINARY_TOOLS = {
    "codesign": "macOS code signing tool",
    "ditto": "macOS archive utility",
    "hdiutil": "macOS disk image utility",
}


def parse_version(text: str) -> Optional[Tuple[int, ...]]:
    match = re.search(r"(\d+(?:\.\d+)+|\d+)", text or "")
    if not match:
        return None
    return tuple(int(part) for part in match.group(1).split("."))


def _meets(version: Optional[Tuple[int, ...]], minimum: Tuple[int, ...]) -> bool:
    if version is None:
        return False
    padded = version + (0,) * (len(minimum) - len(version))
    return padded >= minimum


class PrerequisiteChecker:
    def __init__(
        self,
        context: PipelineContext,
        publish: bool = False,
        dsa_signing: bool = False,
        which: Optional[Callable[[str], Optional[str]]] = None,
    ):
        self.context = context
        self.publish = publish
        self.dsa_signing = dsa_signing
        self.which = which or shutil.which

    def _probe(self, cmd: List[str]) -> Tuple[int, str]:
        try:
            result = self.context.runner.run(cmd, check=False, show_output=False)
        except CommandError as e:
            return e.returncode, e.output
        output = "\n".join(part for part in (result.stdout, result.stderr) if part)
        return result.returncode, output.strip()

    def check_xcodebuild(self) -> PrerequisiteResult:
        code, output = self._probe(["xcodebuild", "-version"])
        if code != 0:
            return PrerequisiteResult(
                "xcodebuild", False, detail="Xcode command line tools not installed"
            )
        first_line = output.splitlines()[0] if output else ""
        version = parse_version(first_line)
        if not _meets(version, MIN_XCODE_VERSION):
            return PrerequisiteResult(
                "xcodebuild",
                False,
                first_line,
                detail=f"Xcode {'.'.join(map(str, MIN_XCODE_VERSION))}+ required",
            )
        return PrerequisiteResult("xcodebuild", True, first_line)

    def check_notarytool(self) -> PrerequisiteResult:
        code, _ = self._probe(["xcrun", "--version"])
        if code != 0:
            return PrerequisiteResult("notarytool", False, detail="xcrun not found; install Xcode")

        code, output = self._probe(["xcrun", "notarytool", "--version"])
        if code == 0:
            version = parse_version(output)
            if not _meets(version, MIN_NOTARYTOOL_VERSION):
                return PrerequisiteResult(
                    "notarytool", False, output, detail="notarytool too old; update Xcode"
                )
            return PrerequisiteResult("notarytool", True, output)

        # Distinguish an old Xcode (legacy altool only) from a missing toolchain
        altool_code, altool_output = self._probe(["xcrun", "altool", "--version"])
        if altool_code == 0:
            return PrerequisiteResult(
                "notarytool",
                False,
                altool_output,
                detail="only legacy altool found; notarytool needs Xcode 13+",
            )
        return PrerequisiteResult("notarytool", False, detail="notarytool not found")

    def check_stapler(self) -> PrerequisiteResult:
        code, output = self._probe(["xcrun", "--find", "stapler"])
        if code != 0:
            return PrerequisiteResult("stapler", False, detail="xcrun stapler not found")
        return PrerequisiteResult("stapler", True, detail=output)

    def check_binary(self, tool: str, description: str, required: bool = True) -> PrerequisiteResult:
        path = self.which(tool)
        if path is None:
            return PrerequisiteResult(tool, False, required=required, detail=f"{description} not found")
        return PrerequisiteResult(tool, True, required=required, detail=path)

    def check(self) -> List[PrerequisiteResult]:
        results = [self.check_xcodebuild(), self.check_notarytool(), self.check_stapler()]
        for tool, description in BINARY_TOOLS.items():
            results.append(self.check_binary(tool, description))
        results.append(self.check_binary("git", "Git", required=self.publish))
        results.append(self.check_binary("gh", "GitHub CLI", required=self.publish))
        results.append(self.check_binary("openssl", "OpenSSL (DSA signing)", required=self.dsa_signing))

        self.context.reporter.checklist(
            "Prerequisites",
            [
                (r.available or not r.required, r.tool_name, r.version_string or r.detail)
                for r in results
            ],
        )

        missing = [r for r in results if r.required and not r.available]
        if missing:
            lines = "\n".join(f"  • {r.tool_name}: {r.detail or 'unavailable'}" for r in missing)
            raise PrerequisiteError(
                f"Missing required tools:\n{lines}",
                remediation="Install Xcode 13+ (xcode-select --install) and the listed tools, then retry",
            )
        return results
