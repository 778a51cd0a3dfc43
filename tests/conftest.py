"""Shared fixtures: a scripted command runner and a throwaway project"""

import io
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
import yaml
from rich.console import Console

from macrelease.config import load_config
from macrelease.console import Reporter
from macrelease.context import PipelineContext
from macrelease.errors import CommandError
from macrelease.models import BuildArtifact, Credential, SourceTier
from macrelease.process import CommandRunner

SECRET = "abcd-efgh-ijkl-mnop"
SIGNING_IDENTITY = "Developer ID Application: Acme Inc (TEAM123456)"


@dataclass
class Reply:
    stdout: Any = ""
    stderr: str = ""
    returncode: int = 0
    effect: Optional[Callable[[List[str]], None]] = None


@dataclass
class Call:
    cmd: List[str]
    kwargs: Dict[str, Any] = field(default_factory=dict)


class FakeRunner(CommandRunner):
    """Answers commands from a script keyed by command prefix

    Later registrations win. A prefix registered with several replies hands
    them out in order and then keeps repeating the last one.
    """

    def __init__(self, reporter: Reporter):
        super().__init__(reporter)
        self.calls: List[Call] = []
        self._script: List[Tuple[Tuple[str, ...], List[Reply]]] = []

    def on(self, *prefix: str, replies: Optional[List[Reply]] = None, **reply: Any) -> None:
        self._script.append((tuple(prefix), list(replies) if replies else [Reply(**reply)]))

    def calls_to(self, *prefix: str) -> List[Call]:
        return [call for call in self.calls if tuple(call.cmd[: len(prefix)]) == prefix]

    def _reply(self, cmd: List[str]) -> Reply:
        for prefix, replies in reversed(self._script):
            if tuple(cmd[: len(prefix)]) == prefix:
                return replies.pop(0) if len(replies) > 1 else replies[0]
        return Reply()

    def run(self, cmd, check=True, log_path=None, **kwargs):
        cmd = [str(part) for part in cmd]
        self.calls.append(Call(cmd, kwargs))
        reply = self._reply(cmd)
        if reply.effect is not None:
            reply.effect(cmd)
        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(log_path, "a") as f:
                f.write(reply.stdout or "")
        if check and reply.returncode != 0:
            raise CommandError(
                f"Command failed: {self.describe(cmd)}",
                returncode=reply.returncode,
                stdout=self._decode(reply.stdout),
                stderr=self._decode(reply.stderr),
            )
        return subprocess.CompletedProcess(cmd, reply.returncode, reply.stdout, reply.stderr)


class FakeClock:
    """Monotonic clock that only moves when something sleeps"""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def touch_last_arg(cmd: List[str]) -> None:
    """Effect for tools whose last argument is the file they create"""
    path = Path(cmd[-1])
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(f"contents of {path.name}".encode())


def make_export_effect(app_name: str = "Demo") -> Callable[[List[str]], None]:
    def effect(cmd: List[str]) -> None:
        export_dir = Path(cmd[cmd.index("-exportPath") + 1])
        app = export_dir / f"{app_name}.app" / "Contents"
        app.mkdir(parents=True, exist_ok=True)
        (app / "Info.plist").write_text("<plist/>")

    return effect


def make_archive_effect(cmd: List[str]) -> None:
    Path(cmd[cmd.index("-archivePath") + 1]).mkdir(parents=True, exist_ok=True)


def console_output(reporter: Reporter) -> str:
    return reporter.console.file.getvalue()


@pytest.fixture
def project_dir(tmp_path) -> Path:
    return tmp_path / "project"


@pytest.fixture
def config_data() -> Dict[str, Any]:
    return {
        "app_name": "Demo",
        "scheme": "Demo",
        "xcode_project": "Demo.xcodeproj",
        "team_id": "TEAM123456",
        "github_owner": "acme",
        "github_repo": "demo",
        "signing_identity": SIGNING_IDENTITY,
        "staple_retry_delay": 5,
        "notarization": {"poll_interval": 30, "max_poll_interval": 120, "timeout": 600},
    }


@pytest.fixture
def config_path(project_dir, config_data) -> Path:
    project_dir.mkdir(parents=True, exist_ok=True)
    path = project_dir / "release.yaml"
    path.write_text(yaml.safe_dump(config_data))
    return path


@pytest.fixture
def config(config_path):
    return load_config(config_path)


@pytest.fixture
def reporter() -> Reporter:
    return Reporter(console=Console(file=io.StringIO(), width=200, color_system=None, soft_wrap=True))


@pytest.fixture
def runner(reporter) -> FakeRunner:
    runner = FakeRunner(reporter)
    # Empty keychain unless a test says otherwise
    runner.on("security", "find-internet-password", returncode=44, stderr="item not found")
    return runner


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def context(config, reporter, runner, clock) -> PipelineContext:
    return PipelineContext(
        config=config,
        version="1.2.0",
        reporter=reporter,
        runner=runner,
        environ={},
        interactive=False,
        sleep=clock.sleep,
        clock=clock,
    )


@pytest.fixture
def credential() -> Credential:
    return Credential("dev@example.com", SECRET, SourceTier.ENVIRONMENT, organization_id="TEAM123456")


@pytest.fixture
def artifact(context) -> BuildArtifact:
    bundle = context.archive_dir / "export" / "Demo.app"
    (bundle / "Contents").mkdir(parents=True)
    (bundle / "Contents" / "Info.plist").write_text("<plist/>")
    return BuildArtifact(
        bundle_path=bundle,
        version="1.2.0",
        build_timestamp=datetime.now(timezone.utc),
        signing_identity_used=SIGNING_IDENTITY,
    )
