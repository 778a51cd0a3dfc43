"""CLI wiring: argument parsing, error panels and exit codes."""

import io
import json

import pytest
import yaml
from rich.console import Console

from conftest import SECRET

from macrelease import cli
from macrelease.lock import ReleaseLock
from macrelease.models import NotarizationSubmission, SubmissionStatus
from macrelease.notarize import SubmissionStore


@pytest.fixture
def console():
    return Console(file=io.StringIO(), width=200, color_system=None, soft_wrap=True)


@pytest.fixture
def use_runner(monkeypatch, runner):
    """Route every command the CLI runs through the scripted runner"""
    monkeypatch.setattr(cli, "CommandRunner", lambda reporter: runner)
    for name in ("APPLE_ID", "APP_SPECIFIC_PASSWORD", "APPLE_TEAM_ID"):
        monkeypatch.delenv(name, raising=False)
    return runner


def run_cli(console, *argv):
    return cli.main(list(argv), console=console)


class TestExitCodes:
    def test_missing_config(self, tmp_path, console):
        assert run_cli(console, "--config", str(tmp_path / "nope.yaml"), "check") == 1
        assert "Configuration file not found" in console.file.getvalue()

    def test_invalid_version(self, config_path, console, use_runner):
        assert run_cli(console, "--config", str(config_path), "release", "v1") == 1
        assert "Invalid version format" in console.file.getvalue()

    def test_prerequisite_failure(self, config_path, console, use_runner):
        use_runner.on("xcodebuild", "-version", returncode=1, stderr="no xcode")
        code = run_cli(console, "--config", str(config_path), "--non-interactive", "check")
        assert code == 2
        assert "prerequisites" in console.file.getvalue()

    def test_missing_credentials(self, config_path, console, use_runner, monkeypatch):
        monkeypatch.setattr("macrelease.prerequisites.shutil.which", lambda tool: f"/usr/bin/{tool}")
        use_runner.on("xcodebuild", "-version", stdout="Xcode 15.2")
        use_runner.on("xcrun", "notarytool", "--version", stdout="1.1.0")
        code = run_cli(console, "--config", str(config_path), "--non-interactive", "check")
        assert code == 3
        assert "setup-keychain" in console.file.getvalue()

    def test_concurrent_release(self, config_path, console, use_runner):
        holder = ReleaseLock(config_path.parent / "archive", "1.2.0")
        holder.acquire()
        try:
            code = run_cli(console, "--config", str(config_path), "release", "1.2.0")
        finally:
            holder.release()
        assert code == 4
        assert use_runner.calls == []


class TestStatus:
    def record(self, config_path, status):
        submission = NotarizationSubmission(
            submission_id="abc-123",
            version="1.2.0",
            bundle_path=config_path.parent / "Demo.app",
            upload_path=config_path.parent / "Demo.zip",
            status=status,
        )
        SubmissionStore(config_path.parent / "archive" / "1.2.0").save(submission)

    def test_nothing_recorded(self, config_path, console, use_runner):
        assert run_cli(console, "--config", str(config_path), "status", "1.2.0") == 1

    def test_shows_recorded_status(self, config_path, console, use_runner):
        self.record(config_path, SubmissionStatus.IN_PROGRESS)
        assert run_cli(console, "--config", str(config_path), "status", "1.2.0") == 0
        assert "abc-123: In Progress" in console.file.getvalue()
        assert use_runner.calls == []

    def test_wait_for_rejection(self, config_path, console, use_runner, monkeypatch):
        self.record(config_path, SubmissionStatus.IN_PROGRESS)
        monkeypatch.setenv("APPLE_ID", "dev@example.com")
        monkeypatch.setenv("APP_SPECIFIC_PASSWORD", SECRET)
        use_runner.on("xcrun", "notarytool", "info", stdout=json.dumps({"status": "Invalid"}))
        use_runner.on("xcrun", "notarytool", "log", stdout=json.dumps({"issues": []}))

        code = run_cli(console, "--config", str(config_path), "status", "1.2.0", "--wait")

        assert code == 7
        assert SECRET not in console.file.getvalue()


class TestOtherCommands:
    def test_staple_deferred_exit_code(self, config_path, config_data, console, use_runner, tmp_path):
        config_data["staple_retry_delay"] = 0
        config_path.write_text(yaml.safe_dump(config_data))
        bundle = tmp_path / "Demo.app"
        bundle.mkdir()
        use_runner.on("xcrun", "stapler", returncode=65, stderr="Record not found")
        assert run_cli(console, "--config", str(config_path), "staple", str(bundle)) == 1
        assert "Record not found" in console.file.getvalue()

    def test_staple_success(self, config_path, console, use_runner, tmp_path):
        bundle = tmp_path / "Demo.app"
        bundle.mkdir()
        assert run_cli(console, "--config", str(config_path), "staple", str(bundle)) == 0

    def test_appcast_for_existing_dmg(self, config_path, console, use_runner):
        releases = config_path.parent / "releases"
        releases.mkdir()
        (releases / "Demo-1.2.0.dmg").write_bytes(b"payload")
        assert run_cli(console, "--config", str(config_path), "appcast", "1.2.0") == 0
        assert "1.2.0" in (config_path.parent / "appcast.xml").read_text()

    def test_appcast_default_path_keeps_patch_version(self, config_path, console, use_runner):
        releases = config_path.parent / "releases"
        releases.mkdir()
        (releases / "Demo-1.2.3.dmg").write_bytes(b"payload")
        assert run_cli(console, "--config", str(config_path), "appcast", "1.2.3") == 0
        assert "Demo-1.2.3.dmg" in (config_path.parent / "appcast.xml").read_text()

    def test_setup_keychain(self, config_path, console, use_runner):
        code = run_cli(
            console, "--config", str(config_path), "setup-keychain", "--apple-id", "dev@example.com"
        )
        assert code == 0
        assert len(use_runner.calls_to("security", "add-internet-password")) == 2

    def test_quiet_hides_progress(self, config_path, console, use_runner):
        releases = config_path.parent / "releases"
        releases.mkdir()
        (releases / "Demo-1.2.0.dmg").write_bytes(b"payload")
        run_cli(console, "--quiet", "--config", str(config_path), "appcast", "1.2.0")
        output = console.file.getvalue()
        assert "Added v1.2.0" not in output
        # Unsigned-feed warning survives --quiet
        assert "not be signed" in output
