"""Unit tests for pre-flight tool checks."""

import pytest

from macrelease.errors import PrerequisiteError
from macrelease.prerequisites import PrerequisiteChecker, parse_version


def everything_installed(tool):
    return f"/usr/bin/{tool}"


def stock_toolchain(runner, xcode="Xcode 15.2\nBuild version 15C500b", notarytool="1.1.0 (32)"):
    runner.on("xcodebuild", "-version", stdout=xcode)
    runner.on("xcrun", "--version", stdout="xcrun version 64.")
    runner.on("xcrun", "notarytool", "--version", stdout=notarytool)
    runner.on("xcrun", "--find", "stapler", stdout="/usr/bin/stapler")


class TestParseVersion:
    def test_parses_dotted(self):
        assert parse_version("Xcode 15.2") == (15, 2)
        assert parse_version("1.1.0 (32)") == (1, 1, 0)

    def test_nothing_to_parse(self):
        assert parse_version("unknown") is None


class TestChecker:
    def test_all_present(self, context, runner):
        stock_toolchain(runner)
        results = PrerequisiteChecker(context, which=everything_installed).check()
        assert all(r.available for r in results if r.required)

    def test_missing_tool_named(self, context, runner):
        stock_toolchain(runner)

        def no_hdiutil(tool):
            return None if tool == "hdiutil" else f"/usr/bin/{tool}"

        with pytest.raises(PrerequisiteError) as excinfo:
            PrerequisiteChecker(context, which=no_hdiutil).check()
        assert "hdiutil" in excinfo.value.message
        assert excinfo.value.exit_code == 2

    def test_old_xcode_is_outdated_not_missing(self, context, runner):
        stock_toolchain(runner, xcode="Xcode 12.5\nBuild version 12E262")
        result = PrerequisiteChecker(context, which=everything_installed).check_xcodebuild()
        assert not result.available
        assert result.version_string == "Xcode 12.5"
        assert "13.0+" in result.detail

    def test_xcode_missing(self, context, runner):
        runner.on("xcodebuild", "-version", returncode=1, stderr="xcode-select: error")
        result = PrerequisiteChecker(context).check_xcodebuild()
        assert not result.available
        assert result.version_string == ""

    def test_altool_only_reported_as_too_old(self, context, runner):
        stock_toolchain(runner)
        runner.on("xcrun", "notarytool", "--version", returncode=72, stderr="unable to find utility")
        runner.on("xcrun", "altool", "--version", stdout="altool v4.060.1222")
        result = PrerequisiteChecker(context).check_notarytool()
        assert not result.available
        assert "altool" in result.detail

    def test_xcrun_missing(self, context, runner):
        runner.on("xcrun", returncode=127, stderr="not found")
        result = PrerequisiteChecker(context).check_notarytool()
        assert "xcrun not found" in result.detail

    def test_publishing_requires_git_and_gh(self, context, runner):
        stock_toolchain(runner)

        def no_gh(tool):
            return None if tool == "gh" else f"/usr/bin/{tool}"

        PrerequisiteChecker(context, publish=False, which=no_gh).check()
        with pytest.raises(PrerequisiteError, match="gh"):
            PrerequisiteChecker(context, publish=True, which=no_gh).check()

    def test_openssl_only_needed_for_dsa(self, context, runner):
        stock_toolchain(runner)

        def no_openssl(tool):
            return None if tool == "openssl" else f"/usr/bin/{tool}"

        PrerequisiteChecker(context, which=no_openssl).check()
        with pytest.raises(PrerequisiteError, match="openssl"):
            PrerequisiteChecker(context, dsa_signing=True, which=no_openssl).check()
