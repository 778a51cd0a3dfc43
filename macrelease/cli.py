"""Command line entry point"""

import argparse
import sys
import traceback
from pathlib import Path
from typing import List, Optional

from rich.console import Console  # type: ignore[import]
from rich.markup import escape  # type: ignore[import]
from rich.panel import Panel  # type: ignore[import]

from . import __version__
from .appcast import AppcastGenerator
from .config import detect_version, load_config, validate_version
from .console import Reporter
from .context import PipelineContext
from .credentials import CredentialResolver, setup_keychain
from .errors import ConfigError, ReleaseError
from .notarize import describe_issues
from .package import ArtifactPackager
from .pipeline import ReleaseOptions, ReleasePipeline
from .process import CommandRunner
from .signing import SigningKey
from .staple import Stapler


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        prog="macrelease",
        description="Build, notarize, package and publish a macOS app release",
        epilog="""
Environment Variables:
    APPLE_ID: Apple ID used for notarization (with APP_SPECIFIC_PASSWORD)
    APP_SPECIFIC_PASSWORD: App-specific password for APPLE_ID
    APPLE_TEAM_ID: Team ID, required when the Apple ID belongs to several teams
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config", type=Path, help="Path to configuration file (default: release.yaml)"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Show detailed command output"
    )
    parser.add_argument(
        "--quiet", "-q", action="store_true", help="Only show warnings, errors and the final result"
    )
    parser.add_argument(
        "--debug", action="store_true", help="Show full stack traces on errors"
    )
    parser.add_argument(
        "--non-interactive",
        action="store_true",
        help="Never prompt for the app-specific password",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    release = subparsers.add_parser("release", help="Run the full release pipeline")
    release.add_argument("release_version", nargs="?", help="Version to release (default: detected)")
    release.add_argument(
        "--resume", action="store_true", help="Skip stages already completed for this version"
    )
    release.add_argument(
        "--force", action="store_true", help="Rebuild packages even if they already exist"
    )
    release.add_argument("--signing-key", type=Path, help="Sparkle EdDSA or DSA private key")
    release.add_argument("--notes", type=Path, help="Release notes (Markdown or HTML)")
    release.add_argument(
        "--skip-appcast", action="store_true", help="Skip the appcast update"
    )
    release.add_argument(
        "--skip-publish", action="store_true", help="Skip git push, GitHub release and Homebrew"
    )

    subparsers.add_parser("check", help="Check tools and credentials without building")

    staple = subparsers.add_parser("staple", help="Staple the notarization ticket to a bundle")
    staple.add_argument("path", type=Path, help="App bundle or disk image to staple")

    status = subparsers.add_parser("status", help="Show the recorded notarization submission")
    status.add_argument("release_version", help="Version whose submission to inspect")
    status.add_argument("--wait", action="store_true", help="Keep polling until a verdict")
    status.add_argument("--log", action="store_true", help="Fetch and print the notarization log")

    appcast = subparsers.add_parser("appcast", help="Add or replace an appcast entry")
    appcast.add_argument("release_version", help="Version of the entry")
    appcast.add_argument(
        "file", type=Path, nargs="?", help="Release artifact (default: the version's disk image)"
    )
    appcast.add_argument("--signing-key", type=Path, help="Sparkle EdDSA or DSA private key")
    appcast.add_argument("--notes", type=Path, help="Release notes (Markdown or HTML)")

    keychain = subparsers.add_parser(
        "setup-keychain", help="Store notarization credentials in the login keychain"
    )
    keychain.add_argument("--apple-id", required=True, help="Apple ID email")
    keychain.add_argument("--team-id", help="Developer team ID")

    return parser.parse_args(argv)


def resolve_version(args: argparse.Namespace, config) -> str:
    version = getattr(args, "release_version", None) or detect_version(config)
    if not validate_version(version):
        raise ConfigError(
            f"Invalid version format: {version}",
            remediation="Use a dotted numeric version such as 1.2 or 1.2.3",
        )
    return version


def build_context(args: argparse.Namespace, reporter: Reporter) -> PipelineContext:
    config = load_config(args.config)
    # check, staple and setup-keychain are not tied to a version
    version = "current"
    if args.command in ("release", "status", "appcast"):
        version = resolve_version(args, config)
    context = PipelineContext(
        config=config,
        version=version,
        reporter=reporter,
        runner=CommandRunner(reporter),
        force=getattr(args, "force", False),
    )
    if args.non_interactive:
        context.interactive = False
    return context


def run_release(args: argparse.Namespace, context: PipelineContext) -> int:
    if not context.reporter.quiet:
        context.reporter.console.print(
            Panel.fit(
                f"[bold cyan]{context.app_name} Release Automation[/bold cyan]\n"
                f"Building and publishing version {context.version}",
                border_style="cyan",
            )
        )
    options = ReleaseOptions(
        resume=args.resume,
        publish=not args.skip_publish,
        appcast=not args.skip_appcast,
        signing_key=args.signing_key,
        notes=args.notes,
    )
    ReleasePipeline(context, options).run()
    return 0


def run_check(args: argparse.Namespace, context: PipelineContext) -> int:
    result = ReleasePipeline(context, ReleaseOptions(publish=False)).check()
    context.reporter.success(
        f"Ready to release: {result.identity} ({result.submission_count} past submissions)"
    )
    return 0


def run_staple(args: argparse.Namespace, context: PipelineContext) -> int:
    if not args.path.exists():
        raise ConfigError(f"Path not found: {args.path}", stage="staple")
    result = Stapler(context).staple_path(args.path)
    if result.success:
        context.reporter.success(f"Stapled ticket to {args.path.name}")
        return 0
    context.reporter.error(f"Stapling failed after {result.attempts} attempts")
    if result.output:
        context.reporter.console.print(result.output, markup=False)
    return 1


def run_status(args: argparse.Namespace, context: PipelineContext) -> int:
    pipeline = ReleasePipeline(context)
    submission = pipeline.status(wait=args.wait)
    if submission is None:
        return 1
    if args.log:
        credential = CredentialResolver(context).resolve()
        context.use_credential(credential)
        log = pipeline.submitter.fetch_log(submission, credential)
        for line in describe_issues(log) or ["No issues reported"]:
            context.reporter.console.print(line, markup=False)
    return 0


def run_appcast(args: argparse.Namespace, context: PipelineContext) -> int:
    artifact = args.file
    if artifact is None:
        _, artifact = ArtifactPackager(context).paths(context.version)
    key_path = args.signing_key or context.config.get("sparkle_private_key")
    signing_key = SigningKey.load(Path(key_path)) if key_path else None

    generator = AppcastGenerator(context)
    feed = generator.load_feed()
    entry = generator.generate(
        context.version, artifact, signing_key=signing_key, notes_path=args.notes, feed=feed
    )
    generator.write_entry(entry, feed)
    return 0


def run_setup_keychain(args: argparse.Namespace, context: PipelineContext) -> int:
    setup_keychain(context, args.apple_id, args.team_id)
    return 0


COMMANDS = {
    "release": run_release,
    "check": run_check,
    "staple": run_staple,
    "status": run_status,
    "appcast": run_appcast,
    "setup-keychain": run_setup_keychain,
}


def show_error(reporter: Reporter, error: ReleaseError) -> None:
    if reporter.quiet:
        reporter.error(f"{error.stage}: {escape(error.message)}")
        return
    body = [
        f"[bold red]Release Failed[/bold red] [dim]({error.stage})[/dim]",
        "",
        escape(error.message),
    ]
    if error.remediation:
        body += ["", f"[bold]Next step:[/bold] {escape(error.remediation)}"]
    if error.diagnostic:
        body += ["", f"[bold]Diagnose with:[/bold] {escape(error.diagnostic)}"]
    reporter.panel("\n".join(body), title="Error", style="red")


def main(argv: Optional[List[str]] = None, console: Optional[Console] = None) -> int:
    """Main entry point"""
    args = parse_arguments(argv)
    reporter = Reporter(console=console, verbose=args.verbose, quiet=args.quiet, debug=args.debug)
    context = None

    try:
        context = build_context(args, reporter)
        return COMMANDS[args.command](args, context)
    except ReleaseError as e:
        if context is not None:
            e.message = context.runner.redact(e.message)
        show_error(reporter, e)
        if args.debug:
            traceback.print_exc()
        return e.exit_code
    except KeyboardInterrupt:
        if context is not None:
            context.cancel.set()
        reporter.warning("Release cancelled by user")
        return 1
    except Exception as e:
        reporter.error(f"Unexpected error: {e}")
        if args.debug:
            traceback.print_exc()
        else:
            reporter.console.print("\nRun with --debug flag for full stack trace")
        return 1


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
