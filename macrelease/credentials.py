"""Developer credential resolution and live validation

Credentials come from a prioritized chain of sources. The first source that
yields a complete identity + secret pair wins; pieces from different sources
are never merged, with one exception: the interactive prompt asks for the
secret of an identity already named in the local config file or environment.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import yaml  # type: ignore[import]
from rich.prompt import Prompt  # type: ignore[import]

from .context import PipelineContext
from .errors import (
    AmbiguousOrganizationError,
    CommandError,
    ConfigError,
    InvalidCredentialError,
    MissingCredentialError,
)
from .models import Credential, SourceTier, ValidationResult
from .notary import NotaryClient, is_ambiguous_team_response

IDENTITY_ACCOUNT = "identity"
SECRET_ACCOUNT = "secret"
TEAM_ACCOUNT = "team-id"

ENV_IDENTITY = "APPLE_ID"
ENV_SECRET = "APP_SPECIFIC_PASSWORD"
ENV_TEAM = "APPLE_TEAM_ID"

# Keys that must never appear in the untracked local config file
FORBIDDEN_LOCAL_KEYS = ("password", "app_specific_password", "secret", "apple_password")


@dataclass
class ResolutionHints:
    """Partial findings collected while walking the chain"""

    identities: Dict[SourceTier, str] = field(default_factory=dict)
    teams: Dict[SourceTier, str] = field(default_factory=dict)
    secret_tiers: List[SourceTier] = field(default_factory=list)

    def prompt_identity(self) -> Optional[SourceTier]:
        for tier in (SourceTier.CONFIG_FILE, SourceTier.ENVIRONMENT):
            if tier in self.identities:
                return tier
        return None


class CredentialSource:
    """One tier of the credential chain"""

    tier: SourceTier

    def load(self, context: PipelineContext, hints: ResolutionHints) -> Optional[Credential]:
        raise NotImplementedError


class KeychainSource(CredentialSource):
    tier = SourceTier.SECURE_STORE

    def _read(self, context: PipelineContext, account: str) -> Optional[str]:
        result = context.runner.run(
            [
                "security",
                "find-internet-password",
                "-s",
                context.config["keychain_service"],
                "-a",
                account,
                "-w",
            ],
            check=False,
            show_output=False,
        )
        if result.returncode != 0:
            return None
        value = (result.stdout or "").strip()
        return value or None

    def load(self, context: PipelineContext, hints: ResolutionHints) -> Optional[Credential]:
        identity = self._read(context, IDENTITY_ACCOUNT)
        if not identity:
            return None
        # Registered before anything else can echo it
        secret = self._read(context, SECRET_ACCOUNT)
        context.runner.register_secret(secret)
        if not secret:
            context.reporter.detail(f"Keychain has identity {identity} but no secret")
            return None
        team = self._read(context, TEAM_ACCOUNT) or context.config.get("team_id")
        return Credential(
            identity,
            secret,
            self.tier,
            organization_id=team,
            keychain_profile=context.config.get("notary_profile"),
        )


class LocalConfigSource(CredentialSource):
    """Untracked YAML file naming the identity; secrets are refused here"""

    tier = SourceTier.CONFIG_FILE

    def path(self, context: PipelineContext) -> Path:
        return context.config.resolve_path("local_config")

    def load(self, context: PipelineContext, hints: ResolutionHints) -> Optional[Credential]:
        path = self.path(context)
        if not path.exists():
            return None
        try:
            data = yaml.safe_load(path.read_text()) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse {path}: {e}") from e

        forbidden = [key for key in FORBIDDEN_LOCAL_KEYS if key in data]
        if forbidden:
            raise ConfigError(
                f"{path} contains secret fields ({', '.join(forbidden)}); secrets are not allowed in config files",
                remediation="Remove them and store the secret with: macrelease setup-keychain",
            )

        if data.get("apple_id"):
            hints.identities[self.tier] = str(data["apple_id"])
        if data.get("team_id"):
            hints.teams[self.tier] = str(data["team_id"])
        # Identity only; never a complete pair on its own
        return None


class EnvironmentSource(CredentialSource):
    """For unattended runs: both identity and secret must come from the environment"""

    tier = SourceTier.ENVIRONMENT

    def load(self, context: PipelineContext, hints: ResolutionHints) -> Optional[Credential]:
        identity = context.environ.get(ENV_IDENTITY)
        secret = context.environ.get(ENV_SECRET)
        team = context.environ.get(ENV_TEAM)
        if identity:
            hints.identities[self.tier] = identity
        if team:
            hints.teams[self.tier] = team
        if secret:
            context.runner.register_secret(secret)
            hints.secret_tiers.append(self.tier)
        if identity and secret:
            return Credential(
                identity, secret, self.tier, organization_id=team or context.config.get("team_id")
            )
        return None


class InteractivePromptSource(CredentialSource):
    tier = SourceTier.INTERACTIVE_PROMPT

    def load(self, context: PipelineContext, hints: ResolutionHints) -> Optional[Credential]:
        if not context.interactive:
            return None
        identity_tier = hints.prompt_identity()
        if identity_tier is None:
            return None
        identity = hints.identities[identity_tier]
        secret = Prompt.ask(
            f"App-specific password for [bold]{identity}[/bold]",
            password=True,
            console=context.reporter.console,
        ).strip()
        if not secret:
            return None
        context.runner.register_secret(secret)
        team = hints.teams.get(identity_tier) or context.config.get("team_id")
        return Credential(identity, secret, self.tier, organization_id=team)


def default_sources() -> List[CredentialSource]:
    return [KeychainSource(), LocalConfigSource(), EnvironmentSource(), InteractivePromptSource()]


class CredentialResolver:
    def __init__(self, context: PipelineContext, sources: Optional[List[CredentialSource]] = None):
        self.context = context
        self.sources = sources if sources is not None else default_sources()
        self.client = NotaryClient(context.runner)

    def resolve(self) -> Credential:
        hints = ResolutionHints()
        for source in self.sources:
            credential = source.load(self.context, hints)
            if credential is not None:
                self.context.reporter.detail(f"Credentials resolved from {source.tier.value}")
                return credential
        raise self._missing(hints)

    def _missing(self, hints: ResolutionHints) -> MissingCredentialError:
        message = "No complete Apple ID credential found"
        if (
            SourceTier.CONFIG_FILE in hints.identities
            and SourceTier.ENVIRONMENT in hints.secret_tiers
            and SourceTier.ENVIRONMENT not in hints.identities
        ):
            message += (
                f" (the local config identity cannot be paired with {ENV_SECRET} from the "
                f"environment; set {ENV_IDENTITY} as well)"
            )
        return MissingCredentialError(
            message,
            remediation=(
                "Setup options:\n"
                "  1. Keychain:     macrelease setup-keychain --apple-id you@example.com\n"
                f"  2. Environment:  export {ENV_IDENTITY}=... {ENV_SECRET}=...\n"
                f"  3. Interactive:  put apple_id in {self.context.config['local_config']} and run from a terminal"
            ),
        )

    def validate(self, credential: Credential) -> ValidationResult:
        """Confirm the notary service accepts the credential (read-only call)"""
        try:
            history = self.client.history(credential)
        except CommandError as e:
            output = e.output.strip()
            diagnostic = self.client.diagnostic_command("history", credential)
            if is_ambiguous_team_response(output) and not credential.organization_id:
                raise AmbiguousOrganizationError(
                    output,
                    remediation=f"Set {ENV_TEAM} or team_id in release.yaml to pick a team",
                    diagnostic=diagnostic,
                ) from e
            raise InvalidCredentialError(
                f"Apple rejected the credentials for {credential.identity}: {output or e.message}",
                remediation="Check the Apple ID and regenerate the app-specific password at appleid.apple.com",
                diagnostic=diagnostic,
            ) from e

        submissions = history.get("history") or []
        return ValidationResult(
            valid=True,
            identity=credential.identity,
            organization_id=credential.organization_id,
            submission_count=len(submissions),
        )


def setup_keychain(context: PipelineContext, identity: str, team_id: Optional[str] = None) -> None:
    """One-time write of the keychain entries used by the first tier"""
    service = context.config["keychain_service"]
    base = ["security", "add-internet-password", "-U", "-s", service]
    context.runner.run(base + ["-a", IDENTITY_ACCOUNT, "-w", identity], show_output=False)
    if team_id:
        context.runner.run(base + ["-a", TEAM_ACCOUNT, "-w", team_id], show_output=False)
    context.reporter.info("Enter the app-specific password at the security prompt")
    # -w without a value makes security prompt, so the secret never passes through us
    context.runner.run(base + ["-a", SECRET_ACCOUNT, "-w"], capture_output=False)

    profile = context.config.get("notary_profile")
    if profile:
        # notarytool prompts for the password itself when --password is left out
        cmd = ["xcrun", "notarytool", "store-credentials", profile, "--apple-id", identity]
        if team_id:
            cmd += ["--team-id", team_id]
        context.reporter.info(f"Enter the app-specific password again for notarytool profile '{profile}'")
        context.runner.run(cmd, capture_output=False)
    context.reporter.success(f"Stored credentials under keychain service '{service}'")
