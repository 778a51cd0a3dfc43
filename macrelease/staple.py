"""Attach the notarization ticket to the bundle"""

from pathlib import Path

from .context import PipelineContext
from .errors import CommandError
from .models import BuildArtifact, StapleResult

STAPLE_ATTEMPTS = 2


class Stapler:
    def __init__(self, context: PipelineContext):
        self.context = context
        self.retry_delay = float(context.config["staple_retry_delay"])

    def staple_path(self, path: Path) -> StapleResult:
        """Staple with one retry; a failure is reported as deferred, never raised"""
        output = ""
        for attempt in range(1, STAPLE_ATTEMPTS + 1):
            try:
                result = self.context.runner.run(
                    ["xcrun", "stapler", "staple", str(path)], check=False, show_output=False
                )
            except CommandError as e:
                output = e.output
            else:
                output = "\n".join(part for part in (result.stdout, result.stderr) if part)
                if result.returncode == 0:
                    return StapleResult(success=True, attempts=attempt, output=output)
            if attempt < STAPLE_ATTEMPTS:
                # The ticket can take a moment to propagate after acceptance
                self.context.reporter.detail(
                    f"Stapling failed, retrying in {int(self.retry_delay)}s"
                )
                self.context.wait(self.retry_delay)
        return StapleResult(success=False, attempts=STAPLE_ATTEMPTS, output=output.strip())

    def staple(self, artifact: BuildArtifact) -> StapleResult:
        result = self.staple_path(artifact.bundle_path)
        if result.success:
            artifact.stapled = True
            self.context.reporter.success(f"Stapled ticket to {artifact.bundle_path.name}")
        else:
            self.context.reporter.warning(
                "Stapling deferred (the app is still notarized). "
                f"Retry later with: macrelease staple {artifact.bundle_path}"
            )
        return result
