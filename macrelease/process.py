"""Subprocess execution with secret redaction"""

import subprocess
from pathlib import Path
from typing import Any, Iterable, List, Optional, Set, Union

from .console import Reporter
from .errors import CommandError

REDACTED = "********"

Command = List[str]


class CommandRunner:
    """Runs external tools and keeps registered secrets out of every echo"""

    def __init__(self, reporter: Optional[Reporter] = None):
        self.reporter = reporter or Reporter()
        self._secrets: Set[str] = set()

    def register_secret(self, value: Optional[str]) -> None:
        if value:
            self._secrets.add(value)

    def redact(self, text: str) -> str:
        for secret in self._secrets:
            text = text.replace(secret, REDACTED)
        return text

    def describe(self, cmd: Iterable[str]) -> str:
        return self.redact(" ".join(str(part) for part in cmd))

    def run(
        self,
        cmd: Command,
        check: bool = True,
        capture_output: bool = True,
        show_output: Optional[bool] = None,
        log_path: Optional[Path] = None,
        input: Optional[Union[str, bytes]] = None,
        text: bool = True,
        **kwargs: Any,
    ) -> "subprocess.CompletedProcess[Any]":
        """Run a command with error handling

        With ``log_path`` set, stdout and stderr are appended to that file
        instead of being captured.
        """
        if show_output is None:
            show_output = self.reporter.verbose
        if show_output and not self.reporter.quiet:
            self.reporter.console.print(f"[dim]Running: {self.describe(cmd)}[/dim]")

        try:
            if log_path is not None:
                log_path.parent.mkdir(parents=True, exist_ok=True)
                with open(log_path, "a") as log_file:
                    result = subprocess.run(
                        cmd,
                        check=False,
                        stdout=log_file,
                        stderr=subprocess.STDOUT,
                        text=text,
                        input=input,
                        **kwargs,
                    )
            else:
                result = subprocess.run(
                    cmd,
                    check=False,
                    capture_output=capture_output,
                    text=text,
                    input=input,
                    **kwargs,
                )
        except FileNotFoundError as e:
            raise CommandError(
                f"Command not found: {cmd[0]}",
                returncode=127,
                stderr=str(e),
            ) from e

        if check and result.returncode != 0:
            stdout = self._decode(result.stdout)
            stderr = self._decode(result.stderr)
            if self.reporter.debug and stdout:
                self.reporter.console.print(f"[yellow]stdout:[/yellow] {stdout}")
            raise CommandError(
                f"Command failed: {self.describe(cmd)}",
                returncode=result.returncode,
                stdout=stdout,
                stderr=stderr,
            )
        return result

    def _decode(self, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        return self.redact(value)
