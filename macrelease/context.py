"""State threaded through every pipeline stage"""

import os
import sys
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping, Optional

from .config import Config
from .console import Reporter
from .models import Credential
from .process import CommandRunner


@dataclass
class PipelineContext:
    config: Config
    version: str
    reporter: Reporter
    runner: CommandRunner
    environ: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))
    interactive: bool = field(default_factory=lambda: sys.stdin.isatty())
    cancel: threading.Event = field(default_factory=threading.Event)
    sleep: Optional[Callable[[float], None]] = None
    clock: Callable[[], float] = time.monotonic
    credential: Optional[Credential] = None
    force: bool = False

    @property
    def archive_dir(self) -> Path:
        """Per-version working directory for archives, logs and state"""
        return self.config.resolve_path("archive_dir") / self.version

    @property
    def releases_dir(self) -> Path:
        return self.config.resolve_path("releases_dir")

    @property
    def app_name(self) -> str:
        return self.config["app_name"]

    def use_credential(self, credential: Credential) -> None:
        self.credential = credential
        self.runner.register_secret(credential.secret)

    def require_credential(self) -> Credential:
        if self.credential is None:
            raise RuntimeError("credential has not been resolved yet")
        return self.credential

    @property
    def team_id(self) -> Optional[str]:
        if self.credential and self.credential.organization_id:
            return self.credential.organization_id
        return self.config.get("team_id")

    def wait(self, seconds: float) -> None:
        """Non-busy wait that wakes early when the run is cancelled"""
        if self.sleep is not None:
            self.sleep(seconds)
        else:
            self.cancel.wait(seconds)
