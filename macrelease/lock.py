"""Pipeline-scoped lock keyed by version"""

import json
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import ConcurrentReleaseError


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else
        return True
    return True


class ReleaseLock:
    """Exclusive lock file preventing two releases of one version at once"""

    def __init__(self, directory: Path, version: str):
        self.path = directory / f".macrelease-{version}.lock"
        self.version = version
        self._held = False

    def holder(self) -> Optional[Dict[str, Any]]:
        try:
            return json.loads(self.path.read_text())
        except (FileNotFoundError, ValueError):
            return None

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        for _ in range(2):
            try:
                fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                holder = self.holder()
                if holder is not None and not _pid_alive(int(holder.get("pid", 0))):
                    # Stale lock left by a crashed run
                    self.path.unlink(missing_ok=True)
                    continue
                pid = holder.get("pid") if holder else "unknown"
                raise ConcurrentReleaseError(
                    f"Another release of version {self.version} is already running (pid {pid})",
                    remediation=f"Wait for it to finish, or remove {self.path} if that process is gone",
                )
            with os.fdopen(fd, "w") as f:
                json.dump({"pid": os.getpid(), "version": self.version, "started": time.time()}, f)
            self._held = True
            return
        raise ConcurrentReleaseError(
            f"Could not acquire release lock {self.path}",
            remediation=f"Remove {self.path} and retry",
        )

    def release(self) -> None:
        if self._held:
            self.path.unlink(missing_ok=True)
            self._held = False

    def __enter__(self) -> "ReleaseLock":
        self.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()
