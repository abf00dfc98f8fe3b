"""Run groups — at most one in-flight run per component and repository.

Two policies:

* :class:`RunGroup` — a newly triggered run waits for the previous one to
  finish (branch sync, tag monitor).
* :class:`LatestWinsGroup` — a newly triggered run supersedes the in-flight
  one, which notices at its next :meth:`LatestWinsGroup.check` and stops
  (security scan: only the newest diff matters).

Both are file based so they work across processes on one runner.
"""

from __future__ import annotations

import json
import logging
import os
import re
import socket
import time
import uuid
from pathlib import Path

from forkwatch.errors import LockTimeoutError, RunSuperseded

logger = logging.getLogger(__name__)

# Older than the platform's longest job ceiling: the owner is certainly gone.
STALE_AFTER = 6 * 3600


def _slug(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]+", "_", name).strip("_") or "default"


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class RunGroup:
    """Exclusive, waiting lock for one named run group."""

    def __init__(
        self,
        state_dir: str | Path,
        name: str,
        timeout: float = 600.0,
        poll_interval: float = 1.0,
        stale_after: float = STALE_AFTER,
    ) -> None:
        self.name = name
        self.lock_path = Path(state_dir) / "locks" / f"{_slug(name)}.lock"
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.stale_after = stale_after
        self._held = False

    def __enter__(self) -> "RunGroup":
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()

    def acquire(self) -> None:
        """Block until the group is free.

        Raises:
            LockTimeoutError: if the previous run still holds the group after ``timeout``.
        """
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + self.timeout
        waited = False

        while True:
            try:
                fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                if self._reclaim_if_stale():
                    continue
                if time.monotonic() >= deadline:
                    raise LockTimeoutError(
                        f"Run group {self.name} is still busy after {self.timeout:.0f}s "
                        f"(lock file {self.lock_path})"
                    )
                if not waited:
                    logger.info("Waiting for the previous %s run to finish", self.name)
                    waited = True
                time.sleep(self.poll_interval)
                continue

            with os.fdopen(fd, "w") as f:
                json.dump(
                    {"pid": os.getpid(), "host": socket.gethostname(), "started_at": time.time()},
                    f,
                )
            self._held = True
            logger.debug("Acquired run group %s", self.name)
            return

    def release(self) -> None:
        if self._held:
            self.lock_path.unlink(missing_ok=True)
            self._held = False
            logger.debug("Released run group %s", self.name)

    def _reclaim_if_stale(self) -> bool:
        try:
            owner = json.loads(self.lock_path.read_text())
            age = time.time() - float(owner.get("started_at", 0))
        except FileNotFoundError:
            return True
        except (OSError, ValueError):
            # Half-written by a crashed owner; fall back to the file's mtime.
            try:
                age = time.time() - self.lock_path.stat().st_mtime
            except FileNotFoundError:
                return True
            owner = {}

        dead_owner = (
            owner.get("host") == socket.gethostname()
            and isinstance(owner.get("pid"), int)
            and not _pid_alive(owner["pid"])
        )
        if dead_owner or age > self.stale_after:
            logger.warning("Reclaiming stale run group lock %s", self.lock_path)
            self.lock_path.unlink(missing_ok=True)
            return True
        return False


class LatestWinsGroup:
    """Run group in which the newest run wins and older runs stop at their next check."""

    def __init__(self, state_dir: str | Path, name: str) -> None:
        self.name = name
        self.token_path = Path(state_dir) / "runs" / f"{_slug(name)}.token"
        self.token = ""

    def __enter__(self) -> "LatestWinsGroup":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.finish()

    def start(self) -> str:
        self.token_path.parent.mkdir(parents=True, exist_ok=True)
        self.token = uuid.uuid4().hex
        tmp = self.token_path.parent / f"{self.token_path.name}.{self.token}.tmp"
        tmp.write_text(self.token)
        os.replace(tmp, self.token_path)
        logger.debug("Started run %s in group %s", self.token[:8], self.name)
        return self.token

    def current(self) -> str:
        try:
            return self.token_path.read_text().strip()
        except FileNotFoundError:
            return ""

    def check(self) -> None:
        """Raise ``RunSuperseded`` when a newer run has started in this group."""
        if self.current() != self.token:
            raise RunSuperseded(f"A newer {self.name} run started; stopping this one")

    def finish(self) -> None:
        if self.token and self.current() == self.token:
            self.token_path.unlink(missing_ok=True)
