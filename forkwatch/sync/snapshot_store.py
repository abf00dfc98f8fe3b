"""Tag snapshot store — the baseline the Tag Integrity Monitor compares against.

One JSON file per upstream repository. A snapshot is only saved after a run
classified every tag and raised every notification, so a failed run leaves
the previous baseline in place.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from forkwatch.errors import SnapshotError
from forkwatch.models.repository import RepositoryRef
from forkwatch.models.tags import TagSnapshot

logger = logging.getLogger(__name__)


class TagSnapshotStore:
    """Stores and retrieves tag snapshots under ``<state_dir>/tags/``."""

    SNAPSHOT_DIR = "tags"

    def __init__(self, state_dir: str | Path):
        self.store_dir = Path(state_dir) / self.SNAPSHOT_DIR

    def path_for(self, repo: RepositoryRef) -> Path:
        return self.store_dir / f"{repo.owner}__{repo.name}.json"

    def load(self, repo: RepositoryRef) -> TagSnapshot | None:
        """Return the last saved snapshot, or ``None`` on the first run.

        Raises:
            SnapshotError: The file exists but is unreadable or malformed.
        """
        path = self.path_for(repo)
        if not path.exists():
            return None
        try:
            with open(path) as f:
                return TagSnapshot.from_dict(json.load(f))
        except (OSError, ValueError) as e:
            logger.error("Tag snapshot %s is unreadable: %s", path, e)
            raise SnapshotError(str(path), str(e)) from e

    def save(self, repo: RepositoryRef, snapshot: TagSnapshot) -> Path:
        """Atomically replace the stored snapshot."""
        self.store_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(repo)
        tmp = path.parent / f"{path.name}.tmp"
        with open(tmp, "w") as f:
            json.dump(snapshot.to_dict(), f, indent=2)
            f.write("\n")
        os.replace(tmp, path)
        return path
