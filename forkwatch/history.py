"""Run history — one JSON line per component run.

Records are stored as newline-delimited JSON in daily files under
``<state_dir>/history/``.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class RunRecord:
    """A single completed (or failed) run."""

    id: str
    timestamp: str
    component: str  # sync | tags | scan
    repository: str
    outcome: str
    success: bool = True
    details: dict[str, Any] = field(default_factory=dict)


class RunHistory:
    """File-based run log."""

    def __init__(self, state_dir: str | Path) -> None:
        self._base_dir = Path(state_dir) / "history"

    def _log_file_for_date(self, dt: datetime) -> Path:
        return self._base_dir / f"{dt.strftime('%Y-%m-%d')}.jsonl"

    def _read_all(self) -> list[RunRecord]:
        records: list[RunRecord] = []
        if not self._base_dir.exists():
            return records
        for path in sorted(self._base_dir.glob("*.jsonl")):
            for line in path.read_text(encoding="utf-8").splitlines():
                if not line.strip():
                    continue
                try:
                    data = json.loads(line)
                    records.append(
                        RunRecord(**{k: v for k, v in data.items() if k in RunRecord.__dataclass_fields__})
                    )
                except (ValueError, TypeError):
                    logger.warning("Skipping unreadable history line in %s", path)
        return records

    def record(
        self,
        component: str,
        repository: str,
        outcome: str,
        success: bool = True,
        details: Optional[dict[str, Any]] = None,
    ) -> RunRecord:
        """Append a run record and return it."""
        now = datetime.now(timezone.utc)
        entry = RunRecord(
            id=uuid.uuid4().hex[:16],
            timestamp=now.isoformat(),
            component=component,
            repository=repository,
            outcome=outcome,
            success=success,
            details=details or {},
        )
        self._base_dir.mkdir(parents=True, exist_ok=True)
        with self._log_file_for_date(now).open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(asdict(entry)) + "\n")
        return entry

    def query(self, component: Optional[str] = None, limit: int = 50) -> list[RunRecord]:
        """Return records, newest first, optionally for one component."""
        records = self._read_all()
        if component:
            records = [r for r in records if r.component == component]
        records.reverse()  # files and lines are in append order
        return records[:limit]
