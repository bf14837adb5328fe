from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from specloop.clock import Clock, utcnow_iso
from specloop.state.document import WorkItem

logger = logging.getLogger(__name__)

COMPLETED_HISTORY_LIMIT = 50


@dataclass(slots=True)
class SessionStats:
    started_at: str
    completed_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    consecutive_failures: int = 0
    total_duration_ms: int = 0
    last_activity_at: str | None = None
    completed_texts: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ActivityLog:
    """Append-only ``[timestamp] message`` log of everything the loop does."""

    def __init__(self, path: Path, clock: Clock) -> None:
        self.path = path
        self.clock = clock
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def append(self, message: str) -> None:
        line = f"[{utcnow_iso(self.clock.now())}] {' '.join(message.splitlines())}\n"
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(line)
        logger.info("%s", message)

    def tail(self, count: int = 20) -> list[str]:
        if not self.path.exists():
            return []
        lines = self.path.read_text(encoding="utf-8").splitlines()
        return lines[-count:]


class SessionTelemetry:
    """Counters for the current process, rewritten to disk after every change.

    A new instance always starts from zero; an earlier snapshot on disk is
    overwritten, never loaded.
    """

    def __init__(self, snapshot_path: Path, clock: Clock) -> None:
        self.snapshot_path = snapshot_path
        self.clock = clock
        self.stats = SessionStats(started_at=utcnow_iso(clock.now()))
        self.flush()

    def _touch(self) -> None:
        self.stats.last_activity_at = utcnow_iso(self.clock.now())

    def record_success(self, item: WorkItem, duration_ms: int) -> None:
        self.stats.completed_count += 1
        self.stats.consecutive_failures = 0
        self.stats.total_duration_ms += max(0, int(duration_ms))
        history = [*self.stats.completed_texts, item.text]
        self.stats.completed_texts = history[-COMPLETED_HISTORY_LIMIT:]
        self._touch()
        self.flush()

    def record_failure(self, duration_ms: int) -> None:
        self.stats.failed_count += 1
        self.stats.consecutive_failures += 1
        self.stats.total_duration_ms += max(0, int(duration_ms))
        self._touch()
        self.flush()

    def record_skip(self) -> None:
        self.stats.skipped_count += 1
        self._touch()
        self.flush()

    def reset_failures(self) -> None:
        self.stats.consecutive_failures = 0
        self._touch()
        self.flush()

    def flush(self) -> None:
        self.snapshot_path.parent.mkdir(parents=True, exist_ok=True)
        serialized = json.dumps(self.stats.to_dict(), ensure_ascii=False, indent=2)
        fd, temp_path = tempfile.mkstemp(
            prefix=".session-", suffix=".json", dir=self.snapshot_path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(serialized + "\n")
            os.replace(temp_path, self.snapshot_path)
        except OSError:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise


def load_snapshot(path: Path) -> dict[str, Any]:
    """Read a snapshot for reporting; never used to resume a session."""
    if not path.exists():
        return {}
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        return {}
    return payload if isinstance(payload, dict) else {}
