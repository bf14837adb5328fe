from __future__ import annotations

import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from specloop.state.document import WorkItem

_SLUG_PATTERN = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True, slots=True)
class Result:
    success: bool
    output: str
    exit_code: int = 0
    duration_ms: int = 0

    @classmethod
    def ok(cls, output: str, *, started: float | None = None) -> Result:
        return cls(True, output, 0, _elapsed_ms(started))

    @classmethod
    def failed(cls, output: str, *, exit_code: int = 1, started: float | None = None) -> Result:
        return cls(False, output, exit_code, _elapsed_ms(started))


def _elapsed_ms(started: float | None) -> int:
    if started is None:
        return 0
    return max(0, int((time.monotonic() - started) * 1000))


def slugify(text: str, *, limit: int = 48) -> str:
    slug = _SLUG_PATTERN.sub("-", text.lower()).strip("-")
    return slug[:limit].rstrip("-") or "item"


class Handler(ABC):
    """Executes one category of work item.

    Implementations return a ``Result`` for every outcome and must be safe to
    call again for the same item.
    """

    category: str = "handler"

    def __init__(self, workspace: Path) -> None:
        self.workspace = workspace.resolve()

    def resolve(self, relative: str) -> Path:
        return (self.workspace / relative).resolve()

    @abstractmethod
    async def execute(self, item: WorkItem) -> Result:
        """Carry out ``item`` and report the outcome."""
