from __future__ import annotations

from pathlib import Path

from specloop.handlers.base import Handler, Result
from specloop.state.document import WorkItem


class WiringHandler(Handler):
    """Acknowledges a cross-module wiring item without editing code.

    The integration point may not exist yet, so the intent is only reported
    back and recorded through the activity log.
    """

    category = "wiring"

    def __init__(self, workspace: Path, *, integration_points: list[str] | None = None) -> None:
        super().__init__(workspace)
        self.integration_points = [point.lower() for point in integration_points or []]

    def matched_points(self, text: str) -> list[str]:
        lowered = text.lower()
        return [point for point in self.integration_points if point in lowered]

    async def execute(self, item: WorkItem) -> Result:
        points = self.matched_points(item.text) or ["unspecified"]
        return Result.ok(f"wiring intent recorded ({', '.join(points)}): {item.text}")
