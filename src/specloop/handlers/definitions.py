from __future__ import annotations

import json
import time
from pathlib import Path

from specloop.handlers.base import Handler, Result, slugify
from specloop.handlers.scaffold import render_stub
from specloop.state.document import WorkItem

DEFINITION_KEYWORDS = ("schema", "define", "definition")


class DefinitionHandler(Handler):
    """Writes a data-definition file or a source stub for a generic build item."""

    category = "definition"

    def __init__(
        self,
        workspace: Path,
        *,
        source_root: str = "src",
        definitions_dir: str = "definitions",
    ) -> None:
        super().__init__(workspace)
        self.source_root = source_root
        self.definitions_dir = definitions_dir

    def target_for(self, item: WorkItem) -> str:
        slug = slugify(item.text)
        lowered = item.text.lower()
        if any(keyword in lowered for keyword in DEFINITION_KEYWORDS):
            return f"{self.definitions_dir}/{slug}.json"
        return f"{self.source_root}/{slug.replace('-', '_')}.py"

    @staticmethod
    def _definition_payload(item: WorkItem) -> str:
        payload = {
            "name": slugify(item.text),
            "description": item.text,
            "phase": item.phase_id,
            "fields": [],
        }
        return json.dumps(payload, ensure_ascii=False, indent=2) + "\n"

    async def execute(self, item: WorkItem) -> Result:
        started = time.monotonic()
        relative = self.target_for(item)
        target = self.resolve(relative)
        if target.exists():
            return Result.ok(f"exists: {relative}", started=started)
        if relative.endswith(".json"):
            content = self._definition_payload(item)
        else:
            content = render_stub(relative, item.text)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        except OSError as exc:
            return Result.failed(f"Could not write {relative}: {exc}", started=started)
        return Result.ok(f"created: {relative}", started=started)
