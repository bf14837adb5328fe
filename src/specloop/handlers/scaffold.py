from __future__ import annotations

import re
import time
from pathlib import Path

from specloop.handlers.base import Handler, Result
from specloop.state.document import WorkItem

STUB_TEMPLATES = {
    ".py": '"""{summary}"""\n',
    ".ts": "/**\n * {path}\n *\n * {summary}\n */\n\nexport {{}};\n",
    ".tsx": "/**\n * {path}\n *\n * {summary}\n */\n\nexport {{}};\n",
    ".js": "/**\n * {path}\n *\n * {summary}\n */\n\nexport {{}};\n",
    ".md": "# {summary}\n",
    ".sh": "#!/usr/bin/env bash\n# {summary}\nset -euo pipefail\n",
}
DEFAULT_TEMPLATE = "# {summary}\n"


def source_path_pattern(source_root: str) -> re.Pattern[str]:
    root = re.escape(source_root.strip("/"))
    return re.compile(rf"(?<![\w./-])({root}/[\w./-]*\w\.[A-Za-z0-9]+)\b")


def render_stub(relative_path: str, summary: str) -> str:
    template = STUB_TEMPLATES.get(Path(relative_path).suffix.lower(), DEFAULT_TEMPLATE)
    return template.format(path=relative_path, summary=summary.replace("*/", "* /"))


class ScaffoldHandler(Handler):
    """Creates the skeleton file named by a creation item."""

    category = "scaffold"

    def __init__(self, workspace: Path, *, source_root: str = "src") -> None:
        super().__init__(workspace)
        self.source_root = source_root
        self.pattern = source_path_pattern(source_root)

    def target_path(self, text: str) -> str | None:
        match = self.pattern.search(text)
        return match.group(1) if match else None

    async def execute(self, item: WorkItem) -> Result:
        started = time.monotonic()
        relative = self.target_path(item.text)
        if relative is None:
            return Result.failed(
                f"No path under {self.source_root}/ in '{item.text}'", started=started
            )
        target = self.resolve(relative)
        if not target.is_relative_to(self.workspace):
            return Result.failed(f"Refusing to write outside workspace: {relative}", started=started)
        if target.exists():
            return Result.ok(f"exists: {relative}", started=started)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(render_stub(relative, item.text), encoding="utf-8")
        except OSError as exc:
            return Result.failed(f"Could not create {relative}: {exc}", started=started)
        return Result.ok(f"created: {relative}", started=started)
