from __future__ import annotations

import json
import re
import time
from pathlib import Path

from specloop.handlers.base import Handler, Result
from specloop.handlers.registry import JsonListFile
from specloop.state.document import WorkItem

COMMAND_TOKEN = re.compile(r"(?<![\w!])!([A-Za-z][\w-]*)")


def command_names(text: str) -> list[str]:
    return [name.lower() for name in COMMAND_TOKEN.findall(text)]


class CommandHandler(Handler):
    """Registers ``!name`` commands in the command registry file."""

    category = "command"

    def __init__(self, workspace: Path, *, commands_file: str = "config/commands.json") -> None:
        super().__init__(workspace)
        self.registry = JsonListFile(self.resolve(commands_file), key="commands")

    async def execute(self, item: WorkItem) -> Result:
        started = time.monotonic()
        names = command_names(item.text)
        if not names:
            return Result.failed(f"No !command tokens in '{item.text}'", started=started)
        try:
            added = self.registry.add(names)
        except (OSError, json.JSONDecodeError) as exc:
            return Result.failed(f"Command registry update failed: {exc}", started=started)
        if not added:
            return Result.ok("already registered: " + ", ".join(names), started=started)
        return Result.ok("registered: " + ", ".join(f"!{name}" for name in added), started=started)
