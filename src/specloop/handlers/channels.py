from __future__ import annotations

import json
import re
import time
from pathlib import Path

from specloop.handlers.base import Handler, Result
from specloop.handlers.registry import JsonListFile
from specloop.state.document import WorkItem

HASH_CHANNEL = re.compile(r"#([\w-]+)")
NAMED_CHANNEL = re.compile(r"\b([\w-]+)\s+channel\b", re.IGNORECASE)
_NOT_A_NAME = {"a", "an", "the", "new", "game", "public", "private", "add", "register"}


def channel_name(text: str) -> str | None:
    tagged = HASH_CHANNEL.search(text)
    if tagged:
        return tagged.group(1).lower()
    for match in NAMED_CHANNEL.finditer(text):
        candidate = match.group(1).lower()
        if candidate not in _NOT_A_NAME:
            return candidate
    return None


class ChannelHandler(Handler):
    """Adds a channel to the configured channel list."""

    category = "channel"

    def __init__(self, workspace: Path, *, channels_file: str = "config/channels.json") -> None:
        super().__init__(workspace)
        self.registry = JsonListFile(self.resolve(channels_file), key="channels")

    async def execute(self, item: WorkItem) -> Result:
        started = time.monotonic()
        name = channel_name(item.text)
        if name is None:
            return Result.failed(f"No channel name in '{item.text}'", started=started)
        try:
            added = self.registry.add([name])
        except (OSError, json.JSONDecodeError) as exc:
            return Result.failed(f"Channel list update failed: {exc}", started=started)
        if not added:
            return Result.ok(f"channel already present: {name}", started=started)
        return Result.ok(f"channel added: {name}", started=started)
