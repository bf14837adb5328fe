from __future__ import annotations

import json
from pathlib import Path


class JsonListFile:
    """A JSON file holding a flat list of strings, e.g. registered commands."""

    def __init__(self, path: Path, key: str) -> None:
        self.path = path
        self.key = key

    def read(self) -> list[str]:
        if not self.path.exists():
            return []
        payload = json.loads(self.path.read_text(encoding="utf-8"))
        if isinstance(payload, dict):
            payload = payload.get(self.key, [])
        if not isinstance(payload, list):
            return []
        return [str(value) for value in payload]

    def add(self, values: list[str]) -> list[str]:
        """Append the values not yet present and return the ones added."""
        current = self.read()
        added = [value for value in dict.fromkeys(values) if value not in current]
        if not added:
            return []
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            json.dumps({self.key: current + added}, ensure_ascii=False, indent=2) + "\n",
            encoding="utf-8",
        )
        return added
