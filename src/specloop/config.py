from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any


class ConfigError(ValueError):
    """Raised when a configuration value is out of range."""


@dataclass(frozen=True, slots=True)
class SchedulerConfig:
    cooldown_sec: int = 30
    idle_scan_interval_sec: int = 60
    heartbeat_interval_sec: int = 300
    max_concurrent: int = 1
    skip_future_phases: bool = True
    max_consecutive_failures: int = 3
    auto_commit: bool = True
    nightly_summary: bool = True
    max_items: int = 0
    post_dispatch_command: str = ""

    def __post_init__(self) -> None:
        for name in ("cooldown_sec", "idle_scan_interval_sec", "heartbeat_interval_sec", "max_items"):
            if int(getattr(self, name)) < 0:
                raise ConfigError(f"scheduler.{name} must be >= 0")
        if int(self.max_concurrent) < 1:
            raise ConfigError("scheduler.max_concurrent must be >= 1")
        if int(self.max_consecutive_failures) < 1:
            raise ConfigError("scheduler.max_consecutive_failures must be >= 1")


@dataclass(frozen=True, slots=True)
class PathsConfig:
    document: str = "spec/implementation-plan.tsx"
    state_dir: str = ".specloop"


@dataclass(frozen=True, slots=True)
class HandlersConfig:
    source_root: str = "src"
    commands_file: str = "config/commands.json"
    channels_file: str = "config/channels.json"
    definitions_dir: str = "definitions"
    integration_points: list[str] = field(
        default_factory=lambda: [
            "channel-manager",
            "runtime",
            "steering-loop",
            "scheduler",
            "event bus",
        ]
    )
    shell_timeout_seconds: float = 300.0
    max_output_bytes: int = 50_000
    shell_commands: list[str] = field(
        default_factory=lambda: [
            "benchmark|latency=python -m pytest -q -m benchmark",
            "integration test=python -m pytest -q tests/integration",
            "unit test|test suite|run tests=python -m pytest -q",
        ]
    )

    def __post_init__(self) -> None:
        if float(self.shell_timeout_seconds) <= 0:
            raise ConfigError("handlers.shell_timeout_seconds must be > 0")
        if int(self.max_output_bytes) <= 0:
            raise ConfigError("handlers.max_output_bytes must be > 0")
        for rule in self.shell_commands:
            if "=" not in rule:
                raise ConfigError(f"handlers.shell_commands entry lacks '=': {rule!r}")

    def command_table(self) -> list[tuple[tuple[str, ...], str]]:
        table: list[tuple[tuple[str, ...], str]] = []
        for rule in self.shell_commands:
            keywords, _, command = rule.partition("=")
            tokens = tuple(
                token.strip().lower() for token in keywords.split("|") if token.strip()
            )
            if tokens and command.strip():
                table.append((tokens, command.strip()))
        return table


@dataclass(frozen=True, slots=True)
class NotifierConfig:
    webhook_url: str = ""
    webhook_url_env: str = "SPECLOOP_WEBHOOK_URL"
    timeout_seconds: float = 10.0


@dataclass(frozen=True, slots=True)
class SpecloopConfig:
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    handlers: HandlersConfig = field(default_factory=HandlersConfig)
    notifier: NotifierConfig = field(default_factory=NotifierConfig)

    @classmethod
    def default(cls) -> SpecloopConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> SpecloopConfig:
        return cls(
            scheduler=SchedulerConfig(**data.get("scheduler", {})),
            paths=PathsConfig(**data.get("paths", {})),
            handlers=HandlersConfig(**data.get("handlers", {})),
            notifier=NotifierConfig(**data.get("notifier", {})),
        )

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {
            section: _section_dict(getattr(self, section))
            for section in ("scheduler", "paths", "handlers", "notifier")
        }


def _section_dict(section: object) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for item in fields(section):  # type: ignore[arg-type]
        value = getattr(section, item.name)
        payload[item.name] = list(value) if isinstance(value, list) else value
    return payload


def _toml_value(value: object) -> str:
    """Render a config field as a TOML literal that reloads with the same type."""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        # repr keeps the fraction, so 300.0 stays a float.
        return repr(value)
    if isinstance(value, str):
        # JSON string escapes are valid TOML basic-string escapes.
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    raise ConfigError(f"Cannot write {type(value).__name__} value to TOML")


def dumps_toml(config: SpecloopConfig) -> str:
    data = config.to_dict()
    lines: list[str] = []
    for section in ("scheduler", "paths", "handlers", "notifier"):
        lines.append(f"[{section}]")
        for key, value in data[section].items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path) -> SpecloopConfig:
    if not path.exists():
        return SpecloopConfig.default()
    try:
        return SpecloopConfig.from_dict(tomllib.loads(path.read_text(encoding="utf-8")))
    except TypeError as exc:
        raise ConfigError(f"Unknown configuration key in {path}: {exc}") from exc


def save_config(path: Path, config: SpecloopConfig) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dumps_toml(config), encoding="utf-8")
