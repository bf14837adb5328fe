from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from specloop.config import HandlersConfig
from specloop.handlers import (
    ChannelHandler,
    CommandHandler,
    DefinitionHandler,
    Handler,
    Result,
    ScaffoldHandler,
    ShellHandler,
    WiringHandler,
)
from specloop.handlers.commands import command_names
from specloop.handlers.scaffold import source_path_pattern
from specloop.state.document import WorkItem

logger = logging.getLogger(__name__)

Predicate = Callable[[str], bool]


@dataclass(frozen=True, slots=True)
class Route:
    name: str
    predicate: Predicate
    handler: Handler

    def matches(self, text: str) -> bool:
        return self.predicate(text.lower())


def _contains_any(*keywords: str) -> Predicate:
    return lambda lowered: any(keyword in lowered for keyword in keywords)


def scaffold_predicate(source_root: str) -> Predicate:
    pattern = source_path_pattern(source_root)
    wants_file = _contains_any("create", "skeleton", "scaffold")
    return lambda lowered: wants_file(lowered) and pattern.search(lowered) is not None


def command_predicate(lowered: str) -> bool:
    return "command" in lowered and bool(command_names(lowered))


def wiring_predicate(integration_points: list[str]) -> Predicate:
    points = [point.lower() for point in integration_points]
    wires = _contains_any("wire", "connect")
    return lambda lowered: wires(lowered) and any(point in lowered for point in points)


shell_predicate = _contains_any("test", "verify", "benchmark", "latency")
definition_predicate = _contains_any("build", "define", "definition", "schema")


def channel_predicate(lowered: str) -> bool:
    return "channel" in lowered and ("add" in lowered or "register" in lowered)


def default_routes(workspace: Path, handlers: HandlersConfig) -> list[Route]:
    """Routes in precedence order; the first match wins."""
    return [
        Route(
            "scaffold",
            scaffold_predicate(handlers.source_root),
            ScaffoldHandler(workspace, source_root=handlers.source_root),
        ),
        Route(
            "command",
            command_predicate,
            CommandHandler(workspace, commands_file=handlers.commands_file),
        ),
        Route(
            "wiring",
            wiring_predicate(handlers.integration_points),
            WiringHandler(workspace, integration_points=list(handlers.integration_points)),
        ),
        Route(
            "shell",
            shell_predicate,
            ShellHandler(
                workspace,
                commands=handlers.command_table(),
                timeout_seconds=float(handlers.shell_timeout_seconds),
                max_output_bytes=int(handlers.max_output_bytes),
            ),
        ),
        Route(
            "definition",
            definition_predicate,
            DefinitionHandler(
                workspace,
                source_root=handlers.source_root,
                definitions_dir=handlers.definitions_dir,
            ),
        ),
        Route(
            "channel",
            channel_predicate,
            ChannelHandler(workspace, channels_file=handlers.channels_file),
        ),
    ]


class DispatchRouter:
    def __init__(self, routes: list[Route]) -> None:
        self.routes = list(routes)

    def select(self, item: WorkItem) -> Route | None:
        for route in self.routes:
            if route.matches(item.text):
                return route
        return None

    async def dispatch(self, item: WorkItem) -> Result:
        route = self.select(item)
        if route is None:
            return Result.failed(f"No handler for item: {item.text}")
        logger.debug("Routing '%s' to %s", item.text, route.name)
        try:
            return await route.handler.execute(item)
        except Exception as exc:
            logger.exception("Handler %s raised for '%s'", route.name, item.text)
            return Result.failed(f"Handler {route.name} error: {exc}")
