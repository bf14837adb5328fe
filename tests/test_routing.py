import asyncio
from pathlib import Path

import pytest

from specloop.config import HandlersConfig
from specloop.handlers import Handler, Result
from specloop.routing import DispatchRouter, Route, default_routes
from specloop.state.document import WorkItem


class ExplodingHandler(Handler):
    category = "exploding"

    async def execute(self, item: WorkItem) -> Result:
        raise ValueError(f"boom: {item.text}")


def _item(text: str) -> WorkItem:
    return WorkItem(
        phase_id="phase-1",
        phase_name="Phase 1",
        phase_index=1,
        index_in_phase=0,
        text=text,
    )


@pytest.mark.parametrize(
    ("text", "route_name"),
    [
        ("Create src/app/main.py skeleton", "scaffold"),
        ("Create src/app/test_main.py skeleton", "scaffold"),
        ("Register the !deploy command", "command"),
        ("Wire runtime to scheduler", "wiring"),
        ("Run unit test suite", "shell"),
        ("Verify latency under load", "shell"),
        ("Define user schema", "definition"),
        ("Add #ops channel", "channel"),
    ],
)
def test_default_routes_precedence(tmp_path: Path, text: str, route_name: str) -> None:
    router = DispatchRouter(default_routes(tmp_path, HandlersConfig()))

    route = router.select(_item(text))

    assert route is not None
    assert route.name == route_name


def test_unhandled_item_returns_diagnostic_failure(tmp_path: Path) -> None:
    router = DispatchRouter(default_routes(tmp_path, HandlersConfig()))
    item = _item("Refactor the kernel")

    assert router.select(item) is None
    result = asyncio.run(router.dispatch(item))

    assert result.success is False
    assert result.output == "No handler for item: Refactor the kernel"


def test_handler_exception_becomes_failed_result(tmp_path: Path) -> None:
    route = Route("exploding", lambda lowered: True, ExplodingHandler(tmp_path))
    router = DispatchRouter([route])

    result = asyncio.run(router.dispatch(_item("anything")))

    assert result.success is False
    assert "boom: anything" in result.output


def test_first_matching_route_wins(tmp_path: Path) -> None:
    calls: list[str] = []

    class RecordingHandler(Handler):
        def __init__(self, workspace: Path, name: str) -> None:
            super().__init__(workspace)
            self.name = name

        async def execute(self, item: WorkItem) -> Result:
            calls.append(self.name)
            return Result.ok(self.name)

    router = DispatchRouter(
        [
            Route("first", lambda lowered: "deploy" in lowered, RecordingHandler(tmp_path, "first")),
            Route("second", lambda lowered: True, RecordingHandler(tmp_path, "second")),
        ]
    )

    asyncio.run(router.dispatch(_item("Deploy docs")))
    asyncio.run(router.dispatch(_item("Something else")))

    assert calls == ["first", "second"]
