import asyncio
import json
import time
from pathlib import Path

from specloop.handlers import (
    TIMEOUT_MARKER,
    ChannelHandler,
    CommandHandler,
    DefinitionHandler,
    ScaffoldHandler,
    ShellHandler,
    WiringHandler,
)
from specloop.handlers.channels import channel_name
from specloop.state.document import WorkItem


def _item(text: str, phase_id: str = "phase-1") -> WorkItem:
    return WorkItem(
        phase_id=phase_id,
        phase_name="Phase 1",
        phase_index=1,
        index_in_phase=0,
        text=text,
    )


def test_shell_handler_times_out_and_marks_output(tmp_path: Path) -> None:
    handler = ShellHandler(tmp_path, timeout_seconds=0.5)

    result = asyncio.run(handler.run("echo started; exec sleep 5"))

    assert result.success is False
    assert result.exit_code == -1
    assert result.output.endswith(TIMEOUT_MARKER)
    assert "started" in result.output


def test_shell_handler_timeout_kills_child_processes(tmp_path: Path) -> None:
    handler = ShellHandler(tmp_path, timeout_seconds=1.0)

    started = time.monotonic()
    result = asyncio.run(handler.run("echo start; sleep 8; echo end"))
    elapsed = time.monotonic() - started

    assert elapsed < 4
    assert result.exit_code == -1
    assert result.output.endswith(TIMEOUT_MARKER)
    assert "start" in result.output
    assert "end\n" not in result.output


def test_shell_handler_caps_captured_output(tmp_path: Path) -> None:
    handler = ShellHandler(tmp_path, max_output_bytes=1000)

    result = asyncio.run(handler.run("yes | head -c 100000"))

    assert result.success is True
    assert len(result.output) == 1000


def test_shell_handler_reports_exit_code(tmp_path: Path) -> None:
    handler = ShellHandler(tmp_path)

    result = asyncio.run(handler.run("echo failing >&2; exit 3"))

    assert result.success is False
    assert result.exit_code == 3
    assert "failing" in result.output


def test_shell_handler_runs_mapped_command(tmp_path: Path) -> None:
    handler = ShellHandler(tmp_path, commands=[(("smoke test",), "echo smoke-ok")])

    result = asyncio.run(handler.execute(_item("Run smoke test against staging")))

    assert result.success is True
    assert result.output.strip() == "smoke-ok"


def test_shell_handler_notes_unmapped_items(tmp_path: Path) -> None:
    handler = ShellHandler(tmp_path, commands=[])

    result = asyncio.run(handler.execute(_item("Verify latency targets")))

    assert result.success is True
    assert result.output.startswith("noted:")


def test_scaffold_handler_creates_file_once(tmp_path: Path) -> None:
    handler = ScaffoldHandler(tmp_path)
    item = _item("Create src/app/main.py skeleton")

    first = asyncio.run(handler.execute(item))
    second = asyncio.run(handler.execute(item))

    target = tmp_path / "src" / "app" / "main.py"
    assert first.success is True
    assert first.output == "created: src/app/main.py"
    assert target.read_text(encoding="utf-8") == '"""Create src/app/main.py skeleton"""\n'
    assert second.success is True
    assert second.output == "exists: src/app/main.py"


def test_scaffold_handler_refuses_paths_outside_workspace(tmp_path: Path) -> None:
    workspace = tmp_path / "repo"
    workspace.mkdir()
    handler = ScaffoldHandler(workspace)

    result = asyncio.run(handler.execute(_item("Create src/../../evil.py skeleton")))

    assert result.success is False
    assert not (tmp_path / "evil.py").exists()


def test_command_handler_registers_each_command_once(tmp_path: Path) -> None:
    handler = CommandHandler(tmp_path)
    item = _item("Register the !deploy and !status commands")

    first = asyncio.run(handler.execute(item))
    second = asyncio.run(handler.execute(item))

    payload = json.loads((tmp_path / "config" / "commands.json").read_text(encoding="utf-8"))
    assert payload == {"commands": ["deploy", "status"]}
    assert first.output == "registered: !deploy, !status"
    assert second.success is True
    assert second.output.startswith("already registered")


def test_command_handler_fails_without_tokens(tmp_path: Path) -> None:
    result = asyncio.run(CommandHandler(tmp_path).execute(_item("Add a help command")))

    assert result.success is False


def test_channel_handler_is_idempotent(tmp_path: Path) -> None:
    handler = ChannelHandler(tmp_path)
    item = _item("Add #ops channel")

    first = asyncio.run(handler.execute(item))
    second = asyncio.run(handler.execute(item))

    payload = json.loads((tmp_path / "config" / "channels.json").read_text(encoding="utf-8"))
    assert payload == {"channels": ["ops"]}
    assert first.output == "channel added: ops"
    assert second.output == "channel already present: ops"


def test_channel_name_extraction() -> None:
    assert channel_name("Register the support channel") == "support"
    assert channel_name("Add #Alerts channel for on-call") == "alerts"
    assert channel_name("Add a new channel") is None


def test_definition_handler_writes_schema_definition(tmp_path: Path) -> None:
    handler = DefinitionHandler(tmp_path)

    result = asyncio.run(handler.execute(_item("Define user schema", phase_id="phase-3")))

    target = tmp_path / "definitions" / "define-user-schema.json"
    assert result.output == "created: definitions/define-user-schema.json"
    payload = json.loads(target.read_text(encoding="utf-8"))
    assert payload["description"] == "Define user schema"
    assert payload["phase"] == "phase-3"


def test_definition_handler_writes_source_stub_for_build_items(tmp_path: Path) -> None:
    handler = DefinitionHandler(tmp_path)

    result = asyncio.run(handler.execute(_item("Build metrics exporter")))

    assert result.success is True
    assert (tmp_path / "src" / "build_metrics_exporter.py").exists()
    again = asyncio.run(handler.execute(_item("Build metrics exporter")))
    assert again.output == "exists: src/build_metrics_exporter.py"


def test_wiring_handler_names_matched_points(tmp_path: Path) -> None:
    handler = WiringHandler(tmp_path, integration_points=["runtime", "scheduler", "event bus"])

    result = asyncio.run(handler.execute(_item("Wire runtime to scheduler")))

    assert result.success is True
    assert result.output == "wiring intent recorded (runtime, scheduler): Wire runtime to scheduler"
