from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from pathlib import Path

from specloop.handlers.base import Handler, Result
from specloop.state.document import WorkItem

logger = logging.getLogger(__name__)

TIMEOUT_MARKER = "[TIMEOUT]"
TIMEOUT_EXIT_CODE = -1
KILL_WAIT_SECONDS = 5.0
_READ_CHUNK = 4096


async def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    """SIGKILL the command and everything it spawned, then reap it."""
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except PermissionError:
        process.kill()
    try:
        await asyncio.wait_for(process.wait(), timeout=KILL_WAIT_SECONDS)
    except TimeoutError:
        logger.warning("Process group %s did not exit after SIGKILL", process.pid)


class ShellHandler(Handler):
    """Runs the shell command mapped to a test, verification or benchmark item."""

    category = "shell"

    def __init__(
        self,
        workspace: Path,
        *,
        commands: list[tuple[tuple[str, ...], str]] | None = None,
        timeout_seconds: float = 300.0,
        max_output_bytes: int = 50_000,
    ) -> None:
        super().__init__(workspace)
        self.commands = list(commands or [])
        self.timeout_seconds = timeout_seconds
        self.max_output_bytes = max_output_bytes

    def command_for(self, text: str) -> str | None:
        lowered = text.lower()
        for keywords, command in self.commands:
            if any(keyword in lowered for keyword in keywords):
                return command
        return None

    async def execute(self, item: WorkItem) -> Result:
        command = self.command_for(item.text)
        if command is None:
            return Result.ok(f"noted: no shell mapping for '{item.text}'")
        return await self.run(command)

    async def run(self, command: str) -> Result:
        started = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                "bash",
                "-c",
                command,
                cwd=str(self.workspace),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as exc:
            return Result.failed(
                f"Process error: {exc}", exit_code=-1, started=started
            )

        captured = bytearray()

        async def _drain() -> int:
            assert process.stdout is not None
            while True:
                chunk = await process.stdout.read(_READ_CHUNK)
                if not chunk:
                    break
                room = self.max_output_bytes - len(captured)
                if room > 0:
                    captured.extend(chunk[:room])
            return await process.wait()

        try:
            return_code = await asyncio.wait_for(_drain(), timeout=self.timeout_seconds)
        except TimeoutError:
            logger.warning("Command timed out after %.1fs: %s", self.timeout_seconds, command)
            await _kill_process_group(process)
            output = captured.decode("utf-8", errors="replace")
            return Result.failed(
                f"{output}\n{TIMEOUT_MARKER}", exit_code=TIMEOUT_EXIT_CODE, started=started
            )

        output = captured.decode("utf-8", errors="replace")
        if return_code == 0:
            return Result.ok(output, started=started)
        return Result.failed(output, exit_code=return_code, started=started)
