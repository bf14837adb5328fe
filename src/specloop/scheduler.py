from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum
from pathlib import Path

from specloop.clock import Clock, SystemClock
from specloop.config import SchedulerConfig
from specloop.handlers import ShellHandler
from specloop.notifier import Notifier, NullNotifier
from specloop.planning import is_vague, rank, score, subdivide
from specloop.routing import DispatchRouter
from specloop.state.commits import CommitPolicy, CommitPolicyError
from specloop.state.document import DocumentStore, Status, WorkItem
from specloop.state.telemetry import ActivityLog, SessionTelemetry

logger = logging.getLogger(__name__)

COOLING_PERIOD_SECONDS = 300
OUTPUT_PREVIEW_CHARS = 200


class Mode(StrEnum):
    ACTIVE = "active"
    IDLE = "idle"
    COOLING = "cooling"


@dataclass(slots=True)
class SchedulerState:
    """Loop state owned by one scheduler instance."""

    started_at: datetime
    last_heartbeat_at: datetime
    last_summary_day: date
    mode: Mode = Mode.ACTIVE
    iteration: int = 0
    failed_this_session: set[str] = field(default_factory=set)

    @classmethod
    def starting_at(cls, moment: datetime) -> SchedulerState:
        return cls(started_at=moment, last_heartbeat_at=moment, last_summary_day=moment.date())


class Scheduler:
    def __init__(
        self,
        config: SchedulerConfig,
        store: DocumentStore,
        router: DispatchRouter,
        telemetry: SessionTelemetry,
        activity: ActivityLog,
        commits: CommitPolicy,
        notifier: Notifier | None = None,
        *,
        clock: Clock | None = None,
        workspace: Path | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.router = router
        self.telemetry = telemetry
        self.activity = activity
        self.commits = commits
        self.notifier = notifier or NullNotifier()
        self.clock = clock or SystemClock()
        self.workspace = (workspace or Path.cwd()).resolve()
        self.state = SchedulerState.starting_at(self.clock.now())
        self._stop = asyncio.Event()
        if config.max_concurrent > 1:
            logger.warning(
                "max_concurrent=%s is not enforced; items are dispatched one at a time",
                config.max_concurrent,
            )

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        self._stop.set()

    def actionable(self, items: list[WorkItem]) -> list[WorkItem]:
        return [
            item
            for item in items
            if item.status is Status.TODO
            and not (self.config.skip_future_phases and item.future)
            and item.text not in self.state.failed_this_session
        ]

    async def _notify(self, text: str) -> None:
        await self.notifier.post(text)

    async def _sleep(self, seconds: float) -> None:
        await self.clock.sleep(seconds, self._stop)

    async def run(self, *, max_iterations: int | None = None) -> None:
        self.activity.append(
            f"specloop started: cooldown {self.config.cooldown_sec}s, "
            f"idle scan {self.config.idle_scan_interval_sec}s, "
            f"max items {self.config.max_items or 'unbounded'}"
        )
        await self._notify(f"specloop started on {self.store.path.name}")
        while not self.stopping:
            if max_iterations is not None and self.state.iteration + 1 >= max_iterations:
                # Last pass: sleeps return immediately.
                self.stop()
            await self.run_iteration()
        stats = self.telemetry.stats
        self.activity.append(
            f"session ended: {stats.completed_count} completed, "
            f"{stats.failed_count} failed, {stats.skipped_count} skipped"
        )

    async def run_iteration(self) -> Mode:
        self.state.iteration += 1
        items = self.store.list_items()
        candidates = rank(self.actionable(items))
        todo_count = sum(1 for item in items if item.status is Status.TODO)
        self.activity.append(
            f"scan #{self.state.iteration}: {len(items)} items, {todo_count} todo, "
            f"{len(candidates)} actionable ({len(self.state.failed_this_session)} failed this session)"
        )

        if self.telemetry.stats.consecutive_failures >= self.config.max_consecutive_failures:
            await self._cool_down()
            return self._enter(Mode.COOLING)

        if not candidates:
            previous = self.state.mode
            self._enter(Mode.IDLE)
            await self._idle(announce=previous is not Mode.IDLE)
            return Mode.IDLE

        self._enter(Mode.ACTIVE)
        await self._advance(candidates[0])
        return Mode.ACTIVE

    def _enter(self, mode: Mode) -> Mode:
        if mode is not self.state.mode:
            logger.debug("Mode %s -> %s", self.state.mode, mode)
        self.state.mode = mode
        return mode

    async def _cool_down(self) -> None:
        failures = self.telemetry.stats.consecutive_failures
        message = (
            f"circuit breaker open after {failures} consecutive failures; "
            f"cooling for {COOLING_PERIOD_SECONDS}s"
        )
        self.activity.append(message)
        await self._notify(message)
        await self._sleep(COOLING_PERIOD_SECONDS)
        if self.stopping:
            self.activity.append("cooling interrupted by stop; failure counter kept")
            return
        self.telemetry.reset_failures()
        self.activity.append("cooling period over; failure counter reset")

    async def _idle(self, *, announce: bool) -> None:
        if announce:
            message = "all actionable items complete; watching for new work"
            self.activity.append(message)
            await self._notify(message)

        now = self.clock.now()
        elapsed = (now - self.state.last_heartbeat_at).total_seconds()
        if elapsed >= self.config.heartbeat_interval_sec:
            self.state.last_heartbeat_at = now
            await self._heartbeat()

        today = now.date()
        if today != self.state.last_summary_day:
            previous_day = self.state.last_summary_day
            self.state.last_summary_day = today
            if self.config.nightly_summary:
                await self._summary(previous_day)

        await self._sleep(self.config.idle_scan_interval_sec)

    async def _heartbeat(self) -> None:
        stats = self.telemetry.stats
        message = (
            f"heartbeat: idle, {stats.completed_count} completed, "
            f"{stats.failed_count} failed, {stats.skipped_count} skipped"
        )
        self.activity.append(message)
        await self._notify(message)

    async def _summary(self, day: date) -> None:
        stats = self.telemetry.stats
        lines = [
            f"daily summary for {day.isoformat()}: {stats.completed_count} completed, "
            f"{stats.failed_count} failed, {stats.skipped_count} skipped",
        ]
        for phase in self.store.progress():
            lines.append(f"{phase.phase_name}: {phase.done}/{phase.total} ({phase.percent}%)")
        self.activity.append(lines[0])
        await self._notify("\n".join(lines))

    async def _advance(self, item: WorkItem) -> None:
        logger.info("Picked [%s] '%s' (score %s)", item.phase_name, item.text, score(item))
        if is_vague(item.text):
            subtasks = subdivide(item)
            if subtasks is not None:
                if self._decompose(item, subtasks):
                    return
                await self._notify(f"failed: {item.text}\ncould not update {self.store.path.name}")
                await self._sleep(self.config.cooldown_sec)
                return
        await self._dispatch(item)
        await self._sleep(self.config.cooldown_sec)

    def _decompose(self, item: WorkItem, subtasks: list[str]) -> bool:
        self.store.append_items(item.phase_id, subtasks)
        if not self.store.mark_done(item.text):
            # The parent would be picked again next pass.
            self.state.failed_this_session.add(item.text)
            self.telemetry.record_failure(0)
            self.activity.append(f"subdivision of '{item.text}' not recorded; skipping it")
            return False
        self.telemetry.record_skip()
        self.activity.append(f"subdivided '{item.text}' into {len(subtasks)} items")
        return True

    async def _dispatch(self, item: WorkItem) -> None:
        result = await self.router.dispatch(item)
        preview = result.output.strip()[:OUTPUT_PREVIEW_CHARS]

        if result.success:
            if not self.store.mark_done(item.text):
                logger.warning("Could not mark '%s' done in %s", item.text, self.store.path)
            self.telemetry.record_success(item, result.duration_ms)
            self.activity.append(f"done ({result.duration_ms}ms): {item.text}")
            await self._notify(f"completed: {item.text}\n{preview}")
            await self._commit(item)
            completed = self.telemetry.stats.completed_count
            if self.config.max_items and completed >= self.config.max_items:
                self.activity.append(f"max items ({self.config.max_items}) reached; stopping")
                self.stop()
        else:
            self.state.failed_this_session.add(item.text)
            self.telemetry.record_failure(result.duration_ms)
            self.activity.append(
                f"failed (exit {result.exit_code}, {result.duration_ms}ms): {item.text}"
            )
            await self._notify(f"failed: {item.text}\n{preview}")

        if self.config.post_dispatch_command:
            await self._post_dispatch()

    async def _commit(self, item: WorkItem) -> None:
        try:
            outcome = self.commits.record_success(item.text)
        except CommitPolicyError as exc:
            logger.error("Commit failed: %s", exc)
            self.activity.append(f"commit failed: {exc}")
            await self._notify(f"commit failed: {exc}")
            return
        if outcome.commit_hash:
            self.activity.append(f"commit {outcome.commit_hash[:10]}: {outcome.reason}")
        elif outcome.attempted:
            self.activity.append(f"commit skipped: {outcome.reason}")

    async def _post_dispatch(self) -> None:
        shell = ShellHandler(self.workspace)
        result = await shell.run(self.config.post_dispatch_command)
        if not result.success:
            logger.warning(
                "post-dispatch command exited %s: %s",
                result.exit_code,
                result.output.strip()[:OUTPUT_PREVIEW_CHARS],
            )
