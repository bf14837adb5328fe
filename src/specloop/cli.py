from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import signal
from dataclasses import dataclass
from pathlib import Path

import click

from specloop.clock import SystemClock
from specloop.config import ConfigError, SpecloopConfig, load_config, save_config
from specloop.notifier import build_notifier
from specloop.routing import DispatchRouter, default_routes
from specloop.scheduler import Scheduler
from specloop.state import ActivityLog, CommitPolicy, DocumentStore, SessionTelemetry
from specloop.state.telemetry import load_snapshot

logger = logging.getLogger(__name__)

SESSION_FILE = "session.json"
ACTIVITY_FILE = "activity.log"


@dataclass(slots=True)
class Runtime:
    repo_root: Path
    config_path: Path
    config: SpecloopConfig
    store: DocumentStore
    scheduler: Scheduler


def _resolve_config_path(repo_root: Path, config_value: str) -> Path:
    config_path = Path(config_value)
    if not config_path.is_absolute():
        config_path = repo_root / config_path
    return config_path.resolve()


def _load(config_path: Path) -> SpecloopConfig:
    try:
        return load_config(config_path)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc


def _load_runtime(repo_root: Path, config_path: Path, config: SpecloopConfig) -> Runtime:
    state_dir = repo_root / config.paths.state_dir
    clock = SystemClock()
    store = DocumentStore(repo_root / config.paths.document)
    scheduler = Scheduler(
        config.scheduler,
        store,
        DispatchRouter(default_routes(repo_root, config.handlers)),
        SessionTelemetry(state_dir / SESSION_FILE, clock=clock),
        ActivityLog(state_dir / ACTIVITY_FILE, clock=clock),
        CommitPolicy(
            repo_root,
            enabled=config.scheduler.auto_commit,
            state_dir=config.paths.state_dir,
        ),
        build_notifier(config.notifier),
        clock=clock,
        workspace=repo_root,
    )
    return Runtime(
        repo_root=repo_root,
        config_path=config_path,
        config=config,
        store=store,
        scheduler=scheduler,
    )


async def _run_scheduler(scheduler: Scheduler, max_iterations: int | None) -> None:
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, _request_stop, scheduler, signum)
        except (NotImplementedError, RuntimeError):
            logger.debug("Signal handling unavailable for %s", signum)
    await scheduler.run(max_iterations=max_iterations)


def _request_stop(scheduler: Scheduler, signum: int) -> None:
    logger.info("Received %s; stopping after the current step", signal.Signals(signum).name)
    scheduler.stop()


@click.group()
def cli() -> None:
    """specloop: works through a plan document's checklist unattended."""


@cli.command("init")
@click.option("--config", "config_value", default="specloop.toml", show_default=True)
def init_command(config_value: str) -> None:
    repo_root = Path.cwd().resolve()
    config_path = _resolve_config_path(repo_root, config_value)
    config = _load(config_path)
    save_config(config_path, config)
    state_dir = repo_root / config.paths.state_dir
    state_dir.mkdir(parents=True, exist_ok=True)
    gitignore = state_dir / ".gitignore"
    if not gitignore.exists():
        gitignore.write_text("*\n", encoding="utf-8")

    click.echo(f"Initialized specloop in {repo_root}")
    click.echo(f"Config: {config_path}")
    click.echo(f"Plan document: {config.paths.document}")


@cli.command("run")
@click.option("--cooldown", type=click.IntRange(min=0), default=None, help="Seconds between items.")
@click.option("--idle-scan", type=click.IntRange(min=0), default=None, help="Seconds between idle scans.")
@click.option("--heartbeat", type=click.IntRange(min=0), default=None, help="Seconds between idle heartbeats.")
@click.option("--no-commit", is_flag=True, default=False)
@click.option("--include-future", is_flag=True, default=False)
@click.option("--no-nightly", is_flag=True, default=False)
@click.option("--once", is_flag=True, default=False, help="Run a single iteration and exit.")
@click.option("--max-items", type=click.IntRange(min=0), default=None, help="Stop after N completions.")
@click.option("--config", "config_value", default="specloop.toml", show_default=True)
@click.option("--verbose", is_flag=True, default=False)
def run_command(
    cooldown: int | None,
    idle_scan: int | None,
    heartbeat: int | None,
    no_commit: bool,
    include_future: bool,
    no_nightly: bool,
    once: bool,
    max_items: int | None,
    config_value: str,
    verbose: bool,
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    repo_root = Path.cwd().resolve()
    config_path = _resolve_config_path(repo_root, config_value)
    config = _load(config_path)

    overrides: dict[str, object] = {}
    if cooldown is not None:
        overrides["cooldown_sec"] = cooldown
    if idle_scan is not None:
        overrides["idle_scan_interval_sec"] = idle_scan
    if heartbeat is not None:
        overrides["heartbeat_interval_sec"] = heartbeat
    if max_items is not None:
        overrides["max_items"] = max_items
    if no_commit:
        overrides["auto_commit"] = False
    if include_future:
        overrides["skip_future_phases"] = False
    if no_nightly:
        overrides["nightly_summary"] = False
    config = dataclasses.replace(
        config, scheduler=dataclasses.replace(config.scheduler, **overrides)
    )

    runtime = _load_runtime(repo_root, config_path, config)
    try:
        asyncio.run(_run_scheduler(runtime.scheduler, 1 if once else None))
    except RuntimeError as exc:
        raise click.ClickException(str(exc)) from exc

    stats = runtime.scheduler.telemetry.stats
    click.echo(
        f"Session complete: {stats.completed_count} completed, "
        f"{stats.failed_count} failed, {stats.skipped_count} skipped"
    )


@cli.command("status")
@click.option("--config", "config_value", default="specloop.toml", show_default=True)
def status_command(config_value: str) -> None:
    repo_root = Path.cwd().resolve()
    config = _load(_resolve_config_path(repo_root, config_value))
    store = DocumentStore(repo_root / config.paths.document)

    phases = store.progress()
    if not phases:
        click.echo(f"No phases found in {config.paths.document}")
    for phase in phases:
        click.echo(
            f"{phase.phase_id:<16} {phase.done:>3}/{phase.total:<3} {phase.percent:>3}%  "
            f"(wip {phase.wip}, todo {phase.todo})  {phase.phase_name}"
        )

    snapshot = load_snapshot(repo_root / config.paths.state_dir / SESSION_FILE)
    if snapshot:
        click.echo(json.dumps(snapshot, ensure_ascii=False, indent=2))
