import json
import subprocess
from pathlib import Path

from click.testing import CliRunner

from specloop.cli import cli
from specloop.config import load_config

PLAN = """export const plan = [
  {
    id: 'phase-1',
    name: 'Phase 1 - Foundation',
    checklist: [
      { text: 'Create src/app/main.py skeleton', status: 'todo' },
      { text: 'Wire runtime to scheduler', status: 'done' },
    ],
  },
];
"""


def _init_git_repo(repo_path: Path) -> None:
    subprocess.run(["git", "init"], cwd=repo_path, check=True, text=True, capture_output=True)
    subprocess.run(
        ["git", "config", "user.email", "test@example.com"],
        cwd=repo_path,
        check=True,
        text=True,
        capture_output=True,
    )
    subprocess.run(
        ["git", "config", "user.name", "Test User"],
        cwd=repo_path,
        check=True,
        text=True,
        capture_output=True,
    )
    (repo_path / "README.md").write_text("seed\n", encoding="utf-8")
    subprocess.run(
        ["git", "add", "README.md"], cwd=repo_path, check=True, text=True, capture_output=True
    )
    subprocess.run(
        ["git", "commit", "-m", "seed"],
        cwd=repo_path,
        check=True,
        text=True,
        capture_output=True,
    )


def test_cli_init_run_status_lifecycle(tmp_path: Path, monkeypatch) -> None:
    repo = tmp_path / "repo"
    repo.mkdir()
    _init_git_repo(repo)
    monkeypatch.chdir(repo)
    monkeypatch.delenv("SPECLOOP_WEBHOOK_URL", raising=False)

    runner = CliRunner()

    init_result = runner.invoke(cli, ["init"])
    assert init_result.exit_code == 0
    assert (repo / "specloop.toml").exists()
    assert (repo / ".specloop").is_dir()
    assert (repo / ".specloop" / ".gitignore").read_text(encoding="utf-8") == "*\n"
    assert load_config(repo / "specloop.toml").paths.document == "spec/implementation-plan.tsx"

    plan_path = repo / "spec" / "implementation-plan.tsx"
    plan_path.parent.mkdir()
    plan_path.write_text(PLAN, encoding="utf-8")

    run_result = runner.invoke(cli, ["run", "--once", "--cooldown", "0"])
    assert run_result.exit_code == 0, run_result.output
    assert "Session complete: 1 completed, 0 failed, 0 skipped" in run_result.output
    assert (repo / "src" / "app" / "main.py").exists()
    assert "'Create src/app/main.py skeleton', status: 'done'" in plan_path.read_text(
        encoding="utf-8"
    )

    activity = (repo / ".specloop" / "activity.log").read_text(encoding="utf-8")
    assert "done (" in activity

    untracked = subprocess.run(
        ["git", "status", "--porcelain", "--untracked-files=all"],
        cwd=repo,
        check=True,
        text=True,
        capture_output=True,
    ).stdout
    assert ".specloop/" not in untracked

    status_result = runner.invoke(cli, ["status"])
    assert status_result.exit_code == 0
    assert "phase-1" in status_result.output
    assert "2/2" in status_result.output
    snapshot_text = status_result.output[status_result.output.index("{") :]
    assert json.loads(snapshot_text)["completed_count"] == 1


def test_cli_run_once_on_finished_plan_idles(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("SPECLOOP_WEBHOOK_URL", raising=False)
    plan_path = tmp_path / "spec" / "implementation-plan.tsx"
    plan_path.parent.mkdir()
    plan_path.write_text(PLAN.replace("status: 'todo'", "status: 'done'"), encoding="utf-8")

    result = CliRunner().invoke(cli, ["run", "--once", "--no-commit", "--idle-scan", "0"])

    assert result.exit_code == 0, result.output
    assert "Session complete: 0 completed" in result.output
    activity = (tmp_path / ".specloop" / "activity.log").read_text(encoding="utf-8")
    assert "watching for new work" in activity


def test_cli_rejects_unknown_config_keys(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    (tmp_path / "specloop.toml").write_text("[scheduler]\ncooldown = 5\n", encoding="utf-8")

    result = CliRunner().invoke(cli, ["status"])

    assert result.exit_code == 1
    assert "Unknown configuration key" in result.output


def test_cli_status_without_plan(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(cli, ["status"])

    assert result.exit_code == 0
    assert "No phases found" in result.output
