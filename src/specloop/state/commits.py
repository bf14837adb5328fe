from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 3
DEFAULT_STATE_DIR = ".specloop"
# Local history only. Publishing is left to a human.
FORBIDDEN_SUBCOMMANDS = frozenset({"push", "send-pack", "request-pull"})


class CommitPolicyError(RuntimeError):
    """Raised when staging or committing local changes fails."""


@dataclass(frozen=True, slots=True)
class CommitOutcome:
    attempted: bool
    commit_hash: str | None = None
    reason: str = ""


class CommitPolicy:
    """Commits the working tree once per batch of completed items.

    Never pushes: the git runner rejects every publishing subcommand.
    """

    def __init__(
        self,
        repo_root: Path,
        *,
        enabled: bool = True,
        batch_size: int = DEFAULT_BATCH_SIZE,
        state_dir: str = DEFAULT_STATE_DIR,
    ) -> None:
        self.repo_root = repo_root.resolve()
        self.enabled = enabled
        self.batch_size = max(1, int(batch_size))
        self.state_dir = state_dir
        self.pending = 0
        self._batch_texts: list[str] = []
        self._git_enabled: bool | None = None

    @property
    def git_enabled(self) -> bool:
        if self._git_enabled is None:
            self._git_enabled = self._is_git_repo()
        return self._git_enabled

    def _is_git_repo(self) -> bool:
        try:
            proc = subprocess.run(
                ["git", "--no-pager", "rev-parse", "--is-inside-work-tree"],
                cwd=self.repo_root,
                text=True,
                capture_output=True,
            )
        except OSError:
            return False
        return proc.returncode == 0 and proc.stdout.strip() == "true"

    def _run_git(self, args: list[str], check: bool = True) -> subprocess.CompletedProcess[str]:
        if args and args[0] in FORBIDDEN_SUBCOMMANDS:
            raise CommitPolicyError(f"git {args[0]} is not permitted; commits stay local.")
        proc = subprocess.run(
            ["git", "--no-pager", *args],
            cwd=self.repo_root,
            text=True,
            capture_output=True,
        )
        if check and proc.returncode != 0:
            raise CommitPolicyError(proc.stderr.strip() or proc.stdout.strip())
        return proc

    def record_success(self, text: str) -> CommitOutcome:
        """Count one completed item and commit when the batch is full."""
        self.pending += 1
        self._batch_texts.append(text)
        if self.pending < self.batch_size:
            return CommitOutcome(attempted=False, reason="batch not full")

        texts = list(self._batch_texts)
        self.pending = 0
        self._batch_texts = []
        if not self.enabled:
            return CommitOutcome(attempted=False, reason="auto-commit disabled")
        return self.commit_batch(texts)

    def commit_batch(self, texts: list[str]) -> CommitOutcome:
        if not self.git_enabled:
            return CommitOutcome(attempted=False, reason="not a git repository")

        self._run_git(["add", "-A", "--", ".", f":(exclude){self.state_dir}"])
        staged = self._run_git(["diff", "--cached", "--quiet"], check=False)
        if staged.returncode == 0:
            logger.info("Working tree clean; nothing to commit")
            return CommitOutcome(attempted=True, reason="working tree clean")

        subject = f"specloop: complete {len(texts)} plan item{'s' if len(texts) != 1 else ''}"
        body = "\n".join(f"- {text}" for text in texts)
        self._run_git(["commit", "-m", subject, "-m", body])
        commit_hash = self._run_git(["rev-parse", "HEAD"]).stdout.strip()
        logger.info("Committed %s (%s)", commit_hash[:10], subject)
        return CommitOutcome(attempted=True, commit_hash=commit_hash, reason=subject)
