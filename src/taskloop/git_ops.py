"""Git operations and the version-control sink the execution loop commits through."""

from __future__ import annotations

import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

from taskloop import log


def _git(*args: str, cwd: Path | None = None, check: bool = False) -> subprocess.CompletedProcess[str]:
    """Run a git command, suppressing stderr noise."""
    return subprocess.run(
        ["git", *args],
        capture_output=True,
        text=True,
        cwd=cwd,
        check=check,
    )


def is_git_repo(cwd: Path | None = None) -> bool:
    try:
        r = _git("rev-parse", "--is-inside-work-tree", cwd=cwd)
    except FileNotFoundError:
        return False
    return r.returncode == 0 and r.stdout.strip() == "true"


def current_branch(cwd: Path | None = None) -> str:
    r = _git("rev-parse", "--abbrev-ref", "HEAD", cwd=cwd)
    return r.stdout.strip() if r.returncode == 0 else "main"


def has_dirty_worktree(cwd: Path | None = None) -> bool:
    r = _git("status", "--porcelain", cwd=cwd)
    return bool(r.stdout.strip())


def dirty_worktree_entries(cwd: Path | None = None) -> list[str]:
    """Return concise dirty entries from `git status --porcelain`."""
    r = _git("status", "--porcelain", cwd=cwd)
    if r.returncode != 0 or not r.stdout.strip():
        return []
    entries: list[str] = []
    for line in r.stdout.splitlines():
        stripped = line.strip()
        if stripped:
            entries.append(stripped)
    return entries


def add_and_commit(message: str, cwd: Path | None = None, *, allow_empty: bool = True) -> bool:
    """Stage everything and commit. Status-only steps may have nothing else to commit."""
    _git("add", ".", cwd=cwd)
    args = ["commit", "-m", message]
    if allow_empty:
        args.insert(1, "--allow-empty")
    r = _git(*args, cwd=cwd)
    if r.returncode != 0:
        log.debug(f"git commit failed: {(r.stderr or r.stdout).strip()}")
    return r.returncode == 0


def commit_subjects(cwd: Path | None = None, limit: int = 0) -> list[str]:
    """Commit subjects on HEAD, oldest first."""
    args = ["log", "--reverse", "--format=%s"]
    if limit > 0:
        args.insert(1, f"-n{limit}")
    r = _git(*args, cwd=cwd)
    if r.returncode != 0 or not r.stdout.strip():
        return []
    return [line for line in r.stdout.splitlines() if line.strip()]


def ensure_clean_git_state(cwd: Path | None = None) -> None:
    """Abort any interrupted merge/rebase/cherry-pick."""
    git_dir_r = _git("rev-parse", "--git-dir", cwd=cwd)
    if git_dir_r.returncode != 0:
        return
    git_dir = Path(git_dir_r.stdout.strip())
    if not git_dir.is_absolute():
        git_dir = (cwd or Path.cwd()) / git_dir

    if (git_dir / "MERGE_HEAD").exists():
        log.warn("Detected interrupted git merge. Aborting…")
        _git("merge", "--abort", cwd=cwd)
    if (git_dir / "REBASE_HEAD").exists():
        log.warn("Detected interrupted git rebase. Aborting…")
        _git("rebase", "--abort", cwd=cwd)
    if (git_dir / "CHERRY_PICK_HEAD").exists():
        log.warn("Detected interrupted git cherry-pick. Aborting…")
        _git("cherry-pick", "--abort", cwd=cwd)


# ── Sinks ────────────────────────────────────────────────────────────

class VersionControlSink(ABC):
    """Accepts commit requests and reports success or failure.

    A sink with ``tracks_history`` reports every commit it ever accepted
    through :meth:`subjects`, including those from earlier sessions. The loop
    uses that to re-send commits a crashed or rejected step still owes.
    """

    tracks_history: bool = False

    @abstractmethod
    def commit(self, message: str) -> bool:
        ...

    def subjects(self) -> list[str]:
        """Commit subjects seen so far, oldest first (used for ordering checks)."""
        return []


class GitSink(VersionControlSink):
    tracks_history = True

    def __init__(self, cwd: Path | None = None) -> None:
        self.cwd = cwd

    def commit(self, message: str) -> bool:
        ok = add_and_commit(message, cwd=self.cwd)
        if ok:
            log.debug(f"Committed: {message.splitlines()[0]}")
        return ok

    def subjects(self) -> list[str]:
        return commit_subjects(cwd=self.cwd)


class RecordingSink(VersionControlSink):
    """Keeps messages in memory instead of committing (dry runs, tests).

    Only this session's messages are known, so it does not track history.
    """

    def __init__(self) -> None:
        self.messages: list[str] = []

    def commit(self, message: str) -> bool:
        self.messages.append(message)
        return True

    def subjects(self) -> list[str]:
        return [m.splitlines()[0] for m in self.messages]
