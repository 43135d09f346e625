"""Git operations for the ccagent state layer.

GitClient wraps the git CLI for the small fixed command set ccagent needs:
repository and cleanliness checks, rollback, commit, and the diff reads used
by the constitutional validator.
"""

import logging
from pathlib import Path
from typing import Optional, Protocol, Union

from ccagent.errors import CommandFailed, CommitFailed
from ccagent.process import CommandResult, run_command

logger = logging.getLogger(__name__)


class DiffReader(Protocol):
    """Read-only diff access used by the constitutional validator."""

    cwd: Path

    def staged_diff(self) -> str:
        ...

    def worktree_diff(self) -> str:
        ...

    def latest_commit_patch(self) -> str:
        ...


class Worktree(DiffReader, Protocol):
    """Transaction boundary used by the build loop."""

    def is_repo(self) -> bool:
        ...

    def is_clean(self) -> bool:
        ...

    def has_changes(self) -> bool:
        ...

    def revert(self) -> None:
        ...

    def commit_all(self, message: str) -> str:
        ...

    def short_head(self) -> str:
        ...


class GitClient:
    """Client for git operations.

    Attributes:
        cwd: Working directory for git commands (defaults to current directory)
    """

    def __init__(self, cwd: Optional[Union[str, Path]] = None):
        """Initialize GitClient.

        Args:
            cwd: Working directory for git commands. If not provided,
                 uses the current working directory.
        """
        self.cwd = Path(cwd) if cwd is not None else Path.cwd()

    def _run_git(self, args: list[str], check: bool = True) -> CommandResult:
        """Run a git command.

        Args:
            args: Git command arguments (without 'git' prefix)
            check: If True, raise CommandFailed on non-zero exit code

        Returns:
            CommandResult with status, stdout and stderr
        """
        return run_command("git", args, cwd=self.cwd, allow_failure=not check)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def is_repo(self) -> bool:
        """Check whether cwd is inside a git work tree."""
        try:
            result = self._run_git(["rev-parse", "--is-inside-work-tree"], check=False)
        except CommandFailed:
            # git itself is not available
            return False
        return result.status == 0 and result.stdout.strip() == "true"

    def status_porcelain(self) -> str:
        """Porcelain status including every untracked file."""
        result = self._run_git(
            ["status", "--porcelain", "--untracked-files=all"], check=False
        )
        return result.stdout.strip()

    def is_clean(self) -> bool:
        """True if there are no staged, unstaged or untracked changes."""
        return not self.status_porcelain()

    def has_changes(self) -> bool:
        """True if the worktree has any uncommitted change."""
        return bool(self.status_porcelain())

    def short_head(self) -> str:
        """Abbreviated hash of HEAD."""
        return self._run_git(["rev-parse", "--short", "HEAD"]).stdout.strip()

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def revert(self) -> None:
        """Discard every uncommitted change, including untracked files.

        Raises:
            CommandFailed: If reset or clean fails
        """
        logger.info(f"Reverting worktree at {self.cwd}")
        self._run_git(["reset", "--hard", "HEAD"])
        self._run_git(["clean", "-fd"])

    def stage_all(self) -> None:
        """Stage all changes including untracked files (git add -A)."""
        self._run_git(["add", "-A"])

    def commit_all(self, message: str) -> str:
        """Stage everything and commit.

        Args:
            message: The commit message

        Returns:
            Abbreviated hash of the new commit

        Raises:
            CommitFailed: If staging or the commit fails (hook rejection,
                nothing staged, missing identity)
        """
        try:
            self.stage_all()
        except CommandFailed as e:
            raise CommitFailed(f"Failed to stage changes: {e.detail or e}", original_error=e) from e

        result = self._run_git(["commit", "-m", message], check=False)
        if result.status != 0:
            detail = result.stderr.strip() or result.stdout.strip()
            raise CommitFailed(f"git commit failed: {detail}")

        return self.short_head()

    # -------------------------------------------------------------------------
    # Diff reads
    # -------------------------------------------------------------------------

    def staged_diff(self) -> str:
        """Diff of the index against HEAD."""
        return self._run_git(["diff", "--cached"], check=False).stdout

    def untracked_files(self) -> list[str]:
        """Untracked, non-ignored files relative to cwd.

        Paths are read NUL-separated so git does not quote non-ASCII names.
        """
        result = self._run_git(
            ["ls-files", "-z", "--others", "--exclude-standard"], check=False
        )
        return [path for path in result.stdout.split("\0") if path]

    def worktree_diff(self) -> str:
        """Diff of the worktree against the index, plus untracked files.

        Untracked files are rendered as additions against /dev/null so new
        files are visible to the validator. Nothing is staged.

        Raises:
            CommandFailed: If an untracked file cannot be diffed, or the
                output exceeds the capture bound
        """
        parts = []
        tracked = self._run_git(["diff"], check=False).stdout
        if tracked.strip():
            parts.append(tracked)

        for path in self.untracked_files():
            argv = ["diff", "--no-index", "--", "/dev/null", path]
            result = self._run_git(argv, check=False)
            # --no-index exits 1 when the files differ
            if result.status not in (0, 1):
                raise CommandFailed(["git"] + argv, result.status, result.stderr.strip())
            if result.stdout.strip():
                parts.append(result.stdout)

        return "".join(parts)

    def latest_commit_patch(self) -> str:
        """Patch introduced by HEAD."""
        return self._run_git(["show", "--format=", "--patch", "-1"], check=False).stdout
