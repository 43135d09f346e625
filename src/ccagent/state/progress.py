"""Append-only progress log (progress.txt).

Lines produced during a build are buffered in memory and flushed in order, so a
worktree rollback never touches them. Only a bounded tail of the persisted file
is ever read back.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)

PROGRESS_HEADER = "# ccagent build progress"


def timestamp() -> str:
    """UTC ISO-8601 timestamp with millisecond precision."""
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


class ProgressLog:
    """Buffered writer and tail reader for progress.txt.

    Attributes:
        path: Location of the progress file
        pending: Lines recorded but not yet flushed
    """

    def __init__(self, path: Union[str, Path], header: str = PROGRESS_HEADER):
        self.path = Path(path)
        self.header = header
        self.pending: list[str] = []

    def ensure_exists(self) -> None:
        """Create the file with its header if it does not exist."""
        if self.path.exists():
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(self.header + "\n", encoding="utf-8")

    def append(self, line: str) -> None:
        """Append one line to the file immediately."""
        self.ensure_exists()
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line + "\n")

    def record(self, message: str) -> str:
        """Buffer a timestamped line and return it."""
        line = f"[{timestamp()}] {message}"
        self.pending.append(line)
        return line

    def flush(self) -> int:
        """Write buffered lines in order and clear the buffer.

        Returns:
            Number of lines written
        """
        if not self.pending:
            return 0

        self.ensure_exists()
        with open(self.path, "a", encoding="utf-8") as f:
            for line in self.pending:
                f.write(line + "\n")

        count = len(self.pending)
        self.pending.clear()
        logger.debug(f"Flushed {count} progress lines to {self.path}")
        return count

    def tail(self, max_lines: int = 80) -> str:
        """Last max_lines non-empty persisted lines."""
        if not self.path.exists():
            return ""
        lines = [line for line in self.path.read_text(encoding="utf-8").split("\n") if line]
        return "\n".join(lines[-max_lines:])

    def context(self, max_lines: int = 80) -> str:
        """Persisted tail followed by lines buffered this run."""
        parts = [self.tail(max_lines), "\n".join(self.pending)]
        return "\n".join(part for part in parts if part)
