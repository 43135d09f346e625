"""ccagent state layer: git, backlog and progress persistence."""

from ccagent.state.backlog import (
    BacklogBundle,
    BacklogShape,
    Story,
    load_backlog,
    parse_backlog,
    save_backlog,
    select_next,
)
from ccagent.state.git import GitClient, Worktree
from ccagent.state.progress import PROGRESS_HEADER, ProgressLog, timestamp

__all__ = [
    "BacklogBundle",
    "BacklogShape",
    "GitClient",
    "PROGRESS_HEADER",
    "ProgressLog",
    "Story",
    "Worktree",
    "load_backlog",
    "parse_backlog",
    "save_backlog",
    "select_next",
    "timestamp",
]
