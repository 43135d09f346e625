"""Project layout and path management for ccagent.

A ccagent project is a git working directory holding:
- constitution/   rule text written by ``ccagent init``
- prd.json        the story backlog
- progress.txt    append-only build log
"""

from pathlib import Path
from typing import Optional, Union

from ccagent.errors import PreconditionFailed

CONSTITUTION_DIRNAME = "constitution"
PRD_FILENAME = "prd.json"
PROGRESS_FILENAME = "progress.txt"

# Persisted progress lines included in the build prompt
PROGRESS_TAIL_LINES = 80

DEFAULT_AGENT = "codex"
DEFAULT_ITERATIONS = 10


class ProjectContext:
    """Encapsulates all project-related paths.

    Use this to get consistent paths throughout ccagent.
    """

    def __init__(self, workdir: Optional[Union[str, Path]] = None):
        """Initialize project context.

        Args:
            workdir: Project working directory (defaults to cwd)
        """
        self.workdir = Path(workdir or Path.cwd()).resolve()

    @property
    def constitution_dir(self) -> Path:
        """Path to the constitution directory."""
        return self.workdir / CONSTITUTION_DIRNAME

    @property
    def prd_path(self) -> Path:
        """Path to prd.json."""
        return self.workdir / PRD_FILENAME

    @property
    def progress_path(self) -> Path:
        """Path to progress.txt."""
        return self.workdir / PROGRESS_FILENAME

    def require_initialized(self) -> None:
        """Ensure ``ccagent init`` has been run here.

        Raises:
            PreconditionFailed: If constitution/ or prd.json is missing
        """
        if not self.constitution_dir.is_dir():
            raise PreconditionFailed(
                f"Missing {CONSTITUTION_DIRNAME}/ directory. Run `ccagent init` first."
            )
        if not self.prd_path.is_file():
            raise PreconditionFailed(f"Missing {PRD_FILENAME}. Run `ccagent init` first.")
