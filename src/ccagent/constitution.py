"""Constitution loading.

The constitution is every text file under the constitution directory,
concatenated in path order with a ``### <relative path>`` label per section.
"""

import logging
from pathlib import Path
from typing import Union

from ccagent.errors import PreconditionFailed

logger = logging.getLogger(__name__)

BINARY_SUFFIXES = {
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".webp",
    ".ico",
    ".pdf",
    ".zip",
}


def constitution_files(constitution_dir: Path) -> list[Path]:
    """Text files under constitution_dir, depth-first in name order."""
    files = [
        path
        for path in constitution_dir.rglob("*")
        if path.is_file() and path.suffix.lower() not in BINARY_SUFFIXES
    ]
    return sorted(files, key=lambda p: p.relative_to(constitution_dir).parts)


def load_constitution(constitution_dir: Union[str, Path]) -> str:
    """Concatenate the constitution into one labelled text blob.

    Raises:
        PreconditionFailed: If the directory does not exist
    """
    constitution_dir = Path(constitution_dir)
    if not constitution_dir.is_dir():
        raise PreconditionFailed(f"Missing constitution directory: {constitution_dir}")

    sections = []
    for path in constitution_files(constitution_dir):
        relative = path.relative_to(constitution_dir).as_posix()
        content = path.read_text(encoding="utf-8", errors="replace").strip()
        sections.append(f"### {relative}\n\n{content}")

    logger.debug(f"Loaded {len(sections)} constitution sections from {constitution_dir}")
    return "\n\n".join(sections)
