"""Project initialization: draft, steer and lock a constitution and backlog.

The agent produces a draft (L1 principles, L2 objectives, constitution files
and stories). The operator can steer it with feedback until approving, then
the draft is written to disk.
"""

import json
import logging
import math
import posixpath
import shutil
from pathlib import Path
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field

from ccagent.agents import Agent
from ccagent.errors import InvalidDraft, PreconditionFailed
from ccagent.project import CONSTITUTION_DIRNAME, ProjectContext
from ccagent.state.progress import ProgressLog, timestamp
from ccagent.text import extract_json

logger = logging.getLogger(__name__)

REQUIRED_FILES = [
    "constitution/CONSTITUTION.md",
    "constitution/invariants.md",
    "constitution/architecture.md",
    "constitution/conventions.md",
]

APPROVAL_PHRASES = ("looks good", "build it", "approved")
APPROVAL_WORDS = ("approve", "ok")

DEFAULT_FEEDBACK = "Refine clarity and strengthen invariants."


class DraftReview(BaseModel):
    l1_principles: list[str] = Field(default_factory=list)
    l2_objectives: list[str] = Field(default_factory=list)


class Draft(BaseModel):
    """A normalized init draft."""

    review: DraftReview = Field(default_factory=DraftReview)
    files: dict[str, str] = Field(default_factory=dict)
    prd: dict[str, Any] = Field(default_factory=lambda: {"stories": []})

    @property
    def stories(self) -> list[dict]:
        return self.prd.get("stories", [])


def build_init_prompt(
    description: str,
    feedback: str = "",
    previous_draft: Optional[Draft] = None,
) -> str:
    previous_text = (
        f"\nCurrent draft to revise:\n{previous_draft.model_dump_json(indent=2)}\n"
        if previous_draft is not None
        else ""
    )
    feedback_text = (
        f"\nUser steering instructions:\n{feedback}\n"
        if feedback
        else "\nNo additional steering yet. Produce your best first draft.\n"
    )

    return "\n".join(
        [
            "You are generating a Constitutional Coding project design package.",
            "",
            f"Project intent: {description}",
            previous_text,
            feedback_text,
            "Requirements:",
            "- Generate all four levels (L1-L4).",
            "- L1 principles and L2 objectives must be concise and reviewable.",
            "- L3 and L4 details should be auto-decided by you and reflected in files.",
            "- Return actual file contents, not summaries.",
            "- Keep output grounded in practical implementation choices.",
            "",
            "Return ONLY strict JSON (no markdown, no commentary) with this shape:",
            "{",
            '  "review": {',
            '    "l1_principles": ["..."],',
            '    "l2_objectives": ["..."]',
            "  },",
            '  "files": {',
            '    "constitution/CONSTITUTION.md": "...",',
            '    "constitution/invariants.md": "...",',
            '    "constitution/architecture.md": "...",',
            '    "constitution/conventions.md": "..."',
            "  },",
            '  "prd": {',
            '    "stories": [',
            "      {",
            '        "id": 1,',
            '        "title": "...",',
            '        "description": "...",',
            '        "acceptance": ["..."],',
            '        "constitutional_refs": ["..."],',
            '        "priority": 1,',
            '        "passes": false',
            "      }",
            "    ]",
            "  }",
            "}",
        ]
    )


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def normalize_stories(stories: list) -> list[dict]:
    normalized = []
    for index, story in enumerate(stories):
        story = story if isinstance(story, dict) else {}
        normalized.append(
            {
                "id": story.get("id") if story.get("id") is not None else index + 1,
                "title": story.get("title") or f"Story {index + 1}",
                "description": story.get("description") or "",
                "acceptance": story.get("acceptance")
                if isinstance(story.get("acceptance"), list)
                else [],
                "constitutional_refs": story.get("constitutional_refs")
                if isinstance(story.get("constitutional_refs"), list)
                else [],
                "priority": story.get("priority")
                if _is_number(story.get("priority"))
                else index + 1,
                "passes": bool(story.get("passes")),
            }
        )
    return normalized


def normalize_draft(raw: Any) -> Draft:
    """Coerce raw agent JSON into a Draft, dropping malformed parts."""
    data = raw if isinstance(raw, dict) else {}
    review = data.get("review") if isinstance(data.get("review"), dict) else {}
    files = data.get("files") if isinstance(data.get("files"), dict) else {}
    prd = data.get("prd") if isinstance(data.get("prd"), dict) else {}
    stories = prd.get("stories") if isinstance(prd.get("stories"), list) else []

    def _texts(value: Any) -> list[str]:
        return [str(item) for item in value] if isinstance(value, list) else []

    return Draft(
        review=DraftReview(
            l1_principles=_texts(review.get("l1_principles")),
            l2_objectives=_texts(review.get("l2_objectives")),
        ),
        files={str(k): v for k, v in files.items() if isinstance(v, str)},
        prd={**prd, "stories": normalize_stories(stories)},
    )


def validate_draft(draft: Draft) -> None:
    """Raise InvalidDraft unless the draft has everything init writes."""
    if not draft.review.l1_principles:
        raise InvalidDraft("Init draft missing review.l1_principles")
    if not draft.review.l2_objectives:
        raise InvalidDraft("Init draft missing review.l2_objectives")
    for file_path in REQUIRED_FILES:
        if not draft.files.get(file_path):
            raise InvalidDraft(f"Init draft missing file content: {file_path}")
    if not draft.stories:
        raise InvalidDraft("Init draft missing prd stories")


def has_approval_phrase(text: Optional[str]) -> bool:
    if not text:
        return False
    normalized = text.strip().lower()
    return any(phrase in normalized for phrase in APPROVAL_PHRASES) or normalized in APPROVAL_WORDS


def sanitize_relative_path(relative_path: str) -> str:
    """Normalize a draft file path and reject anything escaping the project.

    Raises:
        InvalidDraft: For empty, absolute-after-strip or parent-relative paths
    """
    normalized = posixpath.normpath(relative_path.replace("\\", "/")).lstrip("/")
    if not normalized or normalized == "." or normalized.startswith(".."):
        raise InvalidDraft(f"Invalid relative path: {relative_path}")
    return normalized


class DraftSteering:
    """Produces drafts from the agent and recognizes approval."""

    def __init__(self, agent: Agent, description: str, workdir: Optional[Path] = None):
        self.agent = agent
        self.description = description
        self.workdir = workdir
        self.draft: Optional[Draft] = None

    def produce_draft(self, feedback: str = "") -> Draft:
        """Ask the agent for a (revised) draft.

        Raises:
            AgentError: If the agent fails
            NoJsonFound: If the output holds no JSON
            InvalidDraft: If the draft is incomplete
        """
        prompt = build_init_prompt(self.description, feedback, self.draft)
        raw = self.agent.run(prompt, workdir=self.workdir, auto_approve=True)
        draft = normalize_draft(extract_json(raw))
        validate_draft(draft)
        self.draft = draft
        return draft

    def is_approved(self, text: Optional[str]) -> bool:
        return has_approval_phrase(text)


def write_draft(workdir: Path, draft: Draft, force: bool = False) -> list[Path]:
    """Lock a draft to disk.

    Returns:
        Paths written

    Raises:
        PreconditionFailed: If constitution/ or prd.json exists and force is False
        InvalidDraft: If a file path escapes the project
    """
    project = ProjectContext(workdir)

    if project.constitution_dir.exists() and not force:
        raise PreconditionFailed(
            f"{CONSTITUTION_DIRNAME}/ already exists. Re-run with --force to replace it."
        )
    if project.prd_path.exists() and not force:
        raise PreconditionFailed("prd.json already exists. Re-run with --force to replace it.")

    # Validate every path before touching the filesystem
    targets = [
        (project.workdir / sanitize_relative_path(relative), content)
        for relative, content in draft.files.items()
    ]

    if project.constitution_dir.exists():
        shutil.rmtree(project.constitution_dir)
    if project.prd_path.exists():
        project.prd_path.unlink()

    written = []
    for destination, content in targets:
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_text(content if content.endswith("\n") else content + "\n", encoding="utf-8")
        written.append(destination)

    project.prd_path.write_text(
        json.dumps(draft.prd, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
    )
    written.append(project.prd_path)

    ProgressLog(project.progress_path).append(
        f"[{timestamp()}] constitution locked from ccagent init ({len(draft.stories)} stories)"
    )
    logger.info(f"Locked draft with {len(draft.stories)} stories in {project.workdir}")
    return written


def run_init(
    description: str,
    agent: Agent,
    workdir: Optional[Path] = None,
    auto_lock: bool = False,
    force: bool = False,
    ask: Optional[Callable[[str], str]] = None,
    on_draft: Optional[Callable[[Draft, int], None]] = None,
    on_generate: Optional[Callable[[int], None]] = None,
) -> Draft:
    """Generate, steer and lock a project draft.

    Args:
        description: Natural-language project intent
        agent: Backend that writes drafts
        workdir: Project directory (defaults to cwd)
        auto_lock: Lock the first draft without asking
        force: Replace an existing constitution/ and prd.json
        ask: Prompts the operator for feedback; None means non-interactive
        on_draft: Called with each draft and its number for display
        on_generate: Called with the draft number before each agent request

    Returns:
        The locked draft
    """
    clean_description = (description or "").strip()
    if not clean_description:
        raise PreconditionFailed('Description is required: ccagent init "<description>"')

    workdir = Path(workdir or Path.cwd())
    steering = DraftSteering(agent, clean_description, workdir)
    interactive = ask is not None and not auto_lock

    feedback = ""
    number = 0
    while True:
        number += 1
        if on_generate is not None:
            on_generate(number)
        draft = steering.produce_draft(feedback)
        if on_draft is not None:
            on_draft(draft, number)

        if not interactive:
            logger.info("Non-interactive mode; locking first draft")
            break

        response = ask('Enter steering feedback, or type "build it" / "looks good" to lock')
        if steering.is_approved(response):
            break
        feedback = (response or "").strip() or DEFAULT_FEEDBACK

    write_draft(workdir, draft, force=force)
    return draft
