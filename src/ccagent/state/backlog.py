"""Backlog (prd.json) persistence.

prd.json is either a bare list of stories or an object with a ``stories``
list and arbitrary sibling fields. The shape is captured once at load time in a
BacklogBundle and reproduced exactly on save.
"""

import json
import logging
import math
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator
from pydantic import ValidationError as PydanticValidationError

from ccagent.errors import InvalidBacklogFormat

logger = logging.getLogger(__name__)


class Story(BaseModel):
    """One backlog work item.

    The record the story was loaded from is kept so that unknown fields and
    key order survive a save; only passes and completed_at are rewritten.
    """

    model_config = ConfigDict(extra="allow")

    id: Any = Field(default=None, description="Stable identifier, tie-break key")
    title: str = Field(default="", description="Short title")
    description: str = Field(default="", description="Optional longer description")
    acceptance: list[str] = Field(default_factory=list, description="Acceptance criteria")
    constitutional_refs: list[str] = Field(
        default_factory=list, description="Constitution references"
    )
    priority: Any = Field(default=None, description="Lower sorts first")
    passes: bool = Field(default=False, description="True once accepted")
    completed_at: Optional[str] = Field(
        default=None, description="ISO timestamp of first pass"
    )

    _record: dict = PrivateAttr(default_factory=dict)

    @field_validator("title", "description", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        if value is None:
            return ""
        return value if isinstance(value, str) else str(value)

    @field_validator("acceptance", "constitutional_refs", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> list:
        if not isinstance(value, list):
            return []
        return [item if isinstance(item, str) else json.dumps(item) for item in value]

    @field_validator("passes", mode="before")
    @classmethod
    def _coerce_passes(cls, value: Any) -> bool:
        return bool(value)

    def model_post_init(self, __context: Any) -> None:
        self._record = self.model_dump(exclude_none=True)

    @classmethod
    def from_record(cls, record: dict) -> "Story":
        story = cls.model_validate(record)
        story._record = dict(record)
        return story

    def to_record(self) -> dict:
        """Return the original record with updated fields applied."""
        return dict(self._record)

    def mark_passed(self, completed_at: str) -> None:
        """Mark the story accepted. completed_at is only stamped once."""
        self.passes = True
        self._record["passes"] = True
        if not self.completed_at:
            self.completed_at = completed_at
            self._record["completed_at"] = completed_at


class BacklogShape(str, Enum):
    """Top-level shape of prd.json."""

    ARRAY = "array"
    OBJECT = "object"


class BacklogBundle:
    """Loaded backlog plus the envelope needed to write it back unchanged."""

    def __init__(
        self,
        shape: BacklogShape,
        stories: list[Story],
        envelope: Optional[dict] = None,
    ):
        self.shape = shape
        self.stories = stories
        self.envelope = dict(envelope or {})

    def to_document(self) -> Union[list, dict]:
        """Build the JSON document in the original shape."""
        records = [story.to_record() for story in self.stories]
        if self.shape == BacklogShape.ARRAY:
            return records

        document = dict(self.envelope)
        # Reassigning an existing key keeps its position
        document["stories"] = records
        return document

    def to_json(self) -> str:
        return json.dumps(self.to_document(), indent=2, ensure_ascii=False) + "\n"

    @property
    def remaining(self) -> list[Story]:
        return [story for story in self.stories if not story.passes]

    @property
    def completed_count(self) -> int:
        return sum(1 for story in self.stories if story.passes)


def parse_backlog(data: Any) -> BacklogBundle:
    """Build a bundle from decoded prd.json content.

    Raises:
        InvalidBacklogFormat: If the content is not a story list or an object
            with a stories list, or story ids collide
    """
    if isinstance(data, list):
        shape, records, envelope = BacklogShape.ARRAY, data, None
    elif isinstance(data, dict) and isinstance(data.get("stories"), list):
        shape, records, envelope = BacklogShape.OBJECT, data["stories"], data
    else:
        raise InvalidBacklogFormat(
            "Invalid prd.json format: expected an array or object with a stories array"
        )

    stories = []
    seen_ids = set()
    for index, record in enumerate(records):
        if not isinstance(record, dict):
            raise InvalidBacklogFormat(
                f"Invalid prd.json format: story {index + 1} is not an object"
            )
        try:
            story = Story.from_record(record)
        except PydanticValidationError as e:
            raise InvalidBacklogFormat(
                f"Invalid prd.json format: story {index + 1}: {e}", original_error=e
            ) from e

        if story.id is not None:
            key = json.dumps(story.id, sort_keys=True)
            if key in seen_ids:
                raise InvalidBacklogFormat(f"Invalid prd.json format: duplicate story id {story.id}")
            seen_ids.add(key)
        stories.append(story)

    return BacklogBundle(shape=shape, stories=stories, envelope=envelope)


def load_backlog(path: Union[str, Path]) -> BacklogBundle:
    """Load prd.json.

    Raises:
        InvalidBacklogFormat: If the file is not valid JSON or has the wrong shape
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise InvalidBacklogFormat(f"Invalid prd.json: {e}", original_error=e) from e

    bundle = parse_backlog(data)
    logger.debug(f"Loaded {len(bundle.stories)} stories ({bundle.shape.value}) from {path}")
    return bundle


def save_backlog(path: Union[str, Path], bundle: BacklogBundle) -> None:
    """Write the bundle back in its original shape."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(bundle.to_json(), encoding="utf-8")
    logger.debug(f"Saved {len(bundle.stories)} stories to {path}")


def _finite_or_inf(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return math.inf
    try:
        if not math.isfinite(value):
            return math.inf
    except OverflowError:
        # int wider than any float
        return math.inf
    return value


def select_next(stories: list[Story]) -> Optional[Story]:
    """Pick the next unfinished story.

    Orders by (priority, id) ascending; non-numeric or non-finite values sort
    last. The sort is stable, so full ties keep input order.
    """
    remaining = [story for story in stories if not story.passes]
    if not remaining:
        return None

    remaining.sort(key=lambda s: (_finite_or_inf(s.priority), _finite_or_inf(s.id)))
    return remaining[0]
