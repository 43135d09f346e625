"""Constitutional validator.

Picks a diff (staged, working tree, latest commit), asks the agent to judge it
against the constitution, and normalizes whatever comes back into a Verdict.
The validator only reads the repository.
"""

import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from ccagent.agents import Agent
from ccagent.errors import AgentError, CommandFailed, NoJsonFound, ValidationError
from ccagent.state.git import DiffReader
from ccagent.text import extract_json

logger = logging.getLogger(__name__)

NO_DIFF_REASON = "No diff found to validate."


class DiffSource(str, Enum):
    """Which diff a verdict was computed from."""

    STAGED = "staged"
    WORKING_TREE = "working-tree"
    LATEST_COMMIT = "latest-commit"
    NONE = "none"

    @property
    def label(self) -> str:
        return {
            DiffSource.STAGED: "staged changes",
            DiffSource.WORKING_TREE: "working tree changes",
            DiffSource.LATEST_COMMIT: "latest commit",
            DiffSource.NONE: "no changes detected",
        }[self]


class DiffPayload(BaseModel):
    diff: str = Field(default="", description="Unified diff text")
    source: DiffSource = Field(description="Where the diff came from")


class Violation(BaseModel):
    reference: str = Field(default="", description="Constitution reference (L1/L2/invariant)")
    explanation: str = Field(default="", description="Why it is violated")


class Verdict(BaseModel):
    """Normalized validator result."""

    passed: bool = Field(description="True only for an explicit PASS")
    result: str = Field(description="PASS or FAIL")
    reasoning: list[str] = Field(default_factory=list)
    violations: list[Violation] = Field(default_factory=list)
    amendment_suggestion: str = Field(default="")
    source: DiffSource = Field(default=DiffSource.NONE)


def get_diff_payload(git: DiffReader) -> DiffPayload:
    """Select the diff to validate; first non-empty source wins.

    Raises:
        CommandFailed: If git cannot produce a diff
    """
    staged = git.staged_diff()
    if staged.strip():
        return DiffPayload(diff=staged, source=DiffSource.STAGED)

    working = git.worktree_diff()
    if working.strip():
        return DiffPayload(diff=working, source=DiffSource.WORKING_TREE)

    latest = git.latest_commit_patch()
    if latest.strip():
        return DiffPayload(diff=latest, source=DiffSource.LATEST_COMMIT)

    return DiffPayload(diff="", source=DiffSource.NONE)


def build_check_prompt(constitution_text: str, payload: DiffPayload) -> str:
    return "\n".join(
        [
            "You are the constitutional validator for a coding project.",
            "Given the constitution and git diff, determine if the diff violates principles or invariants.",
            "",
            f"Diff source: {payload.source.label}",
            "",
            "Return ONLY strict JSON with this shape:",
            "{",
            '  "result": "PASS" | "FAIL",',
            '  "reasoning": ["short reason", "..."],',
            '  "violations": [',
            "    {",
            '      "reference": "L1/L2/invariant reference",',
            '      "explanation": "why violated"',
            "    }",
            "  ],",
            '  "amendment_suggestion": "optional suggestion or empty string"',
            "}",
            "",
            "Constitution:",
            constitution_text,
            "",
            "Diff:",
            payload.diff or "(empty diff)",
        ]
    )


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else str(value)


def _normalize_violation(item: Any) -> Violation:
    if isinstance(item, dict):
        return Violation(
            reference=_as_text(item.get("reference") or ""),
            explanation=_as_text(item.get("explanation") or ""),
        )
    return Violation(explanation=_as_text(item))


def normalize_verdict(raw: Any, source: DiffSource = DiffSource.NONE) -> Verdict:
    """Coerce an agent verdict into a Verdict. Anything but PASS fails."""
    data = raw if isinstance(raw, dict) else {}
    status = _as_text(data.get("result") or "").strip().upper()
    passed = status == "PASS"

    reasoning = data.get("reasoning")
    violations = data.get("violations")
    suggestion = data.get("amendment_suggestion")

    return Verdict(
        passed=passed,
        result="PASS" if passed else "FAIL",
        reasoning=[_as_text(r) for r in reasoning] if isinstance(reasoning, list) else [],
        violations=[_normalize_violation(v) for v in violations]
        if isinstance(violations, list)
        else [],
        amendment_suggestion=suggestion if isinstance(suggestion, str) else "",
        source=source,
    )


class ConstitutionValidator:
    """Validates the current repository diff against the constitution."""

    def __init__(self, agent: Agent, git: DiffReader, constitution_text: str):
        self.agent = agent
        self.git = git
        self.constitution_text = constitution_text

    def validate(self) -> Verdict:
        """Judge the current diff.

        Returns:
            Verdict; an automatic PASS when there is nothing to validate

        Raises:
            ValidationError: If the diff cannot be read, the agent fails, or
                its verdict cannot be parsed
        """
        try:
            payload = get_diff_payload(self.git)
        except CommandFailed as e:
            raise ValidationError(f"Could not read diff: {e}", original_error=e) from e

        if not payload.diff.strip():
            logger.info("No diff to validate, passing")
            return Verdict(
                passed=True,
                result="PASS",
                reasoning=[NO_DIFF_REASON],
                source=DiffSource.NONE,
            )

        logger.info(f"Validating {payload.source.label} ({len(payload.diff)} chars)")
        prompt = build_check_prompt(self.constitution_text, payload)

        try:
            raw = self.agent.run(prompt, workdir=self.git.cwd, auto_approve=True)
        except AgentError as e:
            raise ValidationError(f"Validator agent failed: {e}", original_error=e) from e

        try:
            data = extract_json(raw)
        except NoJsonFound as e:
            raise ValidationError(f"Validator returned no verdict: {e}", original_error=e) from e

        verdict = normalize_verdict(data, payload.source)
        logger.info(f"Verdict: {verdict.result} ({payload.source.label})")
        return verdict
