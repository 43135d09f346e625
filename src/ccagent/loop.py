"""Build loop: implement backlog stories one iteration at a time.

Each iteration runs SELECT → IMPLEMENT → DETECT_CHANGE → VALIDATE and ends in
ACCEPT (commit) or ROLLBACK (revert). Git is the transaction boundary: every
failed attempt leaves the worktree as clean as it was before the iteration,
and the backlog is only updated for work that is about to be committed.

This module contains:
- BuildConfig: Configuration for a build run
- IterationRecord / BuildResult: What each iteration and the run produced
- build_story_prompt(): Prompt for implementing one story
- BuildLoop: The iteration state machine
- run_build(): Wire real collaborators together and run the loop
"""

import json
import logging
from enum import Enum
from typing import Optional, Protocol

from pydantic import BaseModel, Field
from rich.console import Console

from ccagent.agents import Agent, get_agent
from ccagent.constitution import load_constitution
from ccagent.errors import (
    AgentError,
    CommitFailed,
    IterationsExhausted,
    NoWorktreeChange,
    PreconditionFailed,
    ValidationError,
    ValidationRejected,
)
from ccagent.project import (
    DEFAULT_AGENT,
    DEFAULT_ITERATIONS,
    PROGRESS_TAIL_LINES,
    ProjectContext,
)
from ccagent.state.backlog import BacklogBundle, Story, load_backlog, save_backlog, select_next
from ccagent.state.git import GitClient, Worktree
from ccagent.state.progress import ProgressLog, timestamp
from ccagent.text import safe_title, short_text
from ccagent.validator import ConstitutionValidator, Verdict

logger = logging.getLogger(__name__)


# =============================================================================
# Data Structures
# =============================================================================


class BuildConfig(BaseModel):
    """Configuration for a build run."""

    agent: str = Field(default=DEFAULT_AGENT, description="Agent backend name")
    max_iterations: int = Field(
        default=DEFAULT_ITERATIONS,
        ge=1,
        description="Maximum iterations before stopping",
    )
    progress_tail: int = Field(
        default=PROGRESS_TAIL_LINES,
        ge=1,
        description="Persisted progress lines included in each prompt",
    )
    workdir: Optional[str] = Field(
        default=None,
        description="Project working directory (None = current dir)",
    )


class IterationOutcome(str, Enum):
    """How an iteration ended."""

    PASSED = "passed"
    AGENT_FAILED = "agent_failed"
    NO_CHANGES = "no_changes"
    CHECK_ERRORED = "check_errored"
    REJECTED = "rejected"


class IterationRecord(BaseModel):
    iteration: int = Field(description="Iteration number (1-indexed)")
    story_id: Optional[str] = Field(default=None, description="Story attempted")
    outcome: IterationOutcome
    detail: str = Field(default="", description="Failure reason or story title")
    commit: Optional[str] = Field(default=None, description="Short hash when accepted")


class BuildResult(BaseModel):
    completed: int = Field(description="Stories passed after the run")
    total: int = Field(description="Stories in the backlog")
    iterations: list[IterationRecord] = Field(default_factory=list)

    @property
    def commits(self) -> list[str]:
        return [record.commit for record in self.iterations if record.commit]

    @property
    def summary(self) -> str:
        return f"Build complete: {self.completed}/{self.total} stories passed."


class Validator(Protocol):
    def validate(self) -> Verdict:
        ...


# =============================================================================
# Prompt
# =============================================================================


def build_story_prompt(
    story: Story,
    constitution_text: str,
    prd_json: str,
    progress_text: str,
) -> str:
    """Prompt asking the agent to implement exactly one story."""
    refs = ", ".join(story.constitutional_refs)
    acceptance = "\n".join(f"{idx}. {item}" for idx, item in enumerate(story.acceptance, 1))

    return "\n".join(
        [
            "You are implementing a single story in a constitutional coding loop.",
            "You must follow the constitution and invariants strictly.",
            "",
            "Task:",
            f"- Story ID: {story.id}",
            f"- Title: {story.title}",
            f"- Description: {story.description or '(none)'}",
            f"- Constitutional refs: {refs or '(none)'}",
            "- Acceptance criteria:",
            acceptance or "(none)",
            "",
            "Rules:",
            "- Implement only this story.",
            "- Make the smallest complete set of code changes needed.",
            "- Run available checks/tests if relevant.",
            "- Do not commit any changes.",
            "- Do not modify prd.json or progress.txt directly.",
            "- Stop when implementation is complete and report what changed.",
            "",
            "Constitution:",
            constitution_text,
            "",
            "PRD snapshot:",
            prd_json,
            "",
            "Recent progress:",
            progress_text or "(none yet)",
        ]
    )


def commit_message_for_story(story: Story) -> str:
    return f"ccagent: complete story {story.id} {safe_title(story.title)}"


# =============================================================================
# Loop
# =============================================================================


class BuildLoop:
    """Drives the agent through the backlog, one story per iteration.

    Attributes:
        agent: Backend that implements stories
        worktree: Git transaction boundary
        project: Paths to constitution/, prd.json and progress.txt
        validator: Verdict source; defaults to a ConstitutionValidator
    """

    def __init__(
        self,
        agent: Agent,
        worktree: Worktree,
        project: ProjectContext,
        max_iterations: int = DEFAULT_ITERATIONS,
        progress_tail: int = PROGRESS_TAIL_LINES,
        validator: Optional[Validator] = None,
        console: Optional[Console] = None,
    ):
        self.agent = agent
        self.worktree = worktree
        self.project = project
        self.max_iterations = max_iterations
        self.progress_tail = progress_tail
        self.validator = validator
        self.console = console
        self.progress = ProgressLog(project.progress_path)

    def _say(self, message: str) -> None:
        logger.info(message)
        if self.console is not None:
            self.console.print(message, markup=False, highlight=False)

    def check_preconditions(self) -> None:
        """Refuse to start unless the repository and project are ready.

        Raises:
            PreconditionFailed: Not a repo, dirty worktree, or not initialized
        """
        if not self.worktree.is_repo():
            raise PreconditionFailed("Current directory is not a git repository")

        if not self.worktree.is_clean():
            raise PreconditionFailed(
                "Build requires a clean git worktree (including untracked files). "
                "Commit, stash, or remove local changes first."
            )

        self.project.require_initialized()

    def run(self) -> BuildResult:
        """Run iterations until the backlog is done or iterations run out.

        Returns:
            BuildResult when every story has passed

        Raises:
            PreconditionFailed: Before any iteration, if the project is not ready
            CommitFailed: If an accepted change cannot be committed
            IterationsExhausted: If stories remain after max_iterations
        """
        self.check_preconditions()

        constitution_text = load_constitution(self.project.constitution_dir)
        bundle = load_backlog(self.project.prd_path)
        validator = self.validator or ConstitutionValidator(
            self.agent, self.worktree, constitution_text
        )

        if not bundle.remaining:
            logger.info("No unfinished stories, nothing to build")
            return BuildResult(completed=bundle.completed_count, total=len(bundle.stories))

        logger.info(
            f"Starting build: {len(bundle.remaining)} unfinished stories, "
            f"max {self.max_iterations} iterations"
        )

        records: list[IterationRecord] = []
        try:
            for iteration in range(1, self.max_iterations + 1):
                story = select_next(bundle.stories)
                if story is None:
                    break
                records.append(
                    self.run_iteration(iteration, story, bundle, constitution_text, validator)
                )
        finally:
            self.progress.flush()

        save_backlog(self.project.prd_path, bundle)
        result = BuildResult(
            completed=bundle.completed_count,
            total=len(bundle.stories),
            iterations=records,
        )

        remaining = len(bundle.remaining)
        if remaining:
            raise IterationsExhausted(remaining, self.max_iterations, result=result)

        self._say(result.summary)
        return result

    def run_iteration(
        self,
        iteration: int,
        story: Story,
        bundle: BacklogBundle,
        constitution_text: str,
        validator: Validator,
    ) -> IterationRecord:
        """Attempt one story. Recoverable failures are rolled back and recorded."""
        story_id = str(story.id)
        self.progress.record(f"iteration {iteration}: start story {story.id} ({story.title})")
        self._say(
            f"Iteration {iteration}/{self.max_iterations}: "
            f"story {story.id} - {short_text(story.title, 120)}"
        )

        prompt = build_story_prompt(
            story,
            constitution_text,
            json.dumps(bundle.to_document(), indent=2, ensure_ascii=False),
            self.progress.context(self.progress_tail),
        )

        try:
            self._implement(prompt)
            self._detect_change(story)
            self._validate(validator, story)
        except AgentError as e:
            self.progress.record(
                f"iteration {iteration}: agent execution failed ({short_text(str(e), 300)})"
            )
            self.worktree.revert()
            self._say(f"Iteration {iteration}: agent execution failed, retrying.")
            return IterationRecord(
                iteration=iteration,
                story_id=story_id,
                outcome=IterationOutcome.AGENT_FAILED,
                detail=str(e),
            )
        except NoWorktreeChange as e:
            self.progress.record(
                f"iteration {iteration}: no changes produced for story {story.id}"
            )
            self._say(f"Iteration {iteration}: no changes produced, retrying story {story.id}.")
            return IterationRecord(
                iteration=iteration,
                story_id=story_id,
                outcome=IterationOutcome.NO_CHANGES,
                detail=str(e),
            )
        except ValidationError as e:
            self.progress.record(
                f"iteration {iteration}: check errored ({short_text(str(e), 300)})"
            )
            self.worktree.revert()
            self._say(f"Iteration {iteration}: constitutional check errored, reverted.")
            return IterationRecord(
                iteration=iteration,
                story_id=story_id,
                outcome=IterationOutcome.CHECK_ERRORED,
                detail=str(e),
            )
        except ValidationRejected as e:
            self.progress.record(
                f"iteration {iteration}: FAIL story {story.id} - {short_text(e.message, 280)}"
            )
            self.worktree.revert()
            self._say(f"Iteration {iteration}: constitutional FAIL for story {story.id}, reverted.")
            return IterationRecord(
                iteration=iteration,
                story_id=story_id,
                outcome=IterationOutcome.REJECTED,
                detail=e.message,
            )

        commit = self._accept(iteration, story, bundle)
        return IterationRecord(
            iteration=iteration,
            story_id=story_id,
            outcome=IterationOutcome.PASSED,
            detail=story.title,
            commit=commit,
        )

    def _implement(self, prompt: str) -> None:
        self.agent.run(prompt, workdir=self.project.workdir, auto_approve=True)

    def _detect_change(self, story: Story) -> None:
        if not self.worktree.has_changes():
            raise NoWorktreeChange(f"Agent made no changes for story {story.id}")

    def _validate(self, validator: Validator, story: Story) -> Verdict:
        verdict = validator.validate()
        if not verdict.passed:
            reason = verdict.reasoning[0] if verdict.reasoning else "no reason provided"
            raise ValidationRejected(reason, verdict=verdict)
        return verdict

    def _accept(self, iteration: int, story: Story, bundle: BacklogBundle) -> str:
        """Mark the story passed, persist state and commit everything."""
        story.mark_passed(timestamp())
        self.progress.record(f"iteration {iteration}: PASS story {story.id} ({story.title})")
        self.progress.flush()
        save_backlog(self.project.prd_path, bundle)

        try:
            commit = self.worktree.commit_all(commit_message_for_story(story))
        except CommitFailed as e:
            raise CommitFailed(
                f"Failed to commit story {story.id}: {e}", original_error=e
            ) from e

        self._say(f"Iteration {iteration}: committed story {story.id} as {commit}.")
        return commit


def run_build(
    config: BuildConfig,
    agent: Optional[Agent] = None,
    console: Optional[Console] = None,
    verbose: bool = False,
) -> BuildResult:
    """Run the build loop in config.workdir with real git and agent backends."""
    project = ProjectContext(config.workdir)
    loop = BuildLoop(
        agent=agent or get_agent(config.agent, verbose=verbose),
        worktree=GitClient(cwd=project.workdir),
        project=project,
        max_iterations=config.max_iterations,
        progress_tail=config.progress_tail,
        console=console,
    )
    return loop.run()
