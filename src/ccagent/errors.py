"""Error taxonomy for ccagent.

Errors fall into two groups. Fatal errors (preconditions, commit failures,
exhausted iterations) stop a build. Recoverable errors (agent failures,
unchanged worktree, validator errors and rejections) are absorbed by the build
loop, which rolls the worktree back and retries the same story.
"""

from typing import Optional


# =============================================================================
# Base
# =============================================================================


class CcagentError(Exception):
    """Base exception for all ccagent errors."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


# =============================================================================
# Process / parsing
# =============================================================================


class CommandFailed(CcagentError):
    """An external command exited nonzero or could not be spawned."""

    def __init__(
        self,
        command: list[str],
        exit_code: Optional[int],
        detail: str = "",
        original_error: Optional[Exception] = None,
    ):
        lines = [f"Command failed: {' '.join(command)}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if detail:
            lines.append(detail)
        super().__init__("\n".join(lines), original_error=original_error)
        self.command = command
        self.exit_code = exit_code
        self.detail = detail


class OutputLimitExceeded(CommandFailed):
    """Captured command output exceeded the configured bound."""

    pass


class NoJsonFound(CcagentError):
    """No candidate substring of agent output parsed as JSON."""

    pass


# =============================================================================
# Agent
# =============================================================================


class UnsupportedAgent(CcagentError):
    """The requested agent backend is not known."""

    pass


class AgentError(CcagentError):
    """Base for recoverable agent invocation failures."""

    pass


class EmptyPrompt(AgentError):
    """The prompt given to the agent was blank."""

    pass


class AgentInvocationFailed(AgentError):
    """The agent process failed or could not be started."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message, original_error=original_error)
        self.status = status


class AgentEmptyOutput(AgentError):
    """The agent exited successfully but produced no text."""

    pass


# =============================================================================
# Build loop
# =============================================================================


class PreconditionFailed(CcagentError):
    """Project or repository state does not allow the command to start."""

    pass


class InvalidBacklogFormat(CcagentError):
    """prd.json is not a story list or an object with a stories list."""

    pass


class NoWorktreeChange(CcagentError):
    """The agent finished without altering the worktree."""

    pass


class ValidationError(CcagentError):
    """The validator itself failed (agent error, unparseable verdict)."""

    pass


class ValidationRejected(CcagentError):
    """The validator returned a FAIL verdict."""

    def __init__(self, message: str, verdict=None):
        super().__init__(message)
        self.verdict = verdict


class CommitFailed(CcagentError):
    """An accepted change could not be committed."""

    pass


class IterationsExhausted(CcagentError):
    """The build ran out of iterations with stories still unfinished."""

    def __init__(self, remaining: int, max_iterations: int, result=None):
        super().__init__(
            f"Build stopped: {remaining} stories incomplete after {max_iterations} iterations."
        )
        self.remaining = remaining
        self.max_iterations = max_iterations
        self.result = result


# =============================================================================
# Init
# =============================================================================


class InvalidDraft(CcagentError):
    """An init draft is missing required content or escapes the project."""

    pass
