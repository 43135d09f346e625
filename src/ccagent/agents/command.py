"""Command-line agent backends.

Each backend turns a prompt into a single external process invocation
(``codex exec`` or ``claude -p``) and returns the trimmed text output.
"""

import logging
from pathlib import Path
from typing import Optional, Union

from ccagent.errors import (
    AgentEmptyOutput,
    AgentInvocationFailed,
    CommandFailed,
    EmptyPrompt,
)
from ccagent.process import run_command

logger = logging.getLogger(__name__)


class CommandAgent:
    """Base class for agents driven through a CLI binary.

    Subclasses implement build_command(); run() handles execution and maps
    failures onto the agent error types.
    """

    name = "command"
    binary = ""

    def __init__(self, binary: Optional[str] = None):
        if binary:
            self.binary = binary

    def build_command(self, prompt: str, auto_approve: bool) -> list[str]:
        raise NotImplementedError

    def run(
        self,
        prompt: str,
        workdir: Optional[Union[str, Path]] = None,
        auto_approve: bool = True,
    ) -> str:
        """Send a prompt to the agent and return its text output.

        Args:
            prompt: Natural-language prompt
            workdir: Directory the agent works in (defaults to cwd)
            auto_approve: Let the agent edit files without confirmation

        Returns:
            Trimmed stdout, or trimmed stderr when stdout is empty

        Raises:
            EmptyPrompt: If prompt is blank
            AgentInvocationFailed: If the process fails or cannot start
            AgentEmptyOutput: If the process produced no text
        """
        if not prompt or not prompt.strip():
            raise EmptyPrompt("Agent prompt cannot be empty")

        args = self.build_command(prompt, auto_approve)
        logger.info(f"Invoking {self.binary} ({len(prompt)} chars prompt)")

        try:
            result = run_command(self.binary, args, cwd=workdir, allow_failure=True)
        except CommandFailed as e:
            raise AgentInvocationFailed(
                f"{self.binary} failed: {e.detail or e}",
                status=e.exit_code,
                original_error=e,
            ) from e

        if result.status != 0:
            detail = result.stderr.strip() or result.stdout.strip() or "Unknown agent failure"
            raise AgentInvocationFailed(
                f"{self.binary} failed ({result.status}): {detail}",
                status=result.status,
            )

        output = result.stdout.strip() or result.stderr.strip()
        if not output:
            raise AgentEmptyOutput(f"{self.binary} returned no output")

        return output


class CodexAgent(CommandAgent):
    """OpenAI Codex CLI: ``codex exec [--full-auto] <prompt>``."""

    name = "codex"
    binary = "codex"

    def build_command(self, prompt: str, auto_approve: bool) -> list[str]:
        args = ["exec"]
        if auto_approve:
            args.append("--full-auto")
        args.append(prompt)
        return args


class ClaudeAgent(CommandAgent):
    """Claude Code CLI: ``claude -p <prompt> [--dangerously-skip-permissions]``."""

    name = "claude"
    binary = "claude"

    def build_command(self, prompt: str, auto_approve: bool) -> list[str]:
        args = ["-p", prompt]
        if auto_approve:
            args.append("--dangerously-skip-permissions")
        return args
