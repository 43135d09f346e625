"""ccagent agents module.

All backends share one seam: ``run(prompt, workdir, auto_approve) -> str``.
- codex: OpenAI Codex CLI
- claude: Claude Code CLI
- claude-sdk: Claude Agent SDK session
"""

from pathlib import Path
from typing import Optional, Protocol, Union

from ccagent.agents.command import ClaudeAgent, CodexAgent, CommandAgent
from ccagent.agents.sdk import ClaudeSdkAgent
from ccagent.errors import UnsupportedAgent


class Agent(Protocol):
    """Opaque coding agent: prompt in, text out, unknown side effects."""

    name: str

    def run(
        self,
        prompt: str,
        workdir: Optional[Union[str, Path]] = None,
        auto_approve: bool = True,
    ) -> str:
        ...


AGENT_NAMES = ("codex", "claude", "claude-sdk")


def normalize_agent_name(name: Optional[str]) -> str:
    return (name or "codex").strip().lower()


def get_agent(name: Optional[str], verbose: bool = False) -> Agent:
    """Build the agent backend for a name.

    Args:
        name: One of AGENT_NAMES (case-insensitive)
        verbose: Stream SDK agent text to the console

    Raises:
        UnsupportedAgent: If name is not a known backend
    """
    agent_name = normalize_agent_name(name)
    if agent_name == "codex":
        return CodexAgent()
    if agent_name == "claude":
        return ClaudeAgent()
    if agent_name == "claude-sdk":
        from ccagent.agents.streaming import StreamingCallback

        return ClaudeSdkAgent(streaming_callback=StreamingCallback(verbose=verbose))

    choices = ", ".join(f'"{n}"' for n in AGENT_NAMES)
    raise UnsupportedAgent(f"Unsupported agent: {name}. Use {choices}.")


__all__ = [
    "AGENT_NAMES",
    "Agent",
    "ClaudeAgent",
    "ClaudeSdkAgent",
    "CodexAgent",
    "CommandAgent",
    "get_agent",
    "normalize_agent_name",
]
