"""Claude Agent SDK backend.

Runs a single SDK session per prompt and returns the final result text. The
build loop is synchronous, so each call drives its own event loop to
completion.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional, Protocol, Union

from ccagent.errors import AgentEmptyOutput, AgentInvocationFailed, EmptyPrompt

logger = logging.getLogger(__name__)


class StreamingCallbackProtocol(Protocol):
    """Protocol for streaming callbacks."""

    def on_tool_call(self, tool_name: str, tool_input: dict[str, Any]) -> None:
        ...

    def on_text(self, text: str) -> None:
        ...


class ClaudeSdkAgent:
    """Agent backed by ``claude_agent_sdk.query``.

    Attributes:
        model: Optional model override passed to the SDK
        streaming_callback: Receives tool calls and text while the session runs
    """

    name = "claude-sdk"

    def __init__(
        self,
        model: Optional[str] = None,
        streaming_callback: Optional[StreamingCallbackProtocol] = None,
    ) -> None:
        self.model = model
        self.streaming_callback = streaming_callback

    def run(
        self,
        prompt: str,
        workdir: Optional[Union[str, Path]] = None,
        auto_approve: bool = True,
    ) -> str:
        """Send a prompt through the SDK and return the result text.

        Raises:
            EmptyPrompt: If prompt is blank
            AgentInvocationFailed: If the SDK raises or reports an error result
            AgentEmptyOutput: If the session produced no text
        """
        if not prompt or not prompt.strip():
            raise EmptyPrompt("Agent prompt cannot be empty")

        cwd = str(workdir) if workdir is not None else str(Path.cwd())
        logger.info(f"Invoking Claude Agent SDK in {cwd} ({len(prompt)} chars prompt)")

        try:
            output = asyncio.run(self._call_agent(prompt, cwd, auto_approve))
        except AgentInvocationFailed:
            raise
        except Exception as e:
            raise AgentInvocationFailed(f"claude-sdk failed: {e}", original_error=e) from e

        output = (output or "").strip()
        if not output:
            raise AgentEmptyOutput("claude-sdk returned no output")
        return output

    async def _call_agent(self, prompt: str, cwd: str, auto_approve: bool) -> str:
        """Run one SDK session and collect its text.

        Override this method for testing or custom agent behavior.
        """
        # Import here to avoid import cost when the SDK backend is unused
        from claude_agent_sdk import ClaudeAgentOptions, query
        from claude_agent_sdk.types import (
            AssistantMessage,
            ResultMessage,
            TextBlock,
            ToolUseBlock,
        )

        options = ClaudeAgentOptions(
            cwd=cwd,
            model=self.model,
            permission_mode="bypassPermissions" if auto_approve else "default",
        )

        texts: list[str] = []
        result_text: Optional[str] = None

        async for message in query(prompt=prompt, options=options):
            if isinstance(message, AssistantMessage):
                for block in message.content:
                    if isinstance(block, TextBlock):
                        texts.append(block.text)
                        if self.streaming_callback is not None:
                            self.streaming_callback.on_text(block.text)
                    elif isinstance(block, ToolUseBlock) and self.streaming_callback is not None:
                        self.streaming_callback.on_tool_call(block.name, block.input or {})
            elif isinstance(message, ResultMessage):
                if message.is_error:
                    raise AgentInvocationFailed(
                        f"claude-sdk failed ({message.subtype}): {message.result or 'no detail'}"
                    )
                result_text = message.result

        return result_text if result_text else "\n".join(texts)
