"""Streaming output for SDK-driven agents.

Shows tool calls and agent text on the console while a Claude Agent SDK
session runs, so long builds are not silent.
"""

from typing import Any, Optional

from rich.console import Console

# Shared console for consistent output
console = Console()


def describe_tool_call(tool_name: str, tool_input: dict[str, Any]) -> str:
    """One-line description of a tool call with its key argument."""
    tool_info = f"▶ {tool_name}"

    if tool_name == "Bash" and "command" in tool_input:
        cmd = tool_input["command"]
        cmd_preview = cmd[:60] + "..." if len(cmd) > 60 else cmd
        tool_info += f": [dim]{cmd_preview}[/dim]"
    elif "file_path" in tool_input:
        tool_info += f": [dim]{tool_input['file_path']}[/dim]"
    elif "pattern" in tool_input:
        tool_info += f": [dim]{tool_input['pattern']}[/dim]"

    return tool_info


class StreamingCallback:
    """Prints tool calls (and optionally agent text) as they happen."""

    def __init__(self, verbose: bool = False, out: Optional[Console] = None):
        """Initialize the streaming callback.

        Args:
            verbose: If True, also stream agent text output
            out: Console to print to (defaults to the shared console)
        """
        self.verbose = verbose
        self.console = out or console
        self._tool_call_count = 0

    def on_tool_call(self, tool_name: str, tool_input: dict[str, Any]) -> None:
        self.console.print(f"   [yellow]{describe_tool_call(tool_name, tool_input)}[/yellow]")
        self._tool_call_count += 1

    def on_text(self, text: str) -> None:
        if self.verbose:
            self.console.print(f"   [cyan]{text}[/cyan]")

    @property
    def tool_call_count(self) -> int:
        """Return the number of tool calls made."""
        return self._tool_call_count
