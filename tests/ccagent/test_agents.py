"""Tests for agent backends."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from rich.console import Console

from ccagent.agents import (
    AGENT_NAMES,
    ClaudeAgent,
    ClaudeSdkAgent,
    CodexAgent,
    get_agent,
    normalize_agent_name,
)
from ccagent.agents.streaming import StreamingCallback, describe_tool_call
from ccagent.errors import (
    AgentEmptyOutput,
    AgentError,
    AgentInvocationFailed,
    CommandFailed,
    EmptyPrompt,
    UnsupportedAgent,
)
from ccagent.process import CommandResult


class TestGetAgent:
    """Tests for get_agent()."""

    def test_known_names(self):
        """WHEN a known name is given THEN the matching backend is built."""
        assert isinstance(get_agent("codex"), CodexAgent)
        assert isinstance(get_agent("claude"), ClaudeAgent)
        assert isinstance(get_agent("claude-sdk"), ClaudeSdkAgent)

    def test_name_is_normalized(self):
        """WHEN name has case and whitespace THEN it still resolves."""
        assert isinstance(get_agent("  Claude "), ClaudeAgent)
        assert normalize_agent_name(None) == "codex"

    def test_sdk_agent_gets_streaming_callback(self):
        agent = get_agent("claude-sdk", verbose=True)
        assert isinstance(agent.streaming_callback, StreamingCallback)
        assert agent.streaming_callback.verbose is True

    def test_unknown_name_raises(self):
        """WHEN the name is unknown THEN UnsupportedAgent lists the choices."""
        with pytest.raises(UnsupportedAgent) as exc_info:
            get_agent("gpt-pilot")
        for name in AGENT_NAMES:
            assert name in str(exc_info.value)


class TestCommandLines:
    """Tests for the argv each CLI backend builds."""

    def test_codex_auto_approve(self):
        assert CodexAgent().build_command("do it", True) == ["exec", "--full-auto", "do it"]

    def test_codex_without_auto_approve(self):
        assert CodexAgent().build_command("do it", False) == ["exec", "do it"]

    def test_claude_auto_approve(self):
        assert ClaudeAgent().build_command("do it", True) == [
            "-p",
            "do it",
            "--dangerously-skip-permissions",
        ]

    def test_claude_without_auto_approve(self):
        assert ClaudeAgent().build_command("do it", False) == ["-p", "do it"]

    def test_binary_override(self):
        assert CodexAgent(binary="/opt/codex").binary == "/opt/codex"
        assert CodexAgent().binary == "codex"


class TestCommandAgentRun:
    """Tests for CommandAgent.run()."""

    def test_returns_trimmed_stdout(self, tmp_path):
        """WHEN the process succeeds THEN trimmed stdout is returned."""
        with patch("ccagent.agents.command.run_command") as mock_run:
            mock_run.return_value = CommandResult(status=0, stdout="  done \n", stderr="noise")
            output = CodexAgent().run("implement", workdir=tmp_path)

        assert output == "done"
        mock_run.assert_called_once_with(
            "codex", ["exec", "--full-auto", "implement"], cwd=tmp_path, allow_failure=True
        )

    def test_falls_back_to_stderr(self):
        """WHEN stdout is empty THEN trimmed stderr is returned."""
        with patch("ccagent.agents.command.run_command") as mock_run:
            mock_run.return_value = CommandResult(status=0, stdout="", stderr=" summary \n")
            assert ClaudeAgent().run("implement") == "summary"

    def test_empty_prompt_raises_without_spawning(self):
        """WHEN the prompt is blank THEN EmptyPrompt is raised and nothing runs."""
        with patch("ccagent.agents.command.run_command") as mock_run:
            with pytest.raises(EmptyPrompt):
                CodexAgent().run("   \n")
        mock_run.assert_not_called()

    def test_nonzero_exit_raises(self):
        """WHEN the process exits nonzero THEN AgentInvocationFailed carries the status."""
        with patch("ccagent.agents.command.run_command") as mock_run:
            mock_run.return_value = CommandResult(status=2, stdout="", stderr="rate limited")
            with pytest.raises(AgentInvocationFailed) as exc_info:
                CodexAgent().run("implement")

        assert exc_info.value.status == 2
        assert "codex failed (2): rate limited" in str(exc_info.value)

    def test_nonzero_exit_without_output(self):
        with patch("ccagent.agents.command.run_command") as mock_run:
            mock_run.return_value = CommandResult(status=1, stdout="", stderr="")
            with pytest.raises(AgentInvocationFailed) as exc_info:
                CodexAgent().run("implement")
        assert "Unknown agent failure" in str(exc_info.value)

    def test_spawn_failure_raises(self):
        """WHEN the binary cannot start THEN AgentInvocationFailed is raised."""
        with patch("ccagent.agents.command.run_command") as mock_run:
            mock_run.side_effect = CommandFailed(["claude"], None, "No such file or directory")
            with pytest.raises(AgentInvocationFailed) as exc_info:
                ClaudeAgent().run("implement")
        assert "claude failed: No such file or directory" in str(exc_info.value)

    def test_real_missing_binary(self):
        """WHEN the binary does not exist on PATH THEN the failure is an AgentError."""
        with pytest.raises(AgentError):
            CodexAgent(binary="ccagent-no-such-agent-binary").run("implement")

    def test_empty_output_raises(self):
        """WHEN the process prints nothing THEN AgentEmptyOutput is raised."""
        with patch("ccagent.agents.command.run_command") as mock_run:
            mock_run.return_value = CommandResult(status=0, stdout="  \n", stderr="")
            with pytest.raises(AgentEmptyOutput):
                CodexAgent().run("implement")


class TestClaudeSdkAgent:
    """Tests for ClaudeSdkAgent.run()."""

    def test_returns_session_text(self, tmp_path):
        """WHEN the session succeeds THEN its trimmed text is returned."""
        agent = ClaudeSdkAgent()
        with patch.object(agent, "_call_agent", new_callable=AsyncMock) as mock_call:
            mock_call.return_value = "  finished  "
            output = agent.run("implement", workdir=tmp_path, auto_approve=False)

        assert output == "finished"
        mock_call.assert_called_once_with("implement", str(tmp_path), False)

    def test_empty_prompt(self):
        with pytest.raises(EmptyPrompt):
            ClaudeSdkAgent().run("")

    def test_sdk_exception_is_wrapped(self):
        """WHEN the SDK raises THEN AgentInvocationFailed is raised."""
        agent = ClaudeSdkAgent()
        with patch.object(agent, "_call_agent", new_callable=AsyncMock) as mock_call:
            mock_call.side_effect = RuntimeError("connection reset")
            with pytest.raises(AgentInvocationFailed) as exc_info:
                agent.run("implement")
        assert "connection reset" in str(exc_info.value)

    def test_empty_session_output(self):
        agent = ClaudeSdkAgent()
        with patch.object(agent, "_call_agent", new_callable=AsyncMock) as mock_call:
            mock_call.return_value = ""
            with pytest.raises(AgentEmptyOutput):
                agent.run("implement")

    def test_streams_messages_from_query(self, tmp_path):
        """WHEN the SDK yields text, tool calls and a result THEN callbacks fire and result wins."""
        from claude_agent_sdk.types import (
            AssistantMessage,
            ResultMessage,
            TextBlock,
            ToolUseBlock,
        )

        text_block = MagicMock(spec=TextBlock)
        text_block.text = "Working on it"
        tool_block = MagicMock(spec=ToolUseBlock)
        tool_block.name = "Bash"
        tool_block.input = {"command": "pytest"}
        assistant = MagicMock(spec=AssistantMessage)
        assistant.content = [text_block, tool_block]
        result = MagicMock(spec=ResultMessage)
        result.is_error = False
        result.result = "All done"

        seen = {}

        async def fake_query(prompt, options):
            seen["prompt"] = prompt
            seen["options"] = options
            yield assistant
            yield result

        callback = MagicMock()
        agent = ClaudeSdkAgent(streaming_callback=callback)
        with patch("claude_agent_sdk.query", fake_query):
            output = agent.run("implement", workdir=tmp_path)

        assert output == "All done"
        assert seen["prompt"] == "implement"
        assert seen["options"].cwd == str(tmp_path)
        assert seen["options"].permission_mode == "bypassPermissions"
        callback.on_text.assert_called_once_with("Working on it")
        callback.on_tool_call.assert_called_once_with("Bash", {"command": "pytest"})

    def test_error_result_raises(self):
        """WHEN the SDK reports an error result THEN AgentInvocationFailed is raised."""
        from claude_agent_sdk.types import ResultMessage

        result = MagicMock(spec=ResultMessage)
        result.is_error = True
        result.subtype = "error_max_turns"
        result.result = None

        async def fake_query(prompt, options):
            yield result

        with patch("claude_agent_sdk.query", fake_query):
            with pytest.raises(AgentInvocationFailed) as exc_info:
                ClaudeSdkAgent().run("implement")
        assert "error_max_turns" in str(exc_info.value)


class TestStreamingCallback:
    """Tests for the console streaming callback."""

    def test_describe_bash(self):
        assert describe_tool_call("Bash", {"command": "ls"}) == "▶ Bash: [dim]ls[/dim]"

    def test_describe_long_command_is_truncated(self):
        description = describe_tool_call("Bash", {"command": "x" * 100})
        assert "x" * 60 + "..." in description

    def test_describe_file_tool(self):
        assert describe_tool_call("Edit", {"file_path": "a.py"}) == "▶ Edit: [dim]a.py[/dim]"

    def test_counts_tool_calls(self):
        out = Console(record=True, width=120)
        callback = StreamingCallback(out=out)
        callback.on_tool_call("Read", {"file_path": "a.py"})
        callback.on_tool_call("Grep", {"pattern": "TODO"})
        assert callback.tool_call_count == 2
        assert "a.py" in out.export_text()

    def test_text_only_when_verbose(self):
        """WHEN not verbose THEN agent text is not printed."""
        quiet_out = Console(record=True, width=120)
        StreamingCallback(verbose=False, out=quiet_out).on_text("hidden")
        assert "hidden" not in quiet_out.export_text()

        loud_out = Console(record=True, width=120)
        StreamingCallback(verbose=True, out=loud_out).on_text("shown")
        assert "shown" in loud_out.export_text()
