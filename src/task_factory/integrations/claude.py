"""Claude Code CLI provider (stream-json output)."""

import logging

from task_factory.core.agents import AgentProvider, StreamState, progress, truncate

logger = logging.getLogger(__name__)

FILE_TOOLS = ("Read", "Write", "Edit", "NotebookEdit")
PATTERN_TOOLS = ("Glob", "Grep")


def tool_detail(name: str, tool_input: dict) -> str:
    """Short argument summary for a tool_use block."""
    if name in FILE_TOOLS:
        path = tool_input.get("file_path") or tool_input.get("notebook_path") or ""
        return path.rsplit("/", 1)[-1]
    if name in PATTERN_TOOLS:
        return tool_input.get("pattern", "")
    if name == "Bash":
        return truncate(tool_input.get("command", ""))
    return ""


class ClaudeProvider(AgentProvider):
    name = "claude"
    retryable_patterns = (
        "model_not_found",
        "not_found_error",
        "invalid model",
        "unknown model",
    )

    def build_command(self, prompt: str, allowed_tools: str, model: str | None) -> list[str]:
        cmd = [
            self.cli_path,
            "--dangerously-skip-permissions",
            "-p",
            "--verbose",
            "--output-format", "stream-json",
            "--allowedTools", allowed_tools,
        ]
        if model:
            cmd += ["--model", model]
        return cmd + ["--", prompt]

    def handle_event(self, event: dict, state: StreamState) -> None:
        etype = event.get("type", "")
        if event.get("session_id"):
            state.session_id = event["session_id"]
        if etype == "assistant":
            for block in (event.get("message") or {}).get("content") or []:
                if not isinstance(block, dict) or block.get("type") != "tool_use":
                    continue
                name = block.get("name", "")
                if not name:
                    continue
                detail = tool_detail(name, block.get("input") or {})
                if detail:
                    progress(f"  → {name.lower()}: {detail}")
                else:
                    progress(f"  → {name.lower()}")
        elif etype == "result":
            state.result = event
            if event.get("is_error"):
                logger.warning("claude reported an error result: %s", event.get("result", ""))
