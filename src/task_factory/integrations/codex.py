"""Codex CLI provider (exec --json output)."""

from task_factory.core.agents import AgentProvider, StreamState, progress, truncate

WRITE_TOOLS = ("Write", "Edit", "Bash")


def sandbox_mode(allowed_tools: str) -> str:
    """Codex has no tool allowlist; map the tool set onto its sandbox levels."""
    tools = {t.strip() for t in allowed_tools.split(",")}
    return "workspace-write" if tools.intersection(WRITE_TOOLS) else "read-only"


class CodexProvider(AgentProvider):
    name = "codex"
    retryable_patterns = (
        "does not exist or you do not have access",
        "model_not_found",
        "invalid model",
    )

    def build_command(self, prompt: str, allowed_tools: str, model: str | None) -> list[str]:
        cmd = [self.cli_path, "exec"]
        if model:
            cmd += ["--model", model]
        return cmd + ["--sandbox", sandbox_mode(allowed_tools), "--json", prompt]

    def handle_event(self, event: dict, state: StreamState) -> None:
        etype = event.get("type")
        item = event.get("item") or {}
        command = truncate(item.get("command") or "")

        if etype == "thread.started":
            state.session_id = event.get("thread_id") or state.session_id
        elif etype == "item.started":
            if command:
                progress(f"  → run: {command}")
        elif etype == "item.completed":
            exit_code = item.get("exit_code")
            if command:
                suffix = "" if exit_code == 0 else f" (exit {exit_code})"
                mark = "✓" if exit_code == 0 else "✗"
                progress(f"{mark} run {command}{suffix}")
                output = item.get("aggregated_output") or ""
                if output and exit_code != 0:
                    progress(output.rstrip("\n"))
            elif item.get("type") == "agent_message" and item.get("text"):
                progress(item["text"])
        elif etype == "turn.completed":
            state.result = event
        elif etype == "message":
            msg = event.get("content") or event.get("text") or ""
            if isinstance(msg, str) and msg:
                progress(msg)
