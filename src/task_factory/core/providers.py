"""Picking the agent CLI available on PATH and building its provider."""

import logging
import shutil

from task_factory.core.agents import AgentProvider
from task_factory.core.context import OrchestratorContext
from task_factory.integrations.claude import ClaudeProvider
from task_factory.integrations.codex import CodexProvider

logger = logging.getLogger(__name__)

CLI_NAMES = ("claude", "claude-code", "codex")

PROVIDERS: dict[str, type[AgentProvider]] = {
    "claude": ClaudeProvider,
    "claude-code": ClaudeProvider,
    "codex": CodexProvider,
}

_cli_cache: dict[tuple, tuple[str, str] | None] = {}


def find_agent_cli(
    names: tuple[str, ...] = CLI_NAMES,
    preferred: str | None = None,
) -> tuple[str, str] | None:
    """Return (name, path) of the first agent CLI found on PATH. Cached per lookup."""
    candidates = (preferred,) if preferred else names
    key = tuple(candidates)
    if key in _cli_cache:
        return _cli_cache[key]
    found = None
    for name in candidates:
        path = shutil.which(name)
        if path:
            found = (name, path)
            break
    _cli_cache[key] = found
    return found


def clear_cache() -> None:
    _cli_cache.clear()


def get_provider(ctx: OrchestratorContext) -> AgentProvider | None:
    """Build the provider for the configured or first available agent CLI."""
    config = ctx.config
    if config.provider and config.provider not in PROVIDERS:
        logger.error("unknown provider %s (known: %s)", config.provider, ", ".join(PROVIDERS))
        return None
    cli = find_agent_cli(preferred=config.provider)
    if not cli:
        tried = config.provider or ", ".join(CLI_NAMES)
        logger.error("no agent CLI found (tried: %s)", tried)
        return None
    name, path = cli
    cls = PROVIDERS[name]
    if cls is CodexProvider:
        models = [config.codex_model, *config.codex_fallback_models]
    else:
        models = [config.claude_model, *config.claude_fallback_models]
    provider = cls(
        path,
        models=list(dict.fromkeys(m for m in models if m)),
        timeout=config.timeout_seconds,
        heartbeat=config.heartbeat_seconds,
        kill_grace=config.kill_grace_seconds,
    )
    provider.name = name
    return provider
