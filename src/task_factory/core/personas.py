"""Agent personas: instruction documents in agents/ that shape how a task is run."""

import logging
from pathlib import Path

from task_factory.store.frontmatter import parse_frontmatter
from task_factory.store.models import Persona

logger = logging.getLogger(__name__)


def persona_name(ref: str) -> str:
    """agents/planner.md, planner.md or planner -> planner."""
    return Path(ref.strip()).stem if ref.strip() else ""


def load_persona(agents_dir: Path, ref: str) -> Persona | None:
    """Load agents/<name>.md. Files without a header are all prompt, no tool override."""
    name = persona_name(ref)
    if not name:
        return None
    path = agents_dir / f"{name}.md"
    if not path.exists():
        logger.warning("agent %s not found in %s", name, agents_dir)
        return None
    text = path.read_text(encoding="utf-8")
    parsed = parse_frontmatter(text)
    if not parsed:
        return Persona(name=name, prompt=text.strip())
    meta, body = parsed
    return Persona(name=name, prompt=body.strip(), tools=meta.get("tools") or None)


def apply_persona(prompt: str, allowed_tools: str, persona: Persona | None) -> tuple[str, str]:
    """Prepend the persona's text and let its tool list win."""
    if not persona:
        return prompt, allowed_tools
    tools = persona.tools or allowed_tools
    if not persona.prompt:
        return prompt, tools
    return f"{persona.prompt}\n\n---\n\n{prompt}", tools
