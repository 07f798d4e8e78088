"""Header codec for markdown records.

A record is a ``---`` marker line, ``key: value`` lines, a closing ``---``
line, then free-form body text. This is deliberately not YAML: values are
taken verbatim after the first colon.
"""

import os
import re
import tempfile
from pathlib import Path

MARKER = "---"

_SECTION_RE = re.compile(r"^##\s+(.+?)\s*$")


def _split(text: str) -> tuple[list[str], str] | None:
    lines = text.split("\n")
    if not lines or lines[0].strip() != MARKER:
        return None
    for end in range(1, len(lines)):
        if lines[end].strip() == MARKER:
            return lines[1:end], "\n".join(lines[end + 1:])
    return None


def parse_frontmatter(text: str) -> tuple[dict[str, str], str] | None:
    """Split text into (meta, body), or None if the header is missing or unterminated."""
    parts = _split(text)
    if parts is None:
        return None
    header, body = parts
    meta = {}
    for line in header:
        key, sep, value = line.partition(":")
        if sep and key.strip():
            meta[key.strip()] = value.strip()
    return meta, body


def render_frontmatter(meta: dict[str, str], body: str) -> str:
    lines = [f"{key}: {value}" for key, value in meta.items()]
    return "\n".join([MARKER, *lines, MARKER]) + "\n" + body


def update_frontmatter(text: str, **fields) -> str:
    """Rewrite named header fields in place; unknown keys are appended.

    Field order and the body are preserved exactly.
    """
    parts = _split(text)
    if parts is None:
        raise ValueError("record has no header")
    header, body = parts
    index = {}
    for i, line in enumerate(header):
        key, sep, _ = line.partition(":")
        if sep and key.strip():
            index[key.strip()] = i
    for key, value in fields.items():
        line = f"{key}: {value}"
        if key in index:
            header[index[key]] = line
        else:
            index[key] = len(header)
            header.append(line)
    return "\n".join([MARKER, *header, MARKER]) + "\n" + body


def split_sections(body: str) -> tuple[str, dict[str, str]]:
    """Split a body into its leading instruction text and ``## Section`` blocks.

    Section names are lower-cased.
    """
    sections: dict[str, str] = {}
    prompt_lines: list[str] = []
    current = None
    current_lines: list[str] = []
    for line in body.split("\n"):
        m = _SECTION_RE.match(line)
        if m:
            if current is not None:
                sections[current] = "\n".join(current_lines).strip()
            current = m.group(1).strip().lower()
            current_lines = []
        elif current is not None:
            current_lines.append(line)
        else:
            prompt_lines.append(line)
    if current is not None:
        sections[current] = "\n".join(current_lines).strip()
    return "\n".join(prompt_lines).strip(), sections


def write_atomic(path: Path, text: str) -> None:
    """Replace path with text without ever exposing a partial file."""
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
