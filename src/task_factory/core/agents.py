"""Agent runner: launching an agent CLI, streaming its events and enforcing time limits.

Provider subclasses supply the command line and the event rendering; the
base class owns the process, the two pipe readers, the heartbeat, the
timeout and the model fallback loop.
"""

import json
import logging
import os
import queue
import shutil
import signal
import subprocess
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO

import click

from task_factory.core.personas import apply_persona
from task_factory.store.models import DEFAULT_TOOLS, AgentResult, Persona

logger = logging.getLogger(__name__)

STDOUT = "stdout"
STDERR = "stderr"


def progress(line: str) -> None:
    """Human-readable progress line on stderr."""
    click.echo(line, err=True)


def truncate(text: str, reserve: int = 22) -> str:
    """First line of text, clipped to the terminal width."""
    first = text.splitlines()[0] if text else ""
    width = max(20, shutil.get_terminal_size((80, 24)).columns - reserve)
    if len(first) > width:
        return first[:width] + "…"
    if first != text.strip():
        return first + " …"
    return first


def format_result(result: dict | None) -> str:
    """Format a result event like '(130.2s, $0.3683)'."""
    if not result:
        return ""
    parts = []
    dur = result.get("duration_ms")
    cost = result.get("cost_usd") or result.get("total_cost_usd")
    if dur:
        parts.append(f"{dur / 1000:.1f}s")
    if cost:
        parts.append(f"${cost:.4f}")
    return f"({', '.join(parts)})" if parts else ""


@contextmanager
def open_run_log(path: Path, task_name: str | None = None):
    """Truncate the run log and write the marker line for this invocation."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        if task_name:
            f.write(json.dumps({"type": "_factory", "task": task_name, "time": time.ctime()}) + "\n")
            f.flush()
        yield f


@dataclass
class StreamState:
    """What one attempt has learned from the event stream so far."""

    session_id: str | None = None
    result: dict | None = None
    garbage: list[str] = field(default_factory=list)


def _pump(stream: IO[bytes], source: str, events: queue.Queue) -> None:
    for raw in iter(stream.readline, b""):
        events.put((source, raw))
    events.put((source, None))


class AgentProvider:
    """Base class for agent CLIs that emit one JSON event per stdout line."""

    name = "agent"
    retryable_patterns: tuple[str, ...] = ()

    def __init__(
        self,
        cli_path: str,
        models: list[str] | None = None,
        timeout: float | None = None,
        heartbeat: float = 15.0,
        kill_grace: float = 5.0,
    ):
        self.cli_path = cli_path
        self.models = list(models or [])
        self.timeout = timeout
        self.heartbeat = heartbeat
        self.kill_grace = kill_grace

    # ── provider hooks ──────────────────────────────────────────────────────

    def build_command(self, prompt: str, allowed_tools: str, model: str | None) -> list[str]:
        raise NotImplementedError

    def handle_event(self, event: dict, state: StreamState) -> None:
        raise NotImplementedError

    def is_retryable(self, stderr_text: str) -> bool:
        lowered = stderr_text.lower()
        return any(pattern in lowered for pattern in self.retryable_patterns)

    # ── invocation ──────────────────────────────────────────────────────────

    def invoke(
        self,
        prompt: str,
        allowed_tools: str = DEFAULT_TOOLS,
        persona: Persona | None = None,
        cwd: str | Path | None = None,
        run_log: IO[str] | None = None,
    ) -> AgentResult:
        """Run the agent to completion, trying fallback models on retryable failures."""
        full_prompt, tools = apply_persona(prompt, allowed_tools, persona)
        candidates = self.models or [None]
        result = AgentResult(ok=False)

        for i, model in enumerate(candidates):
            label = f"{self.name} ({model})" if model else self.name
            progress(f"  → using: {label}")
            cmd = self.build_command(full_prompt, tools, model)
            result = self._run_once(cmd, cwd, run_log)
            result.model = model
            if result.ok or result.timed_out or result.interrupted:
                return result
            stderr_text = "\n".join(result.stderr)
            if self.is_retryable(stderr_text) and i + 1 < len(candidates):
                logger.warning("%s model unavailable: %s, trying fallback", self.name, model)
                continue
            if self.is_retryable(stderr_text):
                logger.error("%s failed for all configured models", self.name)
            else:
                logger.error("%s failed with exit code %s", self.name, result.exit_code)
            self._dump_debug(result)
            return result

        return result

    def _run_once(
        self,
        cmd: list[str],
        cwd: str | Path | None,
        run_log: IO[str] | None,
    ) -> AgentResult:
        try:
            proc = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                start_new_session=True,
                cwd=cwd,
            )
        except OSError as e:
            logger.error("could not start %s: %s", cmd[0], e)
            return AgentResult(ok=False, stderr=[str(e)])

        events: queue.Queue = queue.Queue()
        readers = [
            threading.Thread(target=_pump, args=(proc.stdout, STDOUT, events), daemon=True),
            threading.Thread(target=_pump, args=(proc.stderr, STDERR, events), daemon=True),
        ]
        for reader in readers:
            reader.start()

        state = StreamState()
        stderr_lines: list[str] = []
        start = time.monotonic()
        deadline = start + self.timeout if self.timeout else None
        next_heartbeat = start + self.heartbeat
        open_streams = len(readers)
        exited_at = None
        timed_out = interrupted = False

        try:
            while open_streams:
                now = time.monotonic()
                if deadline and now >= deadline:
                    self._kill(proc, f"exceeded {self.timeout:.0f}s timeout")
                    timed_out = True
                    break
                # a detached grandchild can hold the pipes open after the agent exits
                if proc.poll() is not None:
                    exited_at = exited_at or now
                    if now - exited_at > self.kill_grace:
                        self._kill(proc, "output left open after exit")
                        break
                wait = max(0.0, next_heartbeat - now)
                if deadline:
                    wait = min(wait, deadline - now)
                try:
                    source, raw = events.get(timeout=min(wait, 0.5))
                except queue.Empty:
                    if time.monotonic() >= next_heartbeat:
                        progress(f"still working… {int(time.monotonic() - start)}s")
                        next_heartbeat = time.monotonic() + self.heartbeat
                    continue

                next_heartbeat = time.monotonic() + self.heartbeat
                if raw is None:
                    open_streams -= 1
                    continue
                text = raw.decode(errors="replace").rstrip("\r\n")
                if source == STDERR:
                    if text.strip():
                        stderr_lines.append(text)
                    continue
                self._consume_stdout(text.strip(), state, run_log)
        except KeyboardInterrupt:
            self._kill(proc, "interrupted")
            interrupted = True
            progress("task stopped")
        except BaseException:
            # the agent runs in its own session, so a signal to the runner never reaches it
            self._kill(proc, "runner exiting")
            for reader in readers:
                reader.join(timeout=self.kill_grace)
            raise

        exit_code = proc.wait()
        for reader in readers:
            reader.join(timeout=self.kill_grace)

        return AgentResult(
            ok=exit_code == 0 and not timed_out and not interrupted,
            session_id=state.session_id or (state.result or {}).get("session_id"),
            exit_code=exit_code,
            timed_out=timed_out,
            interrupted=interrupted,
            result=state.result,
            stderr=stderr_lines,
            garbage=state.garbage,
        )

    def _consume_stdout(self, text: str, state: StreamState, run_log: IO[str] | None) -> None:
        if not text:
            return
        if run_log:
            run_log.write(text + "\n")
            run_log.flush()
        try:
            event = json.loads(text)
        except ValueError:
            state.garbage.append(text)
            return
        if not isinstance(event, dict):
            state.garbage.append(text)
            return
        self.handle_event(event, state)

    def _kill(self, proc: subprocess.Popen, reason: str) -> None:
        """Terminate the agent's process group, then force-kill after the grace period."""
        logger.warning("killing agent (%s)", reason)
        try:
            os.killpg(proc.pid, signal.SIGTERM)
        except ProcessLookupError:
            return
        try:
            proc.wait(timeout=self.kill_grace)
        except subprocess.TimeoutExpired:
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
            proc.wait()

    def _dump_debug(self, result: AgentResult) -> None:
        if result.stderr:
            progress(f"--- {self.name} stderr ---")
            for line in result.stderr:
                progress(line)
            progress("--- end ---")
        if result.garbage:
            progress(f"--- {self.name} stdout garbage ---")
            for line in result.garbage:
                progress(line)
            progress("--- end ---")
