from __future__ import annotations

import asyncio
import os
import sys
import time
from collections.abc import Mapping
from typing import Any

from mcp_agents.backends import Backend
from mcp_agents.models import PromptDelivery
from mcp_agents.process_runner import ProcessResult


def python_script(code: str) -> tuple[str, list[str]]:
    """(command, args) running ``code`` in a fresh interpreter."""
    return sys.executable, ["-c", code]


def pid_alive(pid: int) -> bool:
    """True if ``pid`` exists and is not a zombie waiting to be reaped."""
    if os.path.isdir("/proc/self"):
        try:
            with open(f"/proc/{pid}/stat") as fh:
                state = fh.read().rsplit(")", 1)[1].split()[0]
        except FileNotFoundError:
            return False
        return state not in ("Z", "X")
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


async def wait_until_dead(pid: int, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if not pid_alive(pid):
            return True
        await asyncio.sleep(0.02)
    return not pid_alive(pid)


def make_result(output: str, *, stderr_bytes: int = 0) -> ProcessResult:
    return ProcessResult(
        output=output,
        stdout_bytes=len(output.encode()),
        stderr_bytes=stderr_bytes,
        duration_ms=5,
    )


class FakeRunner:
    """Stands in for run_process; replays queued results or exceptions."""

    def __init__(self, *outcomes: ProcessResult | Exception, clock: FakeClock | None = None,
                 advance: float = 0.0) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[dict[str, Any]] = []
        self.clock = clock
        self.advance = advance

    async def __call__(
        self,
        command: str,
        args: list[str],
        *,
        timeout_ms: int,
        input_payload: str | None = None,
    ) -> ProcessResult:
        self.calls.append({
            "command": command,
            "args": list(args),
            "timeout_ms": timeout_ms,
            "input_payload": input_payload,
        })
        if self.clock is not None:
            self.clock.now += self.advance
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


class ScriptBackend(Backend):
    """Runs an inline Python script as the 'CLI'."""

    provider_id = "script"
    command = sys.executable
    tool_name = "script"
    description = "Test backend running a Python snippet."
    prompt_delivery = PromptDelivery.STDIN

    def __init__(self, script: str) -> None:
        super().__init__()
        self.script = script

    def build_args(self, prompt: str, options: Mapping[str, Any]) -> list[str]:
        return ["-c", self.script]
