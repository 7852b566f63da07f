"""Invocation Orchestrator — turns one tool call into one or more CLI runs."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from .backends import Backend
from .models import InvocationRequest, ToolResponse
from .normalizer import normalize
from .process_runner import ProcessResult, ProcessTimeoutError, RunError, run_process

log = logging.getLogger(__name__)

PING_TOOL = "ping"
# Arguments every backend tool accepts besides its own options
COMMON_ARGUMENTS = frozenset({"prompt", "timeout_ms"})

Runner = Callable[..., Awaitable[ProcessResult]]


def _to_str(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    return str(value)


class Orchestrator:
    """Runs tool calls against a single backend.

    Holds no per-call state: every invocation computes its own deadline, so
    concurrent calls never interfere.
    """

    def __init__(
        self,
        backend: Backend,
        *,
        default_timeout_ms: int,
        runner: Runner = run_process,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.backend = backend
        self.default_timeout_ms = default_timeout_ms
        self._runner = runner
        self._clock = clock

    async def call_tool(self, request: InvocationRequest) -> ToolResponse:
        if request.tool_name == PING_TOOL:
            return ToolResponse(text="pong")
        if request.tool_name != self.backend.tool_name:
            return ToolResponse.error(f"Unknown tool: {request.tool_name}")
        return await self.invoke(request.arguments)

    def resolve_timeout(self, value: Any) -> int:
        """Request-supplied budget if it is a non-negative integer, else the default."""
        if isinstance(value, bool):
            return self.default_timeout_ms
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        if isinstance(value, int) and value >= 0:
            return value
        return self.default_timeout_ms

    async def invoke(self, arguments: Mapping[str, Any]) -> ToolResponse:
        backend = self.backend
        command = backend.command

        prompt = _to_str(arguments.get("prompt"))
        if not prompt.strip():
            return ToolResponse.error("Missing required argument: prompt")

        for key in sorted(set(arguments) - COMMON_ARGUMENTS - set(backend.options)):
            log.info("%s: ignoring unrecognized argument '%s'", backend.tool_name, key)

        options = backend.resolve_options(arguments)
        args = backend.build_args(prompt, options)
        payload = backend.stdin_payload(prompt)

        budget_ms = self.resolve_timeout(arguments.get("timeout_ms"))
        started = self._clock()
        deadline = started + budget_ms / 1000
        max_attempts = backend.max_attempts

        for attempt in range(1, max_attempts + 1):
            remaining_ms = int((deadline - self._clock()) * 1000)
            if remaining_ms <= 0:
                log.warning(
                    "%s: %dms budget used up before attempt %d/%d",
                    command, budget_ms, attempt, max_attempts,
                )
                return ToolResponse.error(
                    f"{command}: timeout budget exhausted before retry "
                    f"(attempt {attempt} of {max_attempts}, budget {budget_ms}ms)"
                )

            log.info(
                "tools/call: running %s (attempt %d/%d, timeout %dms)",
                command, attempt, max_attempts, remaining_ms,
            )
            try:
                result = await self._runner(
                    command, args, timeout_ms=remaining_ms, input_payload=payload,
                )
            except ProcessTimeoutError as exc:
                log.error("%s (invocation budget %dms)", exc, budget_ms)
                return ToolResponse.error(f"{exc}; invocation budget {budget_ms}ms")
            except RunError as exc:
                log.error("%s", exc)
                return ToolResponse.error(str(exc))

            normalized = normalize(backend.provider_id, result.output)
            if normalized.is_error:
                log.warning("%s reported an error result", command)
                return ToolResponse.error(normalized.text or f"{command} reported an error")

            if normalized.text.strip():
                log.info("tools/call: done (%s, %dms)", command, result.duration_ms)
                return ToolResponse(text=normalized.text)

            if attempt < max_attempts:
                log.warning(
                    "%s: empty output on attempt %d/%d after %dms "
                    "(stdout=%dB, stderr=%dB), retrying",
                    backend.provider_id, attempt, max_attempts,
                    int((self._clock() - started) * 1000),
                    result.stdout_bytes, result.stderr_bytes,
                )

        log.error("%s: empty output after %d attempts", command, max_attempts)
        return ToolResponse.error(
            f"{command} produced empty output despite a clean exit "
            f"({max_attempts} attempt{'s' if max_attempts != 1 else ''})"
        )
