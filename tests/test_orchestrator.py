from __future__ import annotations

import asyncio
import json
import logging
import time

import pytest

from mcp_agents.backends import ClaudeBackend, GeminiBackend
from mcp_agents.models import InvocationRequest, ToolResponse
from mcp_agents.orchestrator import Orchestrator
from mcp_agents.process_runner import (
    ExitError,
    OutputLimitError,
    ProcessTimeoutError,
    SpawnError,
)
from tests.helpers import FakeClock, FakeRunner, ScriptBackend, make_result, pid_alive


def _claude_result(text: str, *, is_error: bool = False):
    return make_result(json.dumps({"type": "result", "is_error": is_error, "result": text}))


def _orchestrator(backend, runner, *, timeout_ms=30_000, clock=None) -> Orchestrator:
    kwargs = {"clock": clock} if clock is not None else {}
    return Orchestrator(backend, default_timeout_ms=timeout_ms, runner=runner, **kwargs)


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("arguments", [
        {},
        {"prompt": ""},
        {"prompt": "   \n\t"},
        {"prompt": None},
    ])
    async def test_blank_prompt_never_spawns(self, arguments):
        runner = FakeRunner()
        response = await _orchestrator(ClaudeBackend(), runner).invoke(arguments)

        assert response == ToolResponse.error("Missing required argument: prompt")
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_unrecognized_arguments_are_ignored_and_logged(self, caplog):
        runner = FakeRunner(make_result("4"))
        caplog.set_level(logging.INFO, logger="mcp_agents.orchestrator")

        response = await _orchestrator(GeminiBackend(), runner).invoke(
            {"prompt": "2+2", "temperature": 0.2, "cwd": "/tmp"}
        )

        assert response == ToolResponse(text="4")
        args = runner.calls[0]["args"]
        assert "temperature" not in " ".join(args)
        assert "/tmp" not in args
        assert "ignoring unrecognized argument 'cwd'" in caplog.text
        assert "ignoring unrecognized argument 'temperature'" in caplog.text
        assert caplog.text.count("'temperature'") == 1

    @pytest.mark.asyncio
    async def test_non_string_prompt_is_coerced(self):
        runner = FakeRunner(make_result("ok"))
        await _orchestrator(GeminiBackend(), runner).invoke({"prompt": 42})

        assert runner.calls[0]["args"][-2:] == ["-p", "42"]


class TestArguments:
    @pytest.mark.asyncio
    async def test_claude_gets_prompt_on_stdin(self):
        runner = FakeRunner(_claude_result("hi"))
        await _orchestrator(ClaudeBackend(), runner).invoke({"prompt": "say hi"})

        call = runner.calls[0]
        assert call["command"] == "claude"
        assert call["input_payload"] == "say hi"
        assert "say hi" not in call["args"]

    @pytest.mark.asyncio
    async def test_gemini_sandbox_default_and_override(self):
        runner = FakeRunner(make_result("a"), make_result("b"))
        orchestrator = _orchestrator(GeminiBackend(sandbox=True), runner)

        await orchestrator.invoke({"prompt": "q"})
        await orchestrator.invoke({"prompt": "q", "sandbox": False})

        assert runner.calls[0]["args"] == ["-s", "-p", "q"]
        assert runner.calls[0]["input_payload"] is None
        assert runner.calls[1]["args"] == ["-p", "q"]


class TestTimeoutBudget:
    @pytest.mark.parametrize("value, expected", [
        (250, 250),
        (250.0, 250),
        (0, 0),
        (-1, 30_000),
        (True, 30_000),
        ("250", 30_000),
        (None, 30_000),
        (1.5, 30_000),
    ])
    def test_resolve_timeout(self, value, expected):
        orchestrator = _orchestrator(GeminiBackend(), FakeRunner())

        assert orchestrator.resolve_timeout(value) == expected

    @pytest.mark.asyncio
    async def test_request_timeout_is_passed_to_runner(self):
        clock = FakeClock()
        runner = FakeRunner(make_result("ok"))
        await _orchestrator(GeminiBackend(), runner, clock=clock).invoke(
            {"prompt": "q", "timeout_ms": 1234}
        )

        assert runner.calls[0]["timeout_ms"] == 1234

    @pytest.mark.asyncio
    async def test_zero_budget_never_launches_an_attempt(self):
        runner = FakeRunner()
        response = await _orchestrator(ClaudeBackend(), runner).invoke(
            {"prompt": "q", "timeout_ms": 0}
        )

        assert response.is_error
        assert "timeout budget exhausted" in response.text
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_budget_shrinks_across_attempts(self):
        clock = FakeClock()
        runner = FakeRunner(_claude_result(""), _claude_result("done"), clock=clock, advance=0.4)

        response = await _orchestrator(ClaudeBackend(), runner, clock=clock).invoke(
            {"prompt": "q", "timeout_ms": 1000}
        )

        assert response == ToolResponse(text="done")
        assert [c["timeout_ms"] for c in runner.calls] == [1000, 600]

    @pytest.mark.asyncio
    async def test_exhausted_budget_stops_before_retry(self):
        clock = FakeClock()
        runner = FakeRunner(_claude_result(""), _claude_result("late"), clock=clock, advance=2.0)

        response = await _orchestrator(ClaudeBackend(), runner, clock=clock).invoke(
            {"prompt": "q", "timeout_ms": 1500}
        )

        assert response.is_error
        assert "timeout budget exhausted before retry" in response.text
        assert len(runner.calls) == 1


class TestRetryPolicy:
    @pytest.mark.asyncio
    async def test_two_empty_results_fail_after_exactly_two_attempts(self):
        runner = FakeRunner(_claude_result(""), make_result(""), _claude_result("never"))

        response = await _orchestrator(ClaudeBackend(), runner).invoke({"prompt": "q"})

        assert response.is_error
        assert "produced empty output despite a clean exit" in response.text
        assert len(runner.calls) == 2
        assert runner.calls[1]["input_payload"] == "q"

    @pytest.mark.asyncio
    async def test_first_non_blank_result_succeeds_after_one_attempt(self):
        runner = FakeRunner(_claude_result("4"), _claude_result("never"))

        response = await _orchestrator(ClaudeBackend(), runner).invoke({"prompt": "2+2"})

        assert response == ToolResponse(text="4")
        assert len(runner.calls) == 1

    @pytest.mark.asyncio
    async def test_retry_is_logged(self, caplog):
        caplog.set_level(logging.WARNING, logger="mcp_agents.orchestrator")
        runner = FakeRunner(make_result("", stderr_bytes=17), _claude_result("ok"))

        await _orchestrator(ClaudeBackend(), runner).invoke({"prompt": "q"})

        assert "claude: empty output on attempt 1/2" in caplog.text
        assert "stderr=17B" in caplog.text

    @pytest.mark.asyncio
    async def test_envelope_error_is_returned_without_retry(self):
        runner = FakeRunner(_claude_result("rate limited", is_error=True), _claude_result("ok"))

        response = await _orchestrator(ClaudeBackend(), runner).invoke({"prompt": "q"})

        assert response == ToolResponse.error("rate limited")
        assert len(runner.calls) == 1

    @pytest.mark.asyncio
    async def test_backend_without_retry_fails_after_one_empty_attempt(self):
        runner = FakeRunner(make_result("   "), make_result("never"))

        response = await _orchestrator(GeminiBackend(), runner).invoke({"prompt": "q"})

        assert response.is_error
        assert "(1 attempt)" in response.text
        assert len(runner.calls) == 1

    @pytest.mark.asyncio
    async def test_plain_text_from_claude_is_a_success(self):
        runner = FakeRunner(make_result("not json at all"))

        response = await _orchestrator(ClaudeBackend(), runner).invoke({"prompt": "q"})

        assert response == ToolResponse(text="not json at all")


class TestRunFailures:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        SpawnError("Failed to start claude: [Errno 2] No such file or directory"),
        OutputLimitError("claude", "stdout", 10),
        ExitError("claude", "exit code 1", "boom"),
    ])
    async def test_run_errors_become_tool_errors(self, error):
        runner = FakeRunner(error)

        response = await _orchestrator(ClaudeBackend(), runner).invoke({"prompt": "q"})

        assert response == ToolResponse.error(str(error))
        assert len(runner.calls) == 1


    @pytest.mark.asyncio
    async def test_prompt_the_os_rejects_becomes_a_spawn_error(self):
        # A NUL is valid JSON but cannot appear in an argv entry
        orchestrator = Orchestrator(GeminiBackend(), default_timeout_ms=1_000)

        response = await orchestrator.invoke({"prompt": "a\x00b"})

        assert response.is_error
        assert response.text.startswith("Failed to start gemini")

    @pytest.mark.asyncio
    async def test_timeout_error_reports_invocation_budget(self):
        runner = FakeRunner(ProcessTimeoutError("claude", 49))

        response = await _orchestrator(ClaudeBackend(), runner).invoke(
            {"prompt": "q", "timeout_ms": 50}
        )

        assert response.is_error
        assert "timed out after 49ms" in response.text
        assert "invocation budget 50ms" in response.text


class TestCallTool:
    @pytest.mark.asyncio
    async def test_ping_answers_pong_without_spawning(self):
        runner = FakeRunner()
        orchestrator = _orchestrator(ClaudeBackend(), runner, timeout_ms=1)

        response = await orchestrator.call_tool(
            InvocationRequest(tool_name="ping", arguments={"prompt": "ping"})
        )

        assert response == ToolResponse(text="pong")
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        response = await _orchestrator(ClaudeBackend(), FakeRunner()).call_tool(
            InvocationRequest(tool_name="gemini", arguments={"prompt": "q"})
        )

        assert response == ToolResponse.error("Unknown tool: gemini")

    @pytest.mark.asyncio
    async def test_backend_tool_is_dispatched(self):
        runner = FakeRunner(_claude_result("yes"))
        response = await _orchestrator(ClaudeBackend(), runner).call_tool(
            InvocationRequest(tool_name="claude_code", arguments={"prompt": "q"})
        )

        assert response == ToolResponse(text="yes")


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_slow_command_times_out_within_budget(self):
        backend = ScriptBackend("import time; time.sleep(0.5); print('too late')")
        orchestrator = Orchestrator(backend, default_timeout_ms=30_000)

        started = time.monotonic()
        response = await orchestrator.invoke({"prompt": "2+2", "timeout_ms": 50})
        elapsed = time.monotonic() - started

        assert response.is_error
        assert "timed out after" in response.text
        assert "invocation budget 50ms" in response.text
        assert elapsed < 0.3

    @pytest.mark.asyncio
    async def test_timed_out_command_leaves_no_process_behind(self, tmp_path):
        pid_file = tmp_path / "stub.pid"
        # The pid is written first thing; the budget leaves ample time for it
        backend = ScriptBackend(
            "import os, time\n"
            f"open({str(pid_file)!r}, 'w').write(str(os.getpid()))\n"
            "time.sleep(5)\n"
        )
        orchestrator = Orchestrator(backend, default_timeout_ms=30_000)

        started = time.monotonic()
        response = await orchestrator.invoke({"prompt": "2+2", "timeout_ms": 1_000})
        elapsed = time.monotonic() - started

        assert response.is_error
        assert "timed out after" in response.text
        assert elapsed < 1.5
        pid = int(pid_file.read_text())
        await asyncio.sleep(0.2)
        assert not pid_alive(pid)

    @pytest.mark.asyncio
    async def test_real_process_success(self):
        backend = ScriptBackend("import sys; print('echo: ' + sys.stdin.read())")
        orchestrator = Orchestrator(backend, default_timeout_ms=10_000)

        response = await orchestrator.invoke({"prompt": "hello"})

        assert response == ToolResponse(text="echo: hello")
