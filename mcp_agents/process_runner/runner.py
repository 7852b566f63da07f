"""Spawn a CLI command, feed it a prompt, and collect bounded output."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from dataclasses import dataclass, field

from mcp_agents.process_runner.errors import (
    ExitError,
    OutputLimitError,
    ProcessTimeoutError,
    SpawnError,
)

log = logging.getLogger(__name__)

MAX_BUFFER_BYTES = 10 * 1024 * 1024
_CHUNK_SIZE = 64 * 1024
# How long to wait for a SIGKILLed group to be reaped
_REAP_TIMEOUT = 5.0


@dataclass
class ProcessResult:
    """Outcome of a clean (exit 0) run."""

    output: str
    stdout_bytes: int
    stderr_bytes: int
    duration_ms: int


@dataclass
class StreamCapture:
    """Accumulates one output stream, refusing to grow past ``limit`` bytes."""

    command: str
    stream: str
    limit: int = MAX_BUFFER_BYTES
    size: int = 0
    _chunks: list[bytes] = field(default_factory=list)

    def append(self, data: bytes) -> None:
        self.size += len(data)
        if self.size > self.limit:
            raise OutputLimitError(self.command, self.stream, self.limit)
        self._chunks.append(data)

    def text(self) -> str:
        return b"".join(self._chunks).decode("utf-8", errors="replace")


def child_env() -> dict[str, str]:
    """Host environment with colour output disabled."""
    env = os.environ.copy()
    env["NO_COLOR"] = "1"
    return env


def describe_exit(returncode: int) -> str:
    if returncode < 0:
        try:
            name = signal.Signals(-returncode).name
        except ValueError:
            name = str(-returncode)
        return f"killed by signal {name}"
    return f"exit code {returncode}"


def exit_status(returncode: int) -> int:
    """Shell-style status: the exit code, or 128 + signal number."""
    return 128 - returncode if returncode < 0 else returncode


async def run_process(
    command: str,
    args: list[str],
    *,
    timeout_ms: int,
    input_payload: str | None = None,
) -> ProcessResult:
    """Run ``command`` to completion inside its own process group.

    The prompt (if any) is written to stdin, which is then closed so the
    child never blocks waiting for more input.  stdout and stderr are
    collected separately up to ``MAX_BUFFER_BYTES`` each.

    Raises:
        SpawnError: the executable could not be started.
        OutputLimitError: a stream exceeded the byte ceiling.
        ProcessTimeoutError: ``timeout_ms`` elapsed before the child exited.
        ExitError: non-zero exit status or death by signal.
    """
    started = time.monotonic()
    try:
        process = await asyncio.create_subprocess_exec(
            command,
            *args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=child_env(),
            # New session/process group so the whole tree can be killed
            start_new_session=True,
        )
    except (OSError, ValueError) as exc:
        # ValueError: argv or env the OS cannot accept (e.g. an embedded NUL)
        raise SpawnError(f"Failed to start {command}: {exc}") from exc

    log.debug("spawned %s (pid=%s, timeout=%dms)", command, process.pid, timeout_ms)

    stdout = StreamCapture(command, "stdout")
    stderr = StreamCapture(command, "stderr")
    tasks = [
        asyncio.create_task(
            _feed_stdin(process.stdin, input_payload),  # type: ignore[arg-type]
            name=f"{command}-stdin",
        ),
        asyncio.create_task(
            _read_stream(process.stdout, stdout),  # type: ignore[arg-type]
            name=f"{command}-stdout",
        ),
        asyncio.create_task(
            _read_stream(process.stderr, stderr),  # type: ignore[arg-type]
            name=f"{command}-stderr",
        ),
    ]

    finished = False
    try:
        returncode = await asyncio.wait_for(
            _communicate(process, tasks), timeout=timeout_ms / 1000
        )
        finished = True
    except asyncio.TimeoutError:
        log.warning(
            "%s (pid=%s) exceeded %dms, killing process group",
            command, process.pid, timeout_ms,
        )
        raise ProcessTimeoutError(command, timeout_ms) from None
    except OutputLimitError as exc:
        log.warning("%s (pid=%s): %s", command, process.pid, exc)
        raise
    finally:
        # Always sweep the group: descendants may outlive a clean exit
        kill_group(process)
        if not finished:
            await _abort(process, tasks)

    duration_ms = int((time.monotonic() - started) * 1000)
    if returncode != 0:
        raise ExitError(command, describe_exit(returncode), stderr.text().strip())

    return ProcessResult(
        output=(stdout.text() or stderr.text()).rstrip(),
        stdout_bytes=stdout.size,
        stderr_bytes=stderr.size,
        duration_ms=duration_ms,
    )


# ------------------------------------------------------------------
# Internal helpers
# ------------------------------------------------------------------

async def _communicate(
    process: asyncio.subprocess.Process,
    tasks: list[asyncio.Task[None]],
) -> int:
    await asyncio.gather(*tasks)
    return await process.wait()


async def _feed_stdin(stdin: asyncio.StreamWriter, payload: str | None) -> None:
    try:
        if payload is not None:
            stdin.write(payload.encode("utf-8"))
            await stdin.drain()
    except (BrokenPipeError, ConnectionResetError):
        log.debug("child closed stdin before reading the full prompt")
    finally:
        stdin.close()


async def _read_stream(stream: asyncio.StreamReader, capture: StreamCapture) -> None:
    while True:
        chunk = await stream.read(_CHUNK_SIZE)
        if not chunk:
            break
        capture.append(chunk)


def kill_group(process: asyncio.subprocess.Process) -> None:
    """SIGKILL every process in the group led by ``process``."""
    if hasattr(os, "killpg"):
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass
        return
    # No process groups on this platform: only the direct child is reachable
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass


async def _abort(
    process: asyncio.subprocess.Process,
    tasks: list[asyncio.Task[None]],
) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)

    # The pipes must reach EOF before wait() resolves, so keep draining
    # whatever the killed group left behind.
    async def _discard(stream: asyncio.StreamReader | None) -> None:
        if stream is None:
            return
        while await stream.read(_CHUNK_SIZE):
            pass

    try:
        await asyncio.wait_for(
            asyncio.gather(
                _discard(process.stdout),
                _discard(process.stderr),
                process.wait(),
            ),
            timeout=_REAP_TIMEOUT,
        )
    except asyncio.TimeoutError:
        log.warning("pid %s still not reaped %.0fs after SIGKILL", process.pid, _REAP_TIMEOUT)
