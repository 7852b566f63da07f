"""Pass-through Session Manager — lets a native MCP server take our place.

The child inherits our stdin and stdout, so the client talks to it
directly and nothing here parses the protocol.  We only relay its stderr
to the log, forward termination signals, and mirror its exit status.
"""

from __future__ import annotations

import asyncio
import logging
import signal

from .process_runner import child_env, describe_exit, exit_status, kill_group

log = logging.getLogger(__name__)

FORWARDED_SIGNALS = tuple(
    getattr(signal, name)
    for name in ("SIGINT", "SIGTERM", "SIGHUP")
    if hasattr(signal, name)
)
DEFAULT_GRACE_SECONDS = 5.0
_STDERR_LINE_LIMIT = 1024 * 1024


def spawn_failure_status(exc: OSError) -> int:
    if isinstance(exc, FileNotFoundError):
        return 127
    if isinstance(exc, PermissionError):
        return 126
    return 1


class PassthroughSession:
    def __init__(
        self,
        command: str,
        args: list[str],
        *,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
    ) -> None:
        self.command = command
        self.args = list(args)
        self.grace_seconds = grace_seconds
        self._process: asyncio.subprocess.Process | None = None
        self._escalation: asyncio.Task[None] | None = None
        self._forced_signal: int | None = None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    async def run(self) -> int:
        """Run the child to completion and return the status to exit with."""
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                stderr=asyncio.subprocess.PIPE,
                env=child_env(),
                limit=_STDERR_LINE_LIMIT,
                # Own process group so a forced kill takes its helpers too
                start_new_session=True,
            )
        except OSError as exc:
            log.error("Failed to start %s: %s", self.command, exc)
            return spawn_failure_status(exc)

        process = self._process
        log.info("passing stdio through to %s (pid=%s)", self.command, process.pid)

        relay = asyncio.create_task(
            self._relay_stderr(process.stderr),  # type: ignore[arg-type]
            name=f"{self.command}-stderr",
        )

        loop = asyncio.get_running_loop()
        installed: list[int] = []
        for sig in FORWARDED_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.forward_signal, sig)
                installed.append(sig)
            except (NotImplementedError, RuntimeError):
                log.debug("cannot install handler for %s", sig)

        try:
            returncode = await process.wait()
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
            if self._escalation is not None:
                self._escalation.cancel()

        try:
            await asyncio.wait_for(relay, timeout=1.0)
        except asyncio.TimeoutError:
            log.debug("%s stderr still open after exit", self.command)

        if self._forced_signal is not None:
            return 128 + self._forced_signal

        log.info("%s exited (%s)", self.command, describe_exit(returncode))
        return exit_status(returncode)

    def forward_signal(self, signum: int) -> None:
        process = self._process
        if process is None or process.returncode is not None:
            return

        log.info("received %s, forwarding to %s", signal.Signals(signum).name, self.command)
        try:
            process.send_signal(signum)
        except ProcessLookupError:
            return

        if self._escalation is None:
            self._escalation = asyncio.create_task(
                self._escalate(signum), name=f"{self.command}-grace",
            )

    async def _escalate(self, signum: int) -> None:
        await asyncio.sleep(self.grace_seconds)
        process = self._process
        if process is None or process.returncode is not None:
            return
        log.warning(
            "%s still running %.1fs after %s, killing",
            self.command, self.grace_seconds, signal.Signals(signum).name,
        )
        self._forced_signal = signum
        kill_group(process)

    async def _relay_stderr(self, stream: asyncio.StreamReader) -> None:
        while True:
            try:
                raw_line = await stream.readline()
            except ValueError:
                log.debug("dropped an over-long stderr line from %s", self.command)
                continue
            if not raw_line:
                break
            line = raw_line.decode("utf-8", errors="replace").rstrip()
            if line:
                log.info("[%s] %s", self.command, line)
