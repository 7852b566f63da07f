"""Failures raised by the process runner."""

from __future__ import annotations


class RunError(RuntimeError):
    """Subprocess execution error with retryability hint."""

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class SpawnError(RunError):
    """The executable could not be started at all."""


class OutputLimitError(RunError):
    def __init__(self, command: str, stream: str, limit: int) -> None:
        super().__init__(f"{command} failed: {stream} maxBuffer length exceeded ({limit} bytes)")
        self.command = command
        self.stream = stream
        self.limit = limit


class ProcessTimeoutError(RunError):
    def __init__(self, command: str, timeout_ms: int) -> None:
        super().__init__(
            f"{command} timed out after {timeout_ms}ms (process group killed)",
            transient=True,
        )
        self.command = command
        self.timeout_ms = timeout_ms


class ExitError(RunError):
    """Non-zero exit or death by signal."""

    def __init__(self, command: str, reason: str, stderr: str = "") -> None:
        details = f"{command} failed: {reason}"
        if stderr:
            details += f"\nstderr:\n{stderr}"
        super().__init__(details)
        self.command = command
        self.reason = reason
        self.stderr = stderr
