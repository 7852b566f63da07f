"""Process Runner — runs one CLI command per tool call.

Each call gets its own process group so a timeout or output overflow can
terminate the whole subtree, including grandchildren spawned by wrapper
scripts.
"""

from mcp_agents.process_runner.errors import (
    ExitError,
    OutputLimitError,
    ProcessTimeoutError,
    RunError,
    SpawnError,
)
from mcp_agents.process_runner.runner import (
    MAX_BUFFER_BYTES,
    ProcessResult,
    child_env,
    describe_exit,
    exit_status,
    kill_group,
    run_process,
)

__all__ = [
    "MAX_BUFFER_BYTES",
    "ExitError",
    "OutputLimitError",
    "ProcessResult",
    "ProcessTimeoutError",
    "RunError",
    "SpawnError",
    "child_env",
    "describe_exit",
    "exit_status",
    "kill_group",
    "run_process",
]
