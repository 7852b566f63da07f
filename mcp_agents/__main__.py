"""Entry point.

Usage:
    mcp-agents [--provider claude|gemini|codex] [--model M]
               [--model_reasoning_effort E] [--sandbox true|false]
               [--timeout MS]

claude and gemini are served as MCP tools by this process; codex runs its
own MCP server with our stdio handed straight to it.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from collections.abc import Sequence
from typing import Any

from .backends import CodexMcpServer, create_backend
from .config import Config
from .orchestrator import Orchestrator
from .passthrough import PassthroughSession
from .server import serve

log = logging.getLogger(__name__)


async def _run(config: Config) -> int:
    loop = asyncio.get_running_loop()
    unhandled: list[dict[str, Any]] = []

    def _on_unhandled(_loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        unhandled.append(context)
        log.error(
            "Unhandled error: %s", context.get("message"),
            exc_info=context.get("exception"),
        )

    loop.set_exception_handler(_on_unhandled)

    if config.passthrough:
        codex = CodexMcpServer(
            model=config.model,
            reasoning_effort=config.reasoning_effort,
        )
        session = PassthroughSession(codex.command, codex.build_args())
        return await session.run()

    backend = create_backend(config)
    orchestrator = Orchestrator(backend, default_timeout_ms=config.timeout_ms)

    # Cancel the server on SIGTERM/SIGHUP so in-flight process groups are
    # killed by the runner's cleanup instead of being orphaned.
    received: list[int] = []
    main_task = asyncio.current_task()

    def _shutdown(signum: int) -> None:
        log.info("received %s, shutting down", signal.Signals(signum).name)
        received.append(signum)
        if main_task is not None:
            main_task.cancel()

    for sig in (signal.SIGTERM, signal.SIGHUP):
        loop.add_signal_handler(sig, _shutdown, sig)

    try:
        await serve(orchestrator, config.provider)
    except asyncio.CancelledError:
        if not received:
            raise
        return 128 + received[0]
    return 1 if unhandled else 0


def main(argv: Sequence[str] | None = None) -> None:
    config = Config.from_args(argv)

    logging.basicConfig(
        level=config.log_level,
        format="[mcp-agents] %(message)s",
        stream=sys.stderr,
    )

    try:
        status = asyncio.run(_run(config))
    except KeyboardInterrupt:
        status = 128 + signal.SIGINT
    except Exception:
        log.exception("Fatal error")
        status = 1
    sys.exit(status)


if __name__ == "__main__":
    main()
