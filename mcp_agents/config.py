from __future__ import annotations

import argparse
import os
from collections.abc import Sequence
from dataclasses import dataclass

from dotenv import load_dotenv

from . import __version__
from .backends import PASSTHROUGH_PROVIDERS, PROVIDERS

DEFAULT_PROVIDER = "codex"
DEFAULT_TIMEOUT_MS = 30_000
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        value = 0
    if value <= 0:
        raise argparse.ArgumentTypeError(f"--timeout must be a positive number, got {raw!r}")
    return value


def _bool_flag(raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    raise argparse.ArgumentTypeError(f"--sandbox must be true or false, got {raw!r}")


@dataclass(frozen=True)
class Config:
    """Startup settings.  Resolved once; never re-read per call."""

    provider: str = DEFAULT_PROVIDER
    model: str | None = None
    reasoning_effort: str | None = None
    sandbox: bool = True
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    log_level: str = "INFO"

    @property
    def passthrough(self) -> bool:
        return self.provider in PASSTHROUGH_PROVIDERS

    @classmethod
    def from_args(
        cls,
        argv: Sequence[str] | None = None,
        env_path: str | os.PathLike[str] | None = None,
    ) -> Config:
        """Parse command-line flags.

        ``MCP_AGENTS_*`` environment variables (optionally from a ``.env``
        file) supply the defaults; flags win.
        """
        load_dotenv(env_path)
        parser = build_parser()
        args = parser.parse_args(argv)
        # argparse does not check choices against defaults, which may come
        # from the environment
        if args.provider not in PROVIDERS:
            parser.error(
                f"invalid provider {args.provider!r} from MCP_AGENTS_PROVIDER "
                f"(choose from {', '.join(PROVIDERS)})"
            )
        if args.log_level not in LOG_LEVELS:
            parser.error(
                f"invalid log level {args.log_level!r} from MCP_AGENTS_LOG_LEVEL "
                f"(choose from {', '.join(LOG_LEVELS)})"
            )
        return cls(
            provider=args.provider,
            model=args.model,
            reasoning_effort=args.model_reasoning_effort,
            sandbox=args.sandbox,
            timeout_ms=args.timeout,
            log_level=args.log_level,
        )


def build_parser() -> argparse.ArgumentParser:
    env = os.environ
    parser = argparse.ArgumentParser(
        prog="mcp-agents",
        description="Expose a command-line AI assistant as an MCP server over stdio.",
    )
    parser.add_argument(
        "--provider", choices=PROVIDERS,
        default=env.get("MCP_AGENTS_PROVIDER", DEFAULT_PROVIDER),
        help=f"CLI backend to use (default: {DEFAULT_PROVIDER})",
    )
    parser.add_argument(
        "--model", default=env.get("MCP_AGENTS_MODEL") or None,
        help="Model override passed to the wrapped CLI",
    )
    parser.add_argument(
        "--model_reasoning_effort",
        default=env.get("MCP_AGENTS_REASONING_EFFORT") or None,
        help="Reasoning effort for codex (e.g. low, medium, high)",
    )
    parser.add_argument(
        "--sandbox", type=_bool_flag, metavar="true|false",
        default=env.get("MCP_AGENTS_SANDBOX", "true"),
        help="Default for the gemini sandbox option (default: true)",
    )
    parser.add_argument(
        "--timeout", type=_positive_int, metavar="MS",
        default=env.get("MCP_AGENTS_TIMEOUT_MS", str(DEFAULT_TIMEOUT_MS)),
        help=f"Default per-call timeout in milliseconds (default: {DEFAULT_TIMEOUT_MS})",
    )
    parser.add_argument(
        "--log-level", default=env.get("MCP_AGENTS_LOG_LEVEL", "INFO"),
        type=str.upper, choices=LOG_LEVELS,
        help="Diagnostic log level (logs go to stderr)",
    )
    parser.add_argument(
        "--version", "-v", action="version", version=f"mcp-agents v{__version__}",
    )
    return parser
