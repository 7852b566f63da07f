"""Backend Registry — one class per wrapped CLI.

Each tool backend knows its executable, the MCP tool name it is exposed
as, how the prompt reaches the child (stdin or argv), and which extra tool
arguments it understands.  Instances are built once at startup from the
immutable :class:`~mcp_agents.config.Config`.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, ClassVar

from .models import OptionSpec, PromptDelivery

if TYPE_CHECKING:
    from .config import Config

log = logging.getLogger(__name__)

DEFAULT_CODEX_MODEL = "gpt-5-codex"
DEFAULT_REASONING_EFFORT = "medium"


class Backend(ABC):
    provider_id: ClassVar[str]
    command: ClassVar[str]
    tool_name: ClassVar[str]
    description: ClassVar[str]
    prompt_delivery: ClassVar[PromptDelivery]
    # Claude Code prints a JSON result envelope (see normalizer)
    json_envelope: ClassVar[bool] = False
    # Attempts per invocation; >1 retries a clean exit with blank output
    max_attempts: ClassVar[int] = 1

    def __init__(self, *, model: str | None = None) -> None:
        self.model = model

    @property
    def options(self) -> Mapping[str, OptionSpec]:
        return {}

    @abstractmethod
    def build_args(self, prompt: str, options: Mapping[str, Any]) -> list[str]:
        """Argument list for one run.  Excludes the prompt for STDIN delivery."""
        ...

    def resolve_options(self, arguments: Mapping[str, Any]) -> dict[str, Any]:
        """Pick recognized options out of tool arguments, filling defaults."""
        resolved: dict[str, Any] = {}
        for name, spec in self.options.items():
            value = arguments.get(name)
            if value is None:
                resolved[name] = spec.default
            elif spec.type == "boolean" and not isinstance(value, bool):
                log.info(
                    "%s: ignoring non-boolean %s=%r, using default %r",
                    self.tool_name, name, value, spec.default,
                )
                resolved[name] = spec.default
            else:
                resolved[name] = value
        return resolved

    def stdin_payload(self, prompt: str) -> str | None:
        return prompt if self.prompt_delivery is PromptDelivery.STDIN else None

    def input_schema(self, default_timeout_ms: int) -> dict[str, Any]:
        properties: dict[str, Any] = {
            "prompt": {
                "type": "string",
                "description": f"Prompt for {self.command}",
            },
            "timeout_ms": {
                "type": "integer",
                "minimum": 1,
                "description": f"Optional timeout override (default {default_timeout_ms})",
            },
        }
        for name, spec in self.options.items():
            properties[name] = spec.schema()
        return {
            "type": "object",
            "additionalProperties": True,
            "properties": properties,
            "required": ["prompt"],
        }


class ClaudeBackend(Backend):
    provider_id = "claude"
    command = "claude"
    tool_name = "claude_code"
    description = "Run Claude Code CLI (claude -p) with a prompt."
    prompt_delivery = PromptDelivery.STDIN
    json_envelope = True
    # claude -p sometimes exits 0 with an empty result; one retry clears it
    max_attempts = 2

    def build_args(self, prompt: str, options: Mapping[str, Any]) -> list[str]:
        args = ["-p", "--no-session-persistence", "--output-format", "json"]
        if self.model:
            args.extend(["--model", self.model])
        return args


class GeminiBackend(Backend):
    provider_id = "gemini"
    command = "gemini"
    tool_name = "gemini"
    description = "Run Gemini CLI (gemini -p) with a prompt."
    prompt_delivery = PromptDelivery.ARGV

    def __init__(self, *, model: str | None = None, sandbox: bool = True) -> None:
        super().__init__(model=model)
        self._options = {
            "sandbox": OptionSpec(
                type="boolean",
                default=sandbox,
                description=f"Run in sandbox mode (-s flag). Defaults to {str(sandbox).lower()}.",
            ),
        }

    @property
    def options(self) -> Mapping[str, OptionSpec]:
        return self._options

    def build_args(self, prompt: str, options: Mapping[str, Any]) -> list[str]:
        args: list[str] = []
        if self.model:
            args.extend(["-m", self.model])
        if options.get("sandbox") is True:
            args.append("-s")
        args.extend(["-p", prompt])
        return args


class CodexMcpServer:
    """Codex speaks MCP natively (``codex mcp-server``) and is passed through."""

    provider_id = "codex"
    command = "codex"

    # Never exposed to callers: they bound what codex may do unattended
    SAFETY_OVERRIDES = (
        ("sandbox_mode", "read-only"),
        ("approval_policy", "never"),
    )

    def __init__(
        self,
        *,
        model: str | None = None,
        reasoning_effort: str | None = None,
    ) -> None:
        self.model = model or DEFAULT_CODEX_MODEL
        self.reasoning_effort = reasoning_effort or DEFAULT_REASONING_EFFORT

    def build_args(self) -> list[str]:
        overrides = [
            ("model", self.model),
            ("model_reasoning_effort", self.reasoning_effort),
            *self.SAFETY_OVERRIDES,
        ]
        args = ["mcp-server"]
        for key, value in overrides:
            args.extend(["-c", f'{key}="{value}"'])
        return args


BACKENDS: dict[str, type[Backend]] = {
    ClaudeBackend.provider_id: ClaudeBackend,
    GeminiBackend.provider_id: GeminiBackend,
}
PASSTHROUGH_PROVIDERS = (CodexMcpServer.provider_id,)
PROVIDERS = (*BACKENDS, *PASSTHROUGH_PROVIDERS)


def create_backend(config: Config) -> Backend:
    """Instantiate the tool backend selected by ``config.provider``."""
    if config.provider == GeminiBackend.provider_id:
        return GeminiBackend(model=config.model, sandbox=config.sandbox)
    if config.provider == ClaudeBackend.provider_id:
        return ClaudeBackend(model=config.model)
    raise KeyError(f"No tool backend for provider '{config.provider}'")
