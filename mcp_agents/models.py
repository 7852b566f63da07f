from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any


# ---------------------------------------------------------------------------
# Backend description types
# ---------------------------------------------------------------------------

class PromptDelivery(enum.Enum):
    STDIN = "stdin"   # prompt piped to the child's standard input
    ARGV = "argv"     # prompt embedded in the argument list


@dataclass(frozen=True)
class OptionSpec:
    """A backend-specific tool argument and its default."""

    type: str
    default: Any
    description: str = ""

    def schema(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "default": self.default,
            "description": self.description,
        }


# ---------------------------------------------------------------------------
# Per-invocation values
# ---------------------------------------------------------------------------

@dataclass
class InvocationRequest:
    tool_name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NormalizedOutput:
    text: str
    is_error: bool = False


@dataclass(frozen=True)
class ToolResponse:
    """What the MCP layer sends back for one tool call."""

    text: str
    is_error: bool = False

    @classmethod
    def error(cls, text: str) -> ToolResponse:
        return cls(text=text, is_error=True)
