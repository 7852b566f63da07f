"""Output Normalizer — decodes a backend's structured result envelope.

Only Claude Code has one: ``--output-format json`` prints a single object
such as ``{"type": "result", "is_error": false, "result": "..."}``.  The
envelope is best effort; anything that does not look like it is passed
through as plain text.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from .backends import BACKENDS
from .models import NormalizedOutput

log = logging.getLogger(__name__)


def normalize(provider: str, raw_output: str) -> NormalizedOutput:
    backend_cls = BACKENDS.get(provider)
    if backend_cls is None or not backend_cls.json_envelope:
        return NormalizedOutput(text=raw_output)
    return _decode_result_envelope(raw_output)


def _decode_result_envelope(raw_output: str) -> NormalizedOutput:
    text = raw_output.strip()
    if not text:
        # Ran cleanly but said nothing; the retry policy decides what that means
        return NormalizedOutput(text="")

    try:
        envelope = json.loads(text)
    except json.JSONDecodeError:
        log.debug("output is not a JSON envelope, passing through as text")
        return NormalizedOutput(text=raw_output)

    if not isinstance(envelope, dict) or envelope.get("type") != "result":
        return NormalizedOutput(text=raw_output)

    return NormalizedOutput(
        text=_stringify(envelope.get("result")),
        is_error=envelope.get("is_error") is True,
    )


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value)
