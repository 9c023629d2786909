"""Provider-agnostic LLM client interface.

The re-cluster engine and the merge analyzer only need one capability from a
model provider: send a prompt, get text back. Anything implementing LLMClient
can drive them.
"""

from __future__ import annotations

import json
import re
from typing import Any, Protocol

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


class LLMClient(Protocol):
    """Provider-agnostic interface for LLM calls."""

    def call(self, prompt: str, *, json_mode: bool = False) -> str:
        """Make an LLM call and return the raw response text.

        Args:
            prompt: The full prompt text to send.
            json_mode: If True, request JSON-formatted output.

        Returns:
            Raw response string from the LLM.

        Raises:
            RuntimeError: If the provider call fails.
        """
        ...


def parse_json_reply(raw: str) -> Any:
    """Parse the JSON object out of a model reply.

    Models wrap JSON in code fences or surround it with prose. The first
    fenced block wins; otherwise the span from the first "{" to the last "}"
    is parsed.

    Raises:
        ValueError: If no parseable JSON is found.
    """
    text = raw.strip()
    fenced = _FENCED_BLOCK.search(text)
    if fenced:
        text = fenced.group(1).strip()
    else:
        start, end = text.find("{"), text.rfind("}")
        if start != -1 and end > start:
            text = text[start : end + 1]
    return json.loads(text)
