"""The value threaded from step to step during a run."""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True)
class TextContext:
    value: str

    def as_text(self) -> str:
        return self.value

    def as_inline_text(self) -> str:
        return self.value

    def as_code_input(self) -> Any:
        # Code fragments always see a structured value.
        return {"input": self.value}


@dataclass(frozen=True)
class StructuredContext:
    value: Any

    def as_text(self) -> str:
        return json.dumps(self.value, indent=2, ensure_ascii=False, default=str)

    def as_inline_text(self) -> str:
        return json.dumps(self.value, ensure_ascii=False, separators=(",", ":"), default=str)

    def as_code_input(self) -> Any:
        return self.value


Context = Union[TextContext, StructuredContext]


def context_of(value: Any) -> Context:
    """Wrap a raw value in the matching context variant."""
    if isinstance(value, (TextContext, StructuredContext)):
        return value
    if value is None:
        return TextContext("")
    if isinstance(value, str):
        return TextContext(value)
    return StructuredContext(value)


def parse_response_body(text: str) -> Context:
    """JSON bodies become structured context, anything else stays text."""
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError):
        return TextContext(text)
    if isinstance(parsed, str):
        return TextContext(parsed)
    return StructuredContext(parsed)
