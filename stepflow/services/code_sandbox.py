"""
Code step runner.

User fragments are Python function bodies. They see exactly two names:
`_input` (items accessor: `_input.first()`, `_input.all()`, `_input.item`)
and `_json` (the raw input). Whatever the fragment returns becomes the new
context.

This is a scoping mechanism, not a security sandbox. The fragment runs in
this process with a reduced builtins table; anyone who can author a code
step can execute arbitrary code on the host.
"""
from __future__ import annotations

import ast
import builtins
import logging
import textwrap
from abc import ABC, abstractmethod
from typing import Any

from stepflow.core.exceptions import CodeExecutionError

logger = logging.getLogger(__name__)

FRAGMENT_FUNCTION = "__workflow_code__"

ALLOWED_BUILTINS = (
    "abs", "all", "any", "bool", "dict", "divmod", "enumerate", "filter", "float",
    "format", "frozenset", "int", "isinstance", "len", "list", "map", "max", "min",
    "next", "range", "repr", "reversed", "round", "set", "sorted", "str", "sum",
    "tuple", "zip", "print", "Exception", "ValueError", "TypeError", "KeyError",
    "IndexError", "AttributeError",
)


class InputItems:
    """n8n-style accessor over the single input item."""

    def __init__(self, value: Any) -> None:
        self._value = value

    def first(self) -> dict[str, Any]:
        return {"json": self._value}

    def all(self) -> list[dict[str, Any]]:
        return [{"json": self._value}]

    @property
    def item(self) -> dict[str, Any]:
        return {"json": self._value}


class CodeSandbox(ABC):
    """Executes a user code fragment against an input value."""

    @abstractmethod
    def run(self, code_source: str, input_value: Any) -> Any:
        """Return the fragment's result. Raises CodeExecutionError on any failure."""


class InProcessCodeSandbox(CodeSandbox):
    def __init__(self) -> None:
        self._builtins = {name: getattr(builtins, name) for name in ALLOWED_BUILTINS if hasattr(builtins, name)}

    def _compile(self, code_source: str):
        body = textwrap.indent(textwrap.dedent(code_source).strip() or "pass", "    ")
        source = f"def {FRAGMENT_FUNCTION}(_input, _json):\n{body}\n"
        try:
            tree = ast.parse(source, filename="<workflow-code>", mode="exec")
            return compile(tree, "<workflow-code>", "exec")
        except SyntaxError as exc:
            raise CodeExecutionError(f"Code execution failed: invalid syntax on line {exc.lineno}: {exc.msg}") from exc

    def run(self, code_source: str, input_value: Any) -> Any:
        compiled = self._compile(code_source)
        # Fresh namespace per call: nothing leaks between fragments or runs.
        namespace: dict[str, Any] = {"__builtins__": dict(self._builtins)}
        try:
            exec(compiled, namespace)
            return namespace[FRAGMENT_FUNCTION](InputItems(input_value), input_value)
        except Exception as exc:
            logger.error("[Code] Execution error: %s", exc)
            raise CodeExecutionError(f"Code execution failed: {exc}") from exc
