"""
Minimal template substitution for step params.

Supported forms, matching the visual editor's n8n-style expressions:
    ={{ $json.title }}        field of a structured context
    {{ $json['title'] }}      same, bracket syntax
    {{context}}               the whole context
Anything else is left untouched.
"""
from __future__ import annotations

import json
import re
from typing import Any

from stepflow.models.context import Context, StructuredContext, context_of

DOT_FIELD_PATTERN = re.compile(r"\{\{\s*\$json\.(\w+)\s*\}\}")
BRACKET_FIELD_PATTERN = re.compile(r"\{\{\s*\$json\[['\"](\w+)['\"]\]\s*\}\}")
CONTEXT_TOKEN = "{{context}}"


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)


def _field_value(context: Context, key: str) -> str:
    if not isinstance(context, StructuredContext):
        return ""
    if not isinstance(context.value, dict) or key not in context.value:
        return ""
    return _stringify(context.value[key])


def resolve(template: Any, context: Any) -> Any:
    """Resolve placeholders in `template` against `context`. Never raises on missing fields."""
    if not isinstance(template, str) or not template:
        return template

    ctx = context_of(context)
    expr = template[1:] if template.startswith("=") else template

    def replace(match: re.Match) -> str:
        return _field_value(ctx, match.group(1))

    expr = DOT_FIELD_PATTERN.sub(replace, expr)
    expr = BRACKET_FIELD_PATTERN.sub(replace, expr)
    return expr.replace(CONTEXT_TOKEN, ctx.as_inline_text())
