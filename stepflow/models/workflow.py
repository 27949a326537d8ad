"""Step model: the canonical, storage-ready representation of a workflow."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable

from stepflow.core.exceptions import EmptyWorkflow

logger = logging.getLogger(__name__)


class StepType(str, Enum):
    TRIGGER = "trigger"
    LLM = "llm"
    IMAGE = "image"
    HTTP_REQUEST = "http_request"
    CODE = "code"
    DELAY = "delay"

    @classmethod
    def parse(cls, value: Any) -> StepType | None:
        raw = str(value or "").strip().lower()
        raw = STEP_TYPE_ALIASES.get(raw, raw)
        try:
            return cls(raw)
        except ValueError:
            return None


STEP_TYPE_ALIASES: dict[str, str] = {"http": "http_request"}

DISPLAY_NAMES: dict[StepType, str] = {
    StepType.TRIGGER: "Trigger",
    StepType.LLM: "LLM",
    StepType.IMAGE: "Image",
    StepType.HTTP_REQUEST: "HTTP Request",
    StepType.CODE: "Code",
    StepType.DELAY: "Delay",
}

# Equivalent source fields folded into the canonical param name.
PARAM_ALIASES: dict[str, tuple[str, ...]] = {
    "code": ("code", "jsCode", "pythonCode", "functionCode"),
    "prompt": ("prompt", "prompt_template"),
}

# Legacy step lists carry params beside `type` instead of under `params`.
FLAT_PARAM_FIELDS = (
    "code",
    "jsCode",
    "pythonCode",
    "functionCode",
    "prompt",
    "prompt_template",
    "url",
    "method",
    "body",
    "headers",
    "seconds",
    "ms",
)


@dataclass
class Step:
    id: str
    type: str
    name: str = ""
    params: dict[str, Any] = field(default_factory=dict)

    @property
    def step_type(self) -> StepType | None:
        return StepType.parse(self.type)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "type": self.type, "name": self.name, "params": dict(self.params)}


@dataclass
class Workflow:
    id: int
    name: str
    description: str = ""
    steps: list[Step] = field(default_factory=list)
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "steps": [step.to_dict() for step in self.steps],
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def _normalize_params(raw: dict[str, Any]) -> dict[str, Any]:
    params = dict(raw.get("params") or {})
    for key in FLAT_PARAM_FIELDS:
        if key in raw and key not in params:
            params[key] = raw[key]
    for canonical, aliases in PARAM_ALIASES.items():
        if params.get(canonical):
            continue
        for alias in aliases:
            if params.get(alias):
                params[canonical] = params[alias]
                break
    return params


def parse_step(raw: Any, position: int) -> Step | None:
    """Build a Step from a raw mapping. Returns None for entries that are not mappings."""
    if isinstance(raw, Step):
        return raw
    if not isinstance(raw, dict):
        logger.warning("Skipping step %s: expected an object, got %s", position, type(raw).__name__)
        return None
    if raw.get("params") is not None and not isinstance(raw["params"], dict):
        logger.warning("Skipping step %s: params must be an object, got %s", position, type(raw["params"]).__name__)
        return None

    raw_type = str(raw.get("type") or "").strip()
    step_type = StepType.parse(raw_type)
    if step_type is None:
        logger.warning("Step %s has unrecognized type %r; it will be skipped at run time", position, raw_type)

    canonical_type = step_type.value if step_type else raw_type
    name = raw.get("name") or (DISPLAY_NAMES[step_type] if step_type else raw_type or "Step")
    return Step(
        id=str(raw.get("id") or f"step_{position}"),
        type=canonical_type,
        name=str(name),
        params=_normalize_params(raw),
    )


def parse_steps(raw_steps: Iterable[Any] | None) -> list[Step]:
    """Advisory validation: malformed entries are skipped with a warning, an empty list is an error."""
    raw_list = list(raw_steps or [])
    if not raw_list:
        raise EmptyWorkflow()
    steps = [step for index, raw in enumerate(raw_list, start=1) if (step := parse_step(raw, index))]
    if not steps:
        raise EmptyWorkflow("Workflow has no usable steps")
    return steps
