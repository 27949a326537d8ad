"""
Transient node/connection graph used by the visual editor and by imports.

Graphs are linearized into Step lists before they are saved or executed.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class NodeKind(str, Enum):
    TRIGGER = "trigger"
    CODE = "code"
    HTTP = "http_request"
    LLM = "llm"
    IMAGE = "image"
    DELAY = "delay"
    UNSUPPORTED = "unsupported"


# Node classes with no execution meaning here; they run as pass-through steps.
UNSUPPORTED_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("response", ("respondToWebhook",)),
    ("condition", (".if", "switch", "filter")),
    ("email", ("email", "smtp", "gmail")),
    ("database", ("postgres", "mysql", "mongodb", "redis")),
    ("messaging", ("slack", "discord", "telegram")),
)
UNSUPPORTED_CLASSES = {"condition", "email", "database", "response", "messaging"}

# Editor palette classes map straight onto a kind.
EDITOR_CLASSES: dict[str, NodeKind] = {
    "trigger": NodeKind.TRIGGER,
    "code": NodeKind.CODE,
    "http": NodeKind.HTTP,
    "http_request": NodeKind.HTTP,
    "llm": NodeKind.LLM,
    "image": NodeKind.IMAGE,
    "delay": NodeKind.DELAY,
}

KIND_RULES: tuple[tuple[NodeKind, tuple[str, ...]], ...] = (
    (NodeKind.TRIGGER, ("Trigger", "webhook", "cron")),
    (NodeKind.CODE, (".code", "function", "javascript")),
    (NodeKind.HTTP, ("httpRequest", "Http", "rssFeedRead")),
    (NodeKind.LLM, ("openAi", "lmChat", "anthropic", "gpt", "llm")),
    (NodeKind.IMAGE, ("dalle", "image", "Image")),
    (NodeKind.DELAY, ("wait", "Wait", "delay")),
)

CODE_FIELDS = ("jsCode", "pythonCode", "code", "functionCode")


def classify_declared_type(declared_type: str, parameters: dict[str, Any] | None = None) -> tuple[NodeKind, str]:
    """Map a free-form declared type onto a NodeKind. Returns (kind, category)."""
    declared = declared_type or ""
    lowered = declared.lower()

    if lowered in UNSUPPORTED_CLASSES:
        return NodeKind.UNSUPPORTED, lowered
    if lowered in EDITOR_CLASSES:
        kind = EDITOR_CLASSES[lowered]
        return kind, kind.value

    # Triggers win over the service they listen to (telegramTrigger, gmailTrigger).
    trigger_kind, trigger_keywords = KIND_RULES[0]
    if any(keyword in declared for keyword in trigger_keywords):
        return trigger_kind, trigger_kind.value
    for category, keywords in UNSUPPORTED_RULES:
        if any(keyword in declared for keyword in keywords):
            return NodeKind.UNSUPPORTED, category
    for kind, keywords in KIND_RULES[1:]:
        if any(keyword in declared for keyword in keywords):
            return kind, kind.value

    params = parameters or {}
    if params.get("url"):
        return NodeKind.HTTP, NodeKind.HTTP.value
    if any(params.get(name) for name in CODE_FIELDS):
        return NodeKind.CODE, NodeKind.CODE.value
    return NodeKind.UNSUPPORTED, "generic"


@dataclass
class GraphNode:
    id: str
    declared_type: str
    display_name: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)
    position: tuple[float, float] = (0.0, 0.0)
    needs_configuration: bool = False
    kind: NodeKind = field(init=False)
    category: str = field(init=False)

    def __post_init__(self) -> None:
        self.id = str(self.id)
        self.kind, self.category = classify_declared_type(self.declared_type, self.parameters)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "declared_type": self.declared_type,
            "display_name": self.display_name,
            "parameters": self.parameters,
            "position": list(self.position),
            "kind": self.kind.value,
            "needs_configuration": self.needs_configuration,
        }


@dataclass(frozen=True)
class Connection:
    source_node_id: str
    source_output_index: int
    target_node_id: str
    target_input_index: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_node_id": self.source_node_id,
            "source_output_index": self.source_output_index,
            "target_node_id": self.target_node_id,
            "target_input_index": self.target_input_index,
        }


@dataclass
class WorkflowGraph:
    nodes: list[GraphNode] = field(default_factory=list)
    connections: list[Connection] = field(default_factory=list)
    name: str = ""
    # Entries dropped while reading the source format.
    warnings: list[str] = field(default_factory=list)

    def node_ids(self) -> list[str]:
        return [node.id for node in self.nodes]

    def get(self, node_id: str) -> GraphNode | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "nodes": [node.to_dict() for node in self.nodes],
            "connections": [conn.to_dict() for conn in self.connections],
        }
