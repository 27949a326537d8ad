"""
Graph-to-sequence conversion.

Turns an editor or imported node graph into the ordered Step list the
engine runs. Traversal is a depth-first walk from entry nodes, not a full
topological sort: nodes reachable through several paths are recorded once
and cycles simply stop expanding.
"""
from __future__ import annotations

import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

from stepflow.config import settings
from stepflow.models.graph import Connection, GraphNode, NodeKind, WorkflowGraph
from stepflow.models.workflow import Step, StepType

logger = logging.getLogger(__name__)

DEFAULT_LLM_PROMPT = "Default prompt"
DEFAULT_IMAGE_PROMPT = "A beautiful landscape"

DELAY_UNIT_SECONDS = {"seconds": 1, "minutes": 60, "hours": 3600, "days": 86400}


@dataclass
class ConversionResult:
    steps: list[Step] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    needs_configuration: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "steps": [step.to_dict() for step in self.steps],
            "warnings": list(self.warnings),
            "needs_configuration": list(self.needs_configuration),
        }


def _outgoing(graph: WorkflowGraph, known: set[str], warnings: list[str]) -> dict[str, list[Connection]]:
    outgoing: dict[str, list[Connection]] = defaultdict(list)
    for conn in graph.connections:
        if conn.source_node_id not in known or conn.target_node_id not in known:
            message = f"Ignoring connection {conn.source_node_id} -> {conn.target_node_id}: unknown node"
            logger.warning("[Convert] %s", message)
            warnings.append(message)
            continue
        outgoing[conn.source_node_id].append(conn)
    for conns in outgoing.values():
        # sort is stable: equal indices keep declaration order
        conns.sort(key=lambda c: (c.source_output_index, c.target_input_index))
    return outgoing


def find_back_edges(graph: WorkflowGraph) -> list[Connection]:
    """Connections that close a cycle, found with an iterative three-colour DFS."""
    known = set(graph.node_ids())
    outgoing = _outgoing(graph, known, [])
    state: dict[str, int] = {}  # 1 = on stack, 2 = done
    back_edges: list[Connection] = []

    for start in graph.node_ids():
        if start in state:
            continue
        state[start] = 1
        stack: list[tuple[str, int]] = [(start, 0)]
        while stack:
            node_id, child_index = stack[-1]
            children = outgoing.get(node_id, [])
            if child_index >= len(children):
                state[node_id] = 2
                stack.pop()
                continue
            stack[-1] = (node_id, child_index + 1)
            conn = children[child_index]
            target_state = state.get(conn.target_node_id)
            if target_state == 1:
                back_edges.append(conn)
            elif target_state is None:
                state[conn.target_node_id] = 1
                stack.append((conn.target_node_id, 0))
    return back_edges


def execution_order(graph: WorkflowGraph, warnings: list[str] | None = None) -> list[str]:
    """Node ids in execution order. Every node appears exactly once."""
    warnings = warnings if warnings is not None else []
    node_ids = graph.node_ids()
    known = set(node_ids)
    outgoing = _outgoing(graph, known, warnings)
    has_incoming = {conn.target_node_id for conns in outgoing.values() for conn in conns}

    roots = [
        node.id
        for node in graph.nodes
        if node.kind is NodeKind.TRIGGER or node.id not in has_incoming
    ]

    order: list[str] = []
    visited: set[str] = set()

    def traverse(start: str) -> None:
        stack = [start]
        while stack:
            node_id = stack.pop()
            if node_id in visited:
                continue
            visited.add(node_id)
            order.append(node_id)
            # reversed so the lowest output/input index is expanded first
            for conn in reversed(outgoing.get(node_id, [])):
                if conn.target_node_id not in visited:
                    stack.append(conn.target_node_id)

    for root in roots:
        traverse(root)
    # Disconnected nodes and unreachable cycles.
    for node_id in node_ids:
        if node_id not in visited:
            traverse(node_id)
    return order


def _first(params: dict[str, Any], *names: str) -> Any:
    for name in names:
        value = params.get(name)
        if value not in (None, ""):
            return value
    return None


def _name_value_pairs(container: Any) -> dict[str, Any]:
    entries = container.get("parameters", []) if isinstance(container, dict) else []
    output: dict[str, Any] = {}
    for entry in entries or []:
        key = entry.get("name") if isinstance(entry, dict) else None
        if key:
            output[key] = entry.get("value")
    return output


def _http_body(params: dict[str, Any]) -> str:
    body = _first(params, "body", "jsonBody")
    if body is not None:
        return body if isinstance(body, str) else json.dumps(body)
    pairs = _name_value_pairs(params.get("bodyParameters"))
    return json.dumps(pairs) if pairs else ""


def _http_headers(params: dict[str, Any]) -> dict[str, Any]:
    headers = params.get("headers")
    if isinstance(headers, dict) and headers:
        return dict(headers)
    return _name_value_pairs(params.get("headerParameters"))


def _delay_seconds(params: dict[str, Any]) -> int:
    raw = _first(params, "delay-seconds", "seconds")
    multiplier = 1
    if raw is None and _first(params, "amount") is not None:
        # n8n Wait node: amount + unit
        raw = params["amount"]
        multiplier = DELAY_UNIT_SECONDS.get(str(params.get("unit") or "seconds"), 1)
    if raw is None:
        raw = params.get("value")
    try:
        seconds = int(float(raw) * multiplier)
    except (TypeError, ValueError):
        return settings.default_delay_seconds
    return seconds or settings.default_delay_seconds


def node_to_step(node: GraphNode, warnings: list[str] | None = None) -> Step:
    """Map one classified node onto a Step, probing equivalent parameter fields."""
    params = node.parameters or {}
    name = node.display_name or node.id

    if node.kind is NodeKind.CODE:
        code = _first(params, "jsCode", "pythonCode", "code", "functionCode") or ""
        return Step(id=node.id, type=StepType.CODE.value, name=name, params={"code": code})

    if node.kind is NodeKind.HTTP:
        step_params: dict[str, Any] = {
            "url": params.get("url", ""),
            "method": str(params.get("method") or "GET").upper(),
        }
        body = _http_body(params)
        if body:
            step_params["body"] = body
        headers = _http_headers(params)
        if headers:
            step_params["headers"] = headers
        return Step(id=node.id, type=StepType.HTTP_REQUEST.value, name=name, params=step_params)

    if node.kind is NodeKind.LLM:
        prompt = _first(params, "prompt", "text", "prompt_template") or DEFAULT_LLM_PROMPT
        return Step(id=node.id, type=StepType.LLM.value, name=name, params={"prompt": prompt})

    if node.kind is NodeKind.IMAGE:
        prompt = _first(params, "image-prompt", "prompt", "prompt_template") or DEFAULT_IMAGE_PROMPT
        return Step(id=node.id, type=StepType.IMAGE.value, name=name, params={"prompt": prompt})

    if node.kind is NodeKind.DELAY:
        return Step(id=node.id, type=StepType.DELAY.value, name=name, params={"seconds": _delay_seconds(params)})

    if node.kind is NodeKind.UNSUPPORTED:
        message = f"Node '{name}' ({node.declared_type or 'unknown'}) is a {node.category} node; running it as a pass-through"
        logger.warning("[Convert] %s", message)
        if warnings is not None:
            warnings.append(message)

    return Step(id=node.id, type=StepType.TRIGGER.value, name=name, params={})


def convert_graph(graph: WorkflowGraph) -> ConversionResult:
    """Linearize a graph into a Step list."""
    result = ConversionResult(warnings=list(graph.warnings))
    for conn in find_back_edges(graph):
        message = f"Cycle detected at connection {conn.source_node_id} -> {conn.target_node_id}; it will not be revisited"
        logger.warning("[Convert] %s", message)
        result.warnings.append(message)

    for node_id in execution_order(graph, result.warnings):
        node = graph.get(node_id)
        if node is None:
            continue
        result.steps.append(node_to_step(node, result.warnings))
        if node.needs_configuration:
            result.needs_configuration.append(node.id)
    return result


def _skip(warnings: list[str], message: str) -> None:
    logger.warning("[Convert] %s", message)
    warnings.append(message)


def graph_from_editor_export(export: dict[str, Any]) -> WorkflowGraph:
    """Read the visual editor's Drawflow export into a WorkflowGraph. Malformed entries are skipped with a warning."""
    module = ((export or {}).get("drawflow") or {}).get("Home", {}).get("data", {}) or {}
    graph = WorkflowGraph()

    for key, raw in module.items():
        if not isinstance(raw, dict):
            _skip(graph.warnings, f"Skipping editor node {key!r}: not an object")
            continue
        data = raw.get("data") if isinstance(raw.get("data"), dict) else {}
        node_id = str(raw.get("id", key))
        declared_type = data.get("_n8nType") or data.get("_nodeClass") or raw.get("name") or ""
        parameters = {k: v for k, v in data.items() if not str(k).startswith("_")}
        try:
            position = (float(raw.get("pos_x") or 0), float(raw.get("pos_y") or 0))
        except (TypeError, ValueError):
            position = (0.0, 0.0)
        graph.nodes.append(
            GraphNode(
                id=node_id,
                declared_type=str(declared_type),
                display_name=data.get("_nodeName") or raw.get("name") or node_id,
                parameters=parameters,
                position=position,
                needs_configuration=bool(data.get("_needsConfig")),
            )
        )

        outputs = raw.get("outputs") if isinstance(raw.get("outputs"), dict) else {}
        for output_key, output in outputs.items():
            output_index = _port_index(output_key)
            if not isinstance(output, dict):
                _skip(graph.warnings, f"Skipping output {output_key!r} of editor node {node_id}: not an object")
                continue
            for conn in output.get("connections") or []:
                if not isinstance(conn, dict) or conn.get("node") in (None, ""):
                    _skip(graph.warnings, f"Skipping connection from editor node {node_id}: no target node")
                    continue
                graph.connections.append(
                    Connection(
                        source_node_id=node_id,
                        source_output_index=output_index,
                        target_node_id=str(conn["node"]),
                        target_input_index=_port_index(conn.get("output", "input_1")),
                    )
                )
    return graph


def graph_from_payload(payload: dict[str, Any]) -> WorkflowGraph:
    """Build a graph from the plain {nodes, connections} JSON shape. Malformed entries are skipped with a warning."""
    graph = WorkflowGraph(name=str(payload.get("name") or ""))

    for index, raw in enumerate(payload.get("nodes", []) or []):
        if not isinstance(raw, dict) or raw.get("id") in (None, ""):
            _skip(graph.warnings, f"Skipping node #{index + 1}: expected an object with an id")
            continue
        try:
            position = tuple(float(v) for v in (raw.get("position") or (0.0, 0.0)))[:2]
        except (TypeError, ValueError):
            position = (0.0, 0.0)
        parameters = raw.get("parameters")
        graph.nodes.append(
            GraphNode(
                id=str(raw["id"]),
                declared_type=str(raw.get("declared_type") or raw.get("type") or ""),
                display_name=raw.get("display_name") or raw.get("name") or str(raw["id"]),
                parameters=parameters if isinstance(parameters, dict) else {},
                position=position,
                needs_configuration=bool(raw.get("needs_configuration")),
            )
        )

    for index, raw in enumerate(payload.get("connections", []) or []):
        try:
            graph.connections.append(
                Connection(
                    source_node_id=str(raw["source_node_id"]),
                    source_output_index=int(raw.get("source_output_index") or 0),
                    target_node_id=str(raw["target_node_id"]),
                    target_input_index=int(raw.get("target_input_index") or 0),
                )
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            _skip(graph.warnings, f"Skipping connection #{index + 1}: malformed entry ({type(exc).__name__}: {exc})")
    return graph


def _port_index(port: Any) -> int:
    """'output_2' / 'input_1' -> zero-based index."""
    try:
        return max(int(str(port).rsplit("_", 1)[-1]) - 1, 0)
    except ValueError:
        return 0
