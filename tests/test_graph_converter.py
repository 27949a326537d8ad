from __future__ import annotations

import random

import pytest

from stepflow.models.graph import Connection, GraphNode, NodeKind, WorkflowGraph, classify_declared_type
from stepflow.services.graph_converter import (
    DEFAULT_IMAGE_PROMPT,
    DEFAULT_LLM_PROMPT,
    convert_graph,
    execution_order,
    find_back_edges,
    graph_from_editor_export,
    graph_from_payload,
    node_to_step,
)


def _node(node_id, declared="code", **params):
    return GraphNode(id=node_id, declared_type=declared, display_name=f"N{node_id}", parameters=params)


def _chain(*ids):
    return [Connection(a, 0, b, 0) for a, b in zip(ids, ids[1:])]


def test_chain_is_ordered_source_to_sink():
    graph = WorkflowGraph(
        nodes=[_node("3"), _node("1", "trigger"), _node("2")],
        connections=_chain("1", "2", "3"),
    )
    assert execution_order(graph) == ["1", "2", "3"]


def test_every_node_appears_once():
    # diamond: 1 -> 2, 1 -> 3, 2 -> 4, 3 -> 4
    graph = WorkflowGraph(
        nodes=[_node(i) for i in ("1", "2", "3", "4")],
        connections=[
            Connection("1", 0, "2", 0),
            Connection("1", 1, "3", 0),
            Connection("2", 0, "4", 0),
            Connection("3", 0, "4", 0),
        ],
    )
    order = execution_order(graph)
    assert sorted(order) == ["1", "2", "3", "4"]
    assert order == ["1", "2", "4", "3"]


def test_outputs_expanded_in_port_order():
    graph = WorkflowGraph(
        nodes=[_node("1", "trigger"), _node("a"), _node("b")],
        connections=[Connection("1", 1, "a", 0), Connection("1", 0, "b", 0)],
    )
    assert execution_order(graph) == ["1", "b", "a"]


def test_cycle_terminates_and_is_reported():
    graph = WorkflowGraph(
        nodes=[_node("1", "trigger"), _node("2"), _node("3")],
        connections=_chain("1", "2", "3") + [Connection("3", 0, "2", 0)],
    )
    assert execution_order(graph) == ["1", "2", "3"]
    back_edges = find_back_edges(graph)
    assert back_edges == [Connection("3", 0, "2", 0)]

    result = convert_graph(graph)
    assert [step.id for step in result.steps] == ["1", "2", "3"]
    assert any("Cycle detected" in warning for warning in result.warnings)


def test_unreachable_cycle_is_still_visited():
    graph = WorkflowGraph(
        nodes=[_node("1", "trigger"), _node("2"), _node("3")],
        connections=[Connection("2", 0, "3", 0), Connection("3", 0, "2", 0)],
    )
    assert execution_order(graph) == ["1", "2", "3"]


def test_multiple_roots_and_disconnected_nodes():
    graph = WorkflowGraph(
        nodes=[_node("1", "trigger"), _node("2"), _node("3"), _node("4")],
        connections=[Connection("1", 0, "2", 0), Connection("3", 0, "4", 0)],
    )
    assert execution_order(graph) == ["1", "2", "3", "4"]


def test_connection_to_unknown_node_is_ignored_with_warning():
    graph = WorkflowGraph(nodes=[_node("1", "trigger")], connections=[Connection("1", 0, "ghost", 0)])
    warnings: list[str] = []
    assert execution_order(graph, warnings) == ["1"]
    assert warnings and "unknown node" in warnings[0]


@pytest.mark.parametrize(
    "declared, expected",
    [
        ("n8n-nodes-base.scheduleTrigger", NodeKind.TRIGGER),
        ("n8n-nodes-base.webhook", NodeKind.TRIGGER),
        ("n8n-nodes-base.telegramTrigger", NodeKind.TRIGGER),
        ("n8n-nodes-base.code", NodeKind.CODE),
        ("n8n-nodes-base.function", NodeKind.CODE),
        ("n8n-nodes-base.httpRequest", NodeKind.HTTP),
        ("n8n-nodes-base.rssFeedRead", NodeKind.HTTP),
        ("@n8n/n8n-nodes-langchain.openAi", NodeKind.LLM),
        ("@n8n/n8n-nodes-langchain.lmChatAnthropic", NodeKind.LLM),
        ("custom.gptChat", NodeKind.LLM),
        ("n8n-nodes-base.wait", NodeKind.DELAY),
        ("n8n-nodes-base.if", NodeKind.UNSUPPORTED),
        ("n8n-nodes-base.slack", NodeKind.UNSUPPORTED),
        ("n8n-nodes-base.respondToWebhook", NodeKind.UNSUPPORTED),
        ("llm", NodeKind.LLM),
        ("image", NodeKind.IMAGE),
        ("condition", NodeKind.UNSUPPORTED),
    ],
)
def test_classification(declared, expected):
    kind, _ = classify_declared_type(declared)
    assert kind is expected


def test_classification_falls_back_to_parameters():
    assert classify_declared_type("custom.thing", {"url": "https://x"})[0] is NodeKind.HTTP
    assert classify_declared_type("custom.thing", {"jsCode": "return 1"})[0] is NodeKind.CODE
    assert classify_declared_type("custom.thing", {}) == (NodeKind.UNSUPPORTED, "generic")


def test_http_parameter_probing():
    node = GraphNode(
        id="h",
        declared_type="n8n-nodes-base.httpRequest",
        parameters={
            "url": "https://api.example.com",
            "method": "post",
            "bodyParameters": {"parameters": [{"name": "q", "value": "cats"}]},
            "headerParameters": {"parameters": [{"name": "X-Key", "value": "k"}]},
        },
    )
    step = node_to_step(node)
    assert step.type == "http_request"
    assert step.params == {
        "url": "https://api.example.com",
        "method": "POST",
        "body": '{"q": "cats"}',
        "headers": {"X-Key": "k"},
    }


def test_code_llm_image_delay_probing():
    assert node_to_step(_node("c", "n8n-nodes-base.code", pythonCode="return 1")).params == {"code": "return 1"}
    assert node_to_step(_node("l", "llm", text="Hi")).params == {"prompt": "Hi"}
    assert node_to_step(_node("l2", "llm")).params == {"prompt": DEFAULT_LLM_PROMPT}
    assert node_to_step(_node("i", "image")).params == {"prompt": DEFAULT_IMAGE_PROMPT}
    assert node_to_step(_node("d", "n8n-nodes-base.wait", amount=2, unit="minutes")).params == {"seconds": 120}
    assert node_to_step(_node("d2", "delay", **{"delay-seconds": "3"})).params == {"seconds": 3}


def test_unsupported_node_becomes_pass_through():
    warnings: list[str] = []
    step = node_to_step(_node("s", "n8n-nodes-base.slack"), warnings)
    assert step.type == "trigger"
    assert warnings and "messaging" in warnings[0]


EDITOR_EXPORT = {
    "drawflow": {
        "Home": {
            "data": {
                "1": {
                    "id": 1,
                    "name": "trigger",
                    "data": {"_nodeName": "Start"},
                    "outputs": {"output_1": {"connections": [{"node": "2", "output": "input_1"}]}},
                    "pos_x": 10,
                    "pos_y": 20,
                },
                "2": {
                    "id": 2,
                    "name": "http",
                    "data": {"url": "https://api.example.com/items", "method": "GET", "_needsConfig": True},
                    "outputs": {"output_1": {"connections": [{"node": "3", "output": "input_1"}]}},
                },
                "3": {
                    "id": 3,
                    "name": "llm",
                    "data": {"prompt": "Summarize {{context}}"},
                    "outputs": {},
                },
            }
        }
    }
}


def test_editor_export_conversion():
    graph = graph_from_editor_export(EDITOR_EXPORT)
    assert [node.kind for node in graph.nodes] == [NodeKind.TRIGGER, NodeKind.HTTP, NodeKind.LLM]
    assert graph.get("1").display_name == "Start"
    assert graph.get("1").position == (10.0, 20.0)

    result = convert_graph(graph)
    assert [step.type for step in result.steps] == ["trigger", "http_request", "llm"]
    assert result.steps[1].params["url"] == "https://api.example.com/items"
    assert result.steps[2].params["prompt"] == "Summarize {{context}}"
    assert result.needs_configuration == ["2"]


def test_graph_from_payload():
    graph = graph_from_payload(
        {
            "nodes": [{"id": "a", "type": "trigger"}, {"id": "b", "type": "delay", "parameters": {"seconds": 2}}],
            "connections": [{"source_node_id": "a", "target_node_id": "b"}],
        }
    )
    result = convert_graph(graph)
    assert [step.to_dict()["type"] for step in result.steps] == ["trigger", "delay"]
    assert result.steps[1].params == {"seconds": 2}


@pytest.mark.parametrize("length", [1, 2, 7, 25])
def test_shuffled_chain_keeps_link_order(length):
    ids = [f"n{i}" for i in range(length)]
    nodes = [_node(node_id) for node_id in ids]
    random.Random(length).shuffle(nodes)
    graph = WorkflowGraph(nodes=nodes, connections=_chain(*ids))

    order = execution_order(graph)
    assert len(order) == length
    assert len(set(order)) == length
    assert order == ids


def test_malformed_payload_entries_are_skipped_with_warnings():
    graph = graph_from_payload(
        {
            "nodes": [
                {"id": "a", "type": "trigger"},
                "not a node",
                {"type": "llm"},
                {"id": "b", "type": "code", "parameters": "return 1", "position": ["x", 1]},
            ],
            "connections": [
                {"source_node_id": "a"},
                {"source_node_id": "a", "target_node_id": "b", "source_output_index": "first"},
                7,
                {"source_node_id": "a", "target_node_id": "b"},
            ],
        }
    )
    assert [node.id for node in graph.nodes] == ["a", "b"]
    assert graph.get("b").parameters == {}
    assert graph.get("b").position == (0.0, 0.0)
    assert graph.connections == [Connection("a", 0, "b", 0)]
    assert len(graph.warnings) == 5

    result = convert_graph(graph)
    assert [step.id for step in result.steps] == ["a", "b"]
    assert any("connection #1" in warning for warning in result.warnings)


def test_malformed_editor_entries_are_skipped_with_warnings():
    graph = graph_from_editor_export(
        {
            "drawflow": {
                "Home": {
                    "data": {
                        "1": {
                            "id": 1,
                            "name": "trigger",
                            "data": "oops",
                            "outputs": {
                                "output_1": {"connections": [{"node": "2"}, {"output": "input_1"}, "3"]},
                                "output_2": ["bad"],
                            },
                            "pos_x": "left",
                        },
                        "2": {"id": 2, "name": "llm", "data": {"prompt": "hi"}, "outputs": []},
                        "3": None,
                    }
                }
            }
        }
    )
    assert [node.id for node in graph.nodes] == ["1", "2"]
    assert graph.get("1").position == (0.0, 0.0)
    assert graph.connections == [Connection("1", 0, "2", 0)]
    assert len(graph.warnings) == 4
    assert [step.type for step in convert_graph(graph).steps] == ["trigger", "llm"]
