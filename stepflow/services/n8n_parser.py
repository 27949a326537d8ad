from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any

from stepflow.core.exceptions import EmptyWorkflow
from stepflow.models.graph import Connection, GraphNode, WorkflowGraph
from stepflow.services.graph_converter import ConversionResult, convert_graph

logger = logging.getLogger(__name__)

PLACEHOLDER_MARKERS = ("YOUR_", "INSERT_", "ENTER_", "dummy-key")
ANGLE_TOKEN_PATTERN = re.compile(r"<([A-Za-z][\w-]*)>")
# Bare markup tags are not placeholders.
HTML_TAGS = frozenset(
    {
        "a", "b", "i", "u", "p", "s", "em", "strong", "small", "code", "pre", "br", "hr", "div", "span",
        "html", "head", "body", "title", "ul", "ol", "li", "table", "thead", "tbody", "tr", "td", "th",
        "h1", "h2", "h3", "h4", "h5", "h6", "section", "article", "header", "footer", "nav", "main",
        "blockquote", "label", "form", "button", "script", "style",
    }
)
JSON_BLOCK_PATTERN = re.compile(r"```json\s*([\s\S]*?)```")
RAW_WORKFLOW_PATTERN = re.compile(r"\{[\s\S]*\"name\"[\s\S]*\"nodes\"[\s\S]*\}")


@dataclass
class ImportedWorkflow:
    name: str
    graph: WorkflowGraph
    name_to_id: dict[str, str] = field(default_factory=dict)
    required_apis: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def needs_configuration(self) -> list[str]:
        return [node.display_name for node in self.graph.nodes if node.needs_configuration]

    def convert(self) -> ConversionResult:
        result = convert_graph(self.graph)
        result.warnings[:0] = self.warnings
        return result


def contains_placeholder(value: Any) -> bool:
    """True when any string inside `value` looks like an unfilled credential or id."""
    if isinstance(value, str):
        if any(marker in value for marker in PLACEHOLDER_MARKERS):
            return True
        return any(name.lower() not in HTML_TAGS for name in ANGLE_TOKEN_PATTERN.findall(value))
    if isinstance(value, dict):
        return any(contains_placeholder(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return any(contains_placeholder(v) for v in value)
    return False


def extract_workflow_json(text: str) -> dict[str, Any] | None:
    """Pull an n8n export out of free text, e.g. a chat reply wrapping it in a ```json block."""
    match = JSON_BLOCK_PATTERN.search(text or "")
    candidate = match.group(1).strip() if match else None
    if candidate is None:
        raw = RAW_WORKFLOW_PATTERN.search(text or "")
        candidate = raw.group(0) if raw else None
    if candidate is None:
        return None
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as exc:
        logger.warning("Failed to parse workflow JSON: %s", exc)
        return None
    return parsed if isinstance(parsed, dict) else None


class N8NWorkflowParser:
    """Import n8n workflow exports into the editor graph representation."""

    def __init__(self) -> None:
        self.credential_map = {
            "openAiApi": {
                "env_var": "OPENAI_API_KEY",
                "name": "OpenAI API",
                "get_url": "https://platform.openai.com/api-keys",
            },
            "anthropicApi": {
                "env_var": "ANTHROPIC_API_KEY",
                "name": "Anthropic API",
                "get_url": "https://console.anthropic.com/settings/keys",
            },
            "httpHeaderAuth": {
                "env_var": "CUSTOM_API_KEY",
                "name": "Custom API Key",
                "get_url": None,
            },
            "telegramApi": {
                "env_var": "TELEGRAM_BOT_TOKEN",
                "name": "Telegram Bot API",
                "get_url": "https://core.telegram.org/bots#botfather",
            },
            "facebookGraphApi": {
                "env_var": "FACEBOOK_ACCESS_TOKEN",
                "name": "Facebook Graph API",
                "get_url": "https://developers.facebook.com/tools/explorer/",
            },
            "slackApi": {
                "env_var": "SLACK_WEBHOOK_URL",
                "name": "Slack",
                "get_url": "https://api.slack.com/messaging/webhooks",
            },
            "discordWebhookApi": {
                "env_var": "DISCORD_WEBHOOK_URL",
                "name": "Discord Webhook",
                "get_url": None,
            },
        }
        self.host_map = {
            "api.openai.com": "openAiApi",
            "api.anthropic.com": "anthropicApi",
            "api.telegram.org": "telegramApi",
            "graph.facebook.com": "facebookGraphApi",
            "hooks.slack.com": "slackApi",
            "discord.com/api/webhooks": "discordWebhookApi",
        }

    def parse_workflow(self, n8n_json: dict[str, Any]) -> ImportedWorkflow:
        workflow_name = n8n_json.get("name") or "Imported Workflow"
        raw_nodes = n8n_json.get("nodes", []) or []
        connections = n8n_json.get("connections", {}) or {}
        if not raw_nodes:
            raise EmptyWorkflow("Imported workflow has no nodes")

        warnings: list[str] = []
        graph, name_to_id = self._build_nodes(raw_nodes, warnings)
        graph.name = workflow_name
        graph.connections = self._build_connections(connections, name_to_id, warnings)

        flagged = [node.display_name for node in graph.nodes if node.needs_configuration]
        if flagged:
            logger.warning("%s imported node(s) need credential configuration: %s", len(flagged), ", ".join(flagged))

        logger.info("Imported workflow %r (%s nodes, %s connections)", workflow_name, len(graph.nodes), len(graph.connections))
        return ImportedWorkflow(
            name=workflow_name,
            graph=graph,
            name_to_id=name_to_id,
            required_apis=self._detect_required_apis(raw_nodes),
            warnings=warnings,
        )

    def _build_nodes(
        self,
        raw_nodes: list[dict[str, Any]],
        warnings: list[str],
    ) -> tuple[WorkflowGraph, dict[str, str]]:
        graph = WorkflowGraph()
        name_to_id: dict[str, str] = {}
        for index, raw in enumerate(raw_nodes):
            if not isinstance(raw, dict):
                warnings.append(f"Skipping node #{index + 1}: not an object")
                continue
            # Fresh sequential ids; the export's own ids are not trusted to be unique.
            node_id = str(len(graph.nodes) + 1)
            name = str(raw.get("name") or f"Node {node_id}")
            if name in name_to_id:
                warnings.append(f"Duplicate node name {name!r}; connections resolve to the first one")
            else:
                name_to_id[name] = node_id

            params = raw.get("parameters", {}) or {}
            position = raw.get("position") or [200 + index * 250, 250]
            graph.nodes.append(
                GraphNode(
                    id=node_id,
                    declared_type=str(raw.get("type", "")),
                    display_name=name,
                    parameters=params,
                    position=(float(position[0]), float(position[1])),
                    needs_configuration=contains_placeholder(params),
                )
            )
        return graph, name_to_id

    @staticmethod
    def _build_connections(
        connections: dict[str, Any],
        name_to_id: dict[str, str],
        warnings: list[str],
    ) -> list[Connection]:
        resolved: list[Connection] = []
        for source_name, outputs in connections.items():
            source_id = name_to_id.get(source_name)
            if source_id is None:
                warnings.append(f"Connection source not found: {source_name}")
                continue
            for output_index, targets in enumerate((outputs or {}).get("main", []) or []):
                for target in targets or []:
                    target_id = name_to_id.get(target.get("node"))
                    if target_id is None:
                        warnings.append(f"Connection target not found: {target.get('node')}")
                        continue
                    resolved.append(
                        Connection(
                            source_node_id=source_id,
                            source_output_index=output_index,
                            target_node_id=target_id,
                            target_input_index=int(target.get("index") or 0),
                        )
                    )
        return resolved

    def _detect_required_apis(self, nodes: list[dict[str, Any]]) -> list[dict[str, Any]]:
        required_apis: list[dict[str, Any]] = []
        seen: set[str] = set()

        def add(cred_type: str) -> None:
            if cred_type in self.credential_map and cred_type not in seen:
                api = dict(self.credential_map[cred_type])
                api["configured"] = bool(os.getenv(api["env_var"]))
                required_apis.append(api)
                seen.add(cred_type)

        for node in nodes:
            if not isinstance(node, dict):
                continue
            params = node.get("parameters", {}) or {}
            add(str(params.get("nodeCredentialType") or params.get("authentication") or ""))
            for cred_type in (node.get("credentials") or {}).keys():
                add(cred_type)

            url = str(params.get("url", "")).lower()
            for host, cred_type in self.host_map.items():
                if host in url:
                    add(cred_type)
        return required_apis


n8n_parser = N8NWorkflowParser()
