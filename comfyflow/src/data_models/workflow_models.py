"""
Typed view over the opaque workflow graph submitted to the compute server.

The server-side graph is a mapping of node id -> node record. The only
things the client cares about are each node's kind (to find the output
sinks) and the prompt injection coordinate. Roles are classified once in
``WorkflowTemplate.from_mapping`` instead of being re-inspected at every
use site.
"""

import copy
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from comfyflow.src.utilities.constants import (
    DEFAULT_PROMPT_INPUT_KEY,
    DEFAULT_PROMPT_NODE_ID,
)

LINKS_KEY = "links"


class NodeRole(str, Enum):
    """What a node means to the client."""
    FINAL = "final"      # persisted artifacts, served from the output area
    PREVIEW = "preview"  # ephemeral artifacts, served from the temp area
    OTHER = "other"


# Generic kind names first, then the ComfyUI class types they stand for.
SINK_KINDS: Dict[str, NodeRole] = {
    "final": NodeRole.FINAL,
    "preview": NodeRole.PREVIEW,
    "SaveImage": NodeRole.FINAL,
    "PreviewImage": NodeRole.PREVIEW,
}


def node_kind(record: Dict[str, Any]) -> str:
    kind = record.get("kind")
    if not isinstance(kind, str):
        kind = record.get("class_type")
    return kind if isinstance(kind, str) else ""


def classify_kind(kind: str) -> NodeRole:
    return SINK_KINDS.get(kind, NodeRole.OTHER)


class PromptInjectionPoint(BaseModel):
    """Where the prompt text goes: ``workflow[node_id]["inputs"][input_key]``."""
    node_id: str = DEFAULT_PROMPT_NODE_ID
    input_key: str = DEFAULT_PROMPT_INPUT_KEY


class WorkflowNode(BaseModel):
    node_id: str
    kind: str = ""
    role: NodeRole = NodeRole.OTHER
    record: Dict[str, Any] = Field(default_factory=dict)

    @property
    def inputs(self) -> Optional[Dict[str, Any]]:
        inputs = self.record.get("inputs")
        return inputs if isinstance(inputs, dict) else None

    @property
    def is_sink(self) -> bool:
        return self.role is not NodeRole.OTHER


class WorkflowTemplate(BaseModel):
    """
    Classified workflow graph.

    ``nodes`` holds every mapping-shaped top-level entry. A top-level
    ``links`` list and any other non-node entries are carried through
    untouched so ``to_payload()`` reproduces the original document.
    """
    nodes: Dict[str, WorkflowNode] = Field(default_factory=dict)
    links: Optional[List[Any]] = None
    extras: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any]) -> "WorkflowTemplate":
        """Classify a parsed template. The input mapping is deep-copied, never mutated."""
        data = copy.deepcopy(mapping)
        nodes: Dict[str, WorkflowNode] = {}
        links = None
        extras: Dict[str, Any] = {}
        for key, value in data.items():
            key = str(key)
            if key == LINKS_KEY and isinstance(value, list):
                links = value
            elif isinstance(value, dict):
                kind = node_kind(value)
                nodes[key] = WorkflowNode(
                    node_id=key, kind=kind, role=classify_kind(kind), record=value
                )
            else:
                extras[key] = value
        return cls(nodes=nodes, links=links, extras=extras)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            node_id: copy.deepcopy(node.record) for node_id, node in self.nodes.items()
        }
        payload.update(copy.deepcopy(self.extras))
        if self.links is not None:
            payload[LINKS_KEY] = copy.deepcopy(self.links)
        return payload

    def sink_nodes(self) -> List[WorkflowNode]:
        return [node for node in self.nodes.values() if node.is_sink]

    def has_sink(self) -> bool:
        return any(node.is_sink for node in self.nodes.values())

    def role_of(self, node_id: str) -> NodeRole:
        node = self.nodes.get(str(node_id))
        return node.role if node else NodeRole.OTHER

    @property
    def primary_role(self) -> NodeRole:
        """FINAL when any final sink exists; a preview-only graph is PREVIEW."""
        roles = {node.role for node in self.sink_nodes()}
        if NodeRole.FINAL in roles:
            return NodeRole.FINAL
        if NodeRole.PREVIEW in roles:
            return NodeRole.PREVIEW
        return NodeRole.OTHER

    def can_inject(self, point: PromptInjectionPoint) -> bool:
        node = self.nodes.get(point.node_id)
        if node is None or node.inputs is None:
            return False
        return isinstance(node.inputs.get(point.input_key), str)

    def inject(self, point: PromptInjectionPoint, text: str) -> None:
        self.nodes[point.node_id].record["inputs"][point.input_key] = text
