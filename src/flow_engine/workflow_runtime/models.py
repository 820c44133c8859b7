"""
Flow Models - JSON structures for stored flow definitions.

These models accept the flow editor's camelCase JSON as well as
snake_case field names.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from flow_engine.node_sdk.basenode import NodeCategory


# Editor categories that the engine treats as conditions
_CATEGORY_ALIASES = {
    "filter": NodeCategory.CONDITION.value,
    "branch": NodeCategory.CONDITION.value,
}


class FlowNode(BaseModel):
    """
    A node in a flow.

    Example: {"nodeId": "n2", "type": "condition", "subType": "KEYWORDS",
              "config": {"keywords": ["price"]}}
    """
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    id: str = Field(..., alias="nodeId", description="Node ID (unique within the flow)")
    category: NodeCategory = Field(..., alias="type", description="trigger / condition / action")
    sub_type: str = Field(..., alias="subType", description="Executor discriminator")
    label: str = Field("", description="Display label")
    config: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("category", mode="before")
    @classmethod
    def normalize_category(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower()
            return _CATEGORY_ALIASES.get(v, v)
        return v

    @field_validator("sub_type", mode="before")
    @classmethod
    def normalize_sub_type(cls, v: Any) -> Any:
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("config", mode="before")
    @classmethod
    def default_config(cls, v: Any) -> Any:
        return {} if v is None else v

    @property
    def is_trigger(self) -> bool:
        return self.category == NodeCategory.TRIGGER


class FlowEdge(BaseModel):
    """
    Directed edge between two nodes.

    ``branch`` is the output label on multi-output nodes (a condition's
    "yes"/"no" handle); unlabelled edges always carry items.
    """
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    id: Optional[str] = Field(None, alias="edgeId")
    source: str = Field(..., alias="sourceNodeId")
    target: str = Field(..., alias="targetNodeId")
    branch: Optional[str] = Field(None, alias="sourceHandle")

    @field_validator("branch", mode="before")
    @classmethod
    def blank_branch_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def label(self) -> str:
        return self.id or f"{self.source}->{self.target}"


class FlowDefinition(BaseModel):
    """A complete flow: nodes plus edges."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    nodes: List[FlowNode] = Field(default_factory=list)
    edges: List[FlowEdge] = Field(default_factory=list)


def _coerce_node(node: Any) -> FlowNode:
    return node if isinstance(node, FlowNode) else FlowNode.model_validate(node)


def _coerce_edge(edge: Any) -> FlowEdge:
    return edge if isinstance(edge, FlowEdge) else FlowEdge.model_validate(edge)


def coerce_nodes(nodes: List[Any]) -> List[FlowNode]:
    """Accept FlowNode instances or raw dicts."""
    return [_coerce_node(n) for n in nodes]


def coerce_edges(edges: List[Any]) -> List[FlowEdge]:
    """Accept FlowEdge instances or raw dicts."""
    return [_coerce_edge(e) for e in edges]


def parse_flow(data: Dict[str, Any]) -> FlowDefinition:
    """
    Parse flow JSON as stored by the editor.

    Raises:
        pydantic.ValidationError: on malformed node or edge records
    """
    return FlowDefinition.model_validate(data)
