"""
Node Registry Models - Metadata describing registered executors.
"""

from __future__ import annotations

from typing import Any, Dict, Type

from pydantic import BaseModel, ConfigDict, Field


class NodeDefinition(BaseModel):
    """
    Metadata about a registered node subtype.

    Used by node listings (API, CLI); the runner never reads it.
    """
    model_config = ConfigDict(extra="allow")

    # Identity
    sub_type: str = Field(..., description="Unique subtype discriminator")
    category: str = Field(..., description="trigger / condition / action")

    # Display
    description: str = Field("", description="Node description")

    # Technical
    node_class: str = Field(..., description="Fully qualified class name")
    source: str = Field("registry", description="registry or legacy")
    config_schema: Dict[str, Any] = Field(default_factory=dict)

    # Handoff slot usage
    consumes_generated_text: bool = Field(False)
    produces_generated_text: bool = Field(False)

    @classmethod
    def from_node_class(cls, node_class: Type, source: str = "registry") -> "NodeDefinition":
        """Create definition from a BaseNode class."""
        definition = node_class.get_definition()
        return cls(
            sub_type=definition["sub_type"],
            category=definition["category"],
            description=definition["description"],
            node_class=f"{node_class.__module__}.{node_class.__name__}",
            source=source,
            config_schema=definition["config_schema"],
            consumes_generated_text=getattr(node_class, "consumes_generated_text", False),
            produces_generated_text=getattr(node_class, "produces_generated_text", False),
        )
