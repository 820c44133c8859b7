"""
Node Registry - Subtype to executor lookup.

This package provides:
- NodeDefinition: Metadata about a registered node
- NodeRegistry: Registry of executor singletons, frozen after startup
- get_node_registry: The process-wide registry

Nodes are registered from an explicit table (flow_engine.nodes), never
discovered by scanning modules.
"""

from .models import NodeDefinition
from .registry import (
    DuplicateNodeError,
    NodeRegistry,
    RegistryFrozenError,
    get_node_registry,
    reset_node_registry,
)

__all__ = [
    "DuplicateNodeError",
    "NodeDefinition",
    "NodeRegistry",
    "RegistryFrozenError",
    "get_node_registry",
    "reset_node_registry",
]
