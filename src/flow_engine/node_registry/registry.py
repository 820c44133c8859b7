"""
Node Registry - Process-wide lookup from subtype to executor.

Executors are registered from an explicit table once at startup, then
the registry is frozen. A frozen registry is read-only and shared by all
concurrent runs without locking.
"""

from __future__ import annotations

import logging
import threading
from types import MappingProxyType
from typing import TYPE_CHECKING, Dict, Iterable, Iterator, List, Mapping, Optional

from .models import NodeDefinition


if TYPE_CHECKING:
    from flow_engine.node_sdk.basenode import BaseNode


logger = logging.getLogger(__name__)


class DuplicateNodeError(Exception):
    """A subtype was registered twice."""

    def __init__(self, sub_type: str) -> None:
        self.sub_type = sub_type
        super().__init__(f"Node subtype already registered: {sub_type}")


class RegistryFrozenError(Exception):
    """Registration attempted after the registry was frozen."""


class NodeRegistry:
    """
    Registry of executor singletons keyed by subtype.

    Usage:
        registry = NodeRegistry()
        registry.register(KeywordsNode())
        registry.freeze()

        executor = registry.resolve("KEYWORDS")
        if executor is None:
            ...  # try the legacy bridge
    """

    def __init__(self, executors: Optional[Iterable["BaseNode"]] = None) -> None:
        self._executors: Dict[str, "BaseNode"] = {}
        self._view: Mapping[str, "BaseNode"] = MappingProxyType(self._executors)
        self._frozen = False
        for executor in executors or ():
            self.register(executor)

    def register(self, executor: "BaseNode") -> NodeDefinition:
        """
        Register an executor under its ``sub_type``.

        Raises:
            DuplicateNodeError: If the subtype is already registered
            RegistryFrozenError: If the registry was frozen
        """
        if self._frozen:
            raise RegistryFrozenError(
                f"Cannot register '{executor.sub_type}': registry is frozen"
            )
        sub_type = executor.sub_type
        if sub_type in self._executors:
            raise DuplicateNodeError(sub_type)

        self._executors[sub_type] = executor
        logger.debug(f"Registered node: {sub_type}")
        return NodeDefinition.from_node_class(type(executor))

    def freeze(self) -> "NodeRegistry":
        """Make the registry read-only. Returns self for chaining."""
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def executors(self) -> Mapping[str, "BaseNode"]:
        """Read-only view of subtype -> executor."""
        return self._view

    def resolve(self, sub_type: str) -> Optional["BaseNode"]:
        """Get the executor for a subtype, or None if not registered."""
        return self._view.get(sub_type)

    def has_node(self, sub_type: str) -> bool:
        """Check if subtype is registered."""
        return sub_type in self._view

    def list_nodes(self) -> List[NodeDefinition]:
        """List all registered nodes."""
        return [NodeDefinition.from_node_class(type(e)) for e in self._view.values()]

    def list_sub_types(self) -> List[str]:
        """List all registered subtypes."""
        return list(self._view.keys())

    def __len__(self) -> int:
        """Number of registered nodes."""
        return len(self._view)

    def __iter__(self) -> Iterator[NodeDefinition]:
        """Iterate over node definitions."""
        return iter(self.list_nodes())

    def __contains__(self, sub_type: object) -> bool:
        """Check if subtype is registered."""
        return isinstance(sub_type, str) and self.has_node(sub_type)


# Global registry instance
_global_registry: Optional[NodeRegistry] = None
_global_lock = threading.Lock()


def get_node_registry() -> NodeRegistry:
    """Get the process-wide frozen registry (built on first use)."""
    global _global_registry
    if _global_registry is None:
        with _global_lock:
            if _global_registry is None:
                from flow_engine.nodes import build_node_registry

                _global_registry = build_node_registry()
    return _global_registry


def reset_node_registry() -> None:
    """Drop the global registry (useful for testing)."""
    global _global_registry
    with _global_lock:
        _global_registry = None


__all__ = [
    "DuplicateNodeError",
    "NodeRegistry",
    "RegistryFrozenError",
    "get_node_registry",
    "reset_node_registry",
]
