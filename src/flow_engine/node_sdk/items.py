"""
Node Items - Data structures flowing through flows.

Item is the fundamental data unit in a flow run.
A node receives a list of items and emits a list of items; an empty
output list means the branch stops there.
"""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class ItemMeta(BaseModel):
    """
    Bookkeeping attached to an item.

    ``branch`` carries a condition's outcome ("yes"/"no") so the runner
    can route to the matching labelled edge.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    source_node_id: Optional[str] = Field(None, description="Node that emitted the item")
    timestamp: Optional[int] = Field(None, description="Emission time, epoch ms")
    branch: Optional[str] = Field(None, description="Routing outcome label")


class Item(BaseModel):
    """
    A single immutable data item flowing between nodes.

    Example:
        item = Item(json_data={"messageText": "PRICE", "senderId": "123"})
        routed = item.evolve({"conditionResult": True}, branch="yes")
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    json_data: Dict[str, Any] = Field(default_factory=dict, description="JSON payload")
    meta: Optional[ItemMeta] = Field(None, description="Origin and routing metadata")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Item":
        """Create Item from a simple dict."""
        return cls(json_data=dict(data))

    @classmethod
    def from_list(cls, items: List[Dict[str, Any]]) -> List["Item"]:
        """Create list of Items from list of dicts."""
        return [cls.from_dict(item) for item in items]

    def evolve(
        self,
        data: Optional[Dict[str, Any]] = None,
        *,
        source_node_id: Optional[str] = None,
        branch: Optional[str] = None,
    ) -> "Item":
        """
        Return a copy with ``data`` merged into the payload.

        Metadata is replaced only when a source node or branch is given.
        """
        json_data = {**self.json_data, **(data or {})}
        meta = self.meta
        if source_node_id is not None or branch is not None:
            meta = ItemMeta(
                source_node_id=source_node_id if source_node_id is not None else (
                    self.meta.source_node_id if self.meta else None
                ),
                timestamp=now_ms(),
                branch=branch,
            )
        return Item(json_data=json_data, meta=meta)

    @property
    def branch(self) -> Optional[str]:
        """Routing label carried by this item, if any."""
        return self.meta.branch if self.meta else None

    def get(self, key: str, default: Any = None) -> Any:
        """Get value from JSON data."""
        return self.json_data.get(key, default)

    def __getitem__(self, key: str) -> Any:
        """Get value from JSON data."""
        return self.json_data[key]

    def __contains__(self, key: str) -> bool:
        """Check if key exists in JSON data."""
        return key in self.json_data
