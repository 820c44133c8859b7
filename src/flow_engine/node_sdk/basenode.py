"""
BaseNode - Abstract base class for node executors.

Every node subtype (MESSAGE, KEYWORDS, IS_FOLLOWER, ...) is one BaseNode
subclass, instantiated once and shared by all concurrent runs. Executors
therefore keep no per-run state on ``self``: everything a run owns lives
in the ExecutionContext and the item stream.

Contract:

    execute(config, items, context) -> NodeExecutionResult

- success with items     -> children run with those items
- success with no items  -> this branch stops (not an error)
- success=False          -> this branch stops and the run records a soft failure
- raising                -> the runner aborts the whole run
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from flow_engine.config import get_settings

from .context import ExecutionContext
from .items import Item
from .logs import ExecutionLogEntry, LogBuffer
from .retry import retry_call


class NodeCategory(str, Enum):
    """Node category as stored by the flow editor."""
    TRIGGER = "trigger"
    CONDITION = "condition"
    ACTION = "action"


class EmptyConfig(BaseModel):
    """Config model for nodes that take no settings."""
    model_config = ConfigDict(extra="allow")


# ==============================================================================
# NodeExecutionResult - Output of one node execution
# ==============================================================================

class NodeExecutionResult(BaseModel):
    """Result returned by every node executor."""
    model_config = ConfigDict(extra="forbid")

    success: bool = Field(..., description="False stops this branch as a soft failure")
    items: List[Item] = Field(default_factory=list, description="Output items")
    message: Optional[str] = Field(None, description="Human-readable outcome")
    logs: List[ExecutionLogEntry] = Field(default_factory=list)

    @classmethod
    def ok(
        cls,
        items: List[Item],
        message: Optional[str] = None,
        logs: Optional[List[ExecutionLogEntry]] = None,
    ) -> "NodeExecutionResult":
        return cls(success=True, items=items, message=message, logs=logs or [])

    @classmethod
    def fail(
        cls,
        message: str,
        logs: Optional[List[ExecutionLogEntry]] = None,
    ) -> "NodeExecutionResult":
        return cls(success=False, items=[], message=message, logs=logs or [])

    @property
    def outcome(self) -> Optional[str]:
        """Branch label reported through the first output item, if any."""
        if not self.items:
            return None
        return self.items[0].branch


# ==============================================================================
# BaseNode - Abstract base class
# ==============================================================================

class BaseNode(ABC):
    """
    Abstract base class for all node executors.

    Subclasses define:
    - category: trigger / condition / action
    - sub_type: unique discriminator used by the registry (e.g. "MESSAGE")
    - description: shown in node listings
    - config_model: pydantic model the node's config must satisfy

    Text-sending nodes set ``consumes_generated_text`` and list the config
    keys that hold static text in ``text_config_keys``; the validator uses
    both to check that such a node has either static text or an upstream
    generator. Generator nodes set ``produces_generated_text``.

    Example:

        class TypingOnNode(BaseNode):
            category = NodeCategory.ACTION
            sub_type = "TYPING_ON"
            description = "Show the typing indicator"

            def execute(self, config, items, context):
                ...
                return NodeExecutionResult.ok(items, "Typing indicator shown")
    """

    category: NodeCategory = NodeCategory.ACTION
    sub_type: str = "BASE"
    description: str = ""
    config_model: Type[BaseModel] = EmptyConfig

    consumes_generated_text: bool = False
    produces_generated_text: bool = False
    text_config_keys: Tuple[str, ...] = ()

    def __init__(self) -> None:
        self.logger = logging.getLogger(f"node.{self.sub_type}")

    @abstractmethod
    def execute(
        self,
        config: Dict[str, Any],
        items: List[Item],
        context: ExecutionContext,
    ) -> NodeExecutionResult:
        """
        Execute the node logic.

        Args:
            config: Node-specific configuration from the flow editor
            items: Input items from the parent node(s)
            context: Run-scoped execution context
        """
        raise NotImplementedError

    # ==== Config helpers ====

    def parse_config(self, config: Optional[Dict[str, Any]]) -> BaseModel:
        """
        Validate config against ``config_model``.

        Raises:
            pydantic.ValidationError: on invalid config
        """
        return self.config_model.model_validate(config or {})

    def validate_config(self, config: Optional[Dict[str, Any]]) -> List[str]:
        """Return human-readable config problems (empty when valid)."""
        try:
            self.parse_config(config)
        except ValidationError as e:
            return [_format_error(err) for err in e.errors()]
        return []

    def has_static_text(self, config: Optional[Dict[str, Any]]) -> bool:
        """True if one of ``text_config_keys`` holds non-blank text."""
        config = config or {}
        return any(
            isinstance(config.get(key), str) and config[key].strip()
            for key in self.text_config_keys
        )

    def call_with_retry(self, fn: Callable[[], Any]) -> Any:
        """Run a collaborator call with the configured retry policy."""
        settings = get_settings()
        return retry_call(
            fn,
            attempts=settings.capability_retry_attempts,
            base_delay=settings.capability_retry_backoff_s,
        )

    def log_extra(self, context: ExecutionContext) -> Dict[str, Any]:
        """Run context for LogBuffer / logger calls."""
        return {
            "run_id": context.run_id,
            "automation_id": context.automation_id,
            "node_id": context.current_node_id,
            "sub_type": self.sub_type,
        }

    def new_log_buffer(self, context: ExecutionContext) -> LogBuffer:
        """LogBuffer mirroring to this node's logger with run context."""
        return LogBuffer(self.logger, **self.log_extra(context))

    @classmethod
    def get_definition(cls) -> Dict[str, Any]:
        """Get node definition for registration listings."""
        return {
            "sub_type": cls.sub_type,
            "category": cls.category.value,
            "description": cls.description,
            "config_schema": cls.config_model.model_json_schema(),
        }


def _format_error(err: Dict[str, Any]) -> str:
    location = ".".join(str(part) for part in err.get("loc", ())) or "config"
    return f"{location}: {err.get('msg', 'invalid value')}"
