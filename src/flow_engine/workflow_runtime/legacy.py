"""
Legacy Bridge - Fallback dispatcher for subtypes without their own executor.

Everything not yet migrated goes through ``execute_legacy_node``, one
dispatch function. ``LegacyBridge`` wraps it behind the BaseNode
interface so the runner and the validator never know the difference.

Retiring a subtype:
1. Write and register its executor in ``flow_engine.nodes``
2. Delete its branch from ``execute_legacy_node``
3. Delete it from ``LEGACY_SUBTYPES`` and ``LEGACY_CONFIG_MODELS``
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from flow_engine.config import get_settings
from flow_engine.node_registry import NodeDefinition, NodeRegistry
from flow_engine.node_sdk import (
    BaseNode,
    ExecutionContext,
    Item,
    LogBuffer,
    NodeCategory,
    NodeExecutionResult,
    retry_call,
)
from flow_engine.services.capabilities import CapabilityUnavailableError


logger = logging.getLogger(__name__)


# Retirement checklist
LEGACY_SUBTYPES: FrozenSet[str] = frozenset({
    "PRODUCT_TEMPLATE",
    "ICE_BREAKERS",
    "PERSISTENT_MENU",
    "LOG_TO_SHEETS",
})

SHEETS_COLUMN_HEADERS = ["Timestamp", "Sender ID", "Message/Comment", "Trigger Type"]


# ==============================================================================
# Config models
# ==============================================================================

class ProductTemplateConfig(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    product_ids: List[str] = Field(..., alias="productIds", min_length=1)


class IceBreaker(BaseModel):
    question: str = Field(..., min_length=1)
    payload: str = Field(..., min_length=1)


class IceBreakersConfig(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    ice_breakers: List[IceBreaker] = Field(..., alias="iceBreakers", min_length=1, max_length=4)


class MenuItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Literal["web_url", "postback"]
    title: str = Field(..., min_length=1)
    url: Optional[str] = None
    payload: Optional[str] = None


class PersistentMenuConfig(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    menu_items: List[MenuItem] = Field(..., alias="menuItems", min_length=1)


class SheetsTarget(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    spreadsheet_id: str = Field(..., alias="spreadsheetId", min_length=1)
    sheet_name: str = Field(..., alias="sheetName", min_length=1)


class LogToSheetsConfig(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    sheets_config: SheetsTarget = Field(..., alias="sheetsConfig")


LEGACY_CONFIG_MODELS: Dict[str, Type[BaseModel]] = {
    "PRODUCT_TEMPLATE": ProductTemplateConfig,
    "ICE_BREAKERS": IceBreakersConfig,
    "PERSISTENT_MENU": PersistentMenuConfig,
    "LOG_TO_SHEETS": LogToSheetsConfig,
}

LEGACY_DESCRIPTIONS: Dict[str, str] = {
    "PRODUCT_TEMPLATE": "Send a product template message",
    "ICE_BREAKERS": "Set the conversation ice breakers",
    "PERSISTENT_MENU": "Set the persistent menu",
    "LOG_TO_SHEETS": "Append the triggering event to a spreadsheet",
}


# ==============================================================================
# Dispatch
# ==============================================================================

def _with_retry(fn):
    settings = get_settings()
    return retry_call(
        fn,
        attempts=settings.capability_retry_attempts,
        base_delay=settings.capability_retry_backoff_s,
    )


def execute_legacy_node(
    sub_type: str,
    config: Dict[str, Any],
    context: ExecutionContext,
) -> NodeExecutionResult:
    """
    Execute a not-yet-migrated subtype.

    Returns a result without items; the bridge adapter supplies the
    pass-through items. Never raises.
    """
    logs = LogBuffer(
        logging.getLogger(f"node.{sub_type}"),
        run_id=context.run_id,
        automation_id=context.automation_id,
        node_id=context.current_node_id,
        sub_type=sub_type,
    )
    model = LEGACY_CONFIG_MODELS.get(sub_type)
    if sub_type not in LEGACY_SUBTYPES or model is None:
        logs.error("Unknown action type", subType=sub_type)
        return NodeExecutionResult.fail(f"Unknown action type: {sub_type}", logs=logs.entries)

    try:
        parsed = model.model_validate(config or {})
    except ValidationError as e:
        logs.error("Invalid configuration", errors=e.error_count())
        return NodeExecutionResult.fail(
            f"Invalid {sub_type} configuration: {e.errors()[0]['msg']}",
            logs=logs.entries,
        )

    try:
        services = context.services

        if sub_type == "PRODUCT_TEMPLATE":
            messaging = services.require("messaging")
            result = _with_retry(lambda: messaging.send_product_template(
                context.page_id, context.sender_id, parsed.product_ids, context.token,
            ))
            if result.success:
                logs.info("Product template sent", productCount=len(parsed.product_ids))
                return NodeExecutionResult.ok([], "Product template sent", logs=logs.entries)
            logs.error("Product template rejected", error=result.error)
            return NodeExecutionResult.fail(
                result.error or "Failed to send product template", logs=logs.entries
            )

        elif sub_type == "ICE_BREAKERS":
            messaging = services.require("messaging")
            payload = [ib.model_dump() for ib in parsed.ice_breakers]
            result = _with_retry(lambda: messaging.set_ice_breakers(payload, context.token))
            if result.success:
                logs.info("Ice breakers set", count=len(payload))
                return NodeExecutionResult.ok([], "Ice breakers set successfully", logs=logs.entries)
            logs.error("Ice breakers rejected", error=result.error)
            return NodeExecutionResult.fail(
                result.error or "Failed to set ice breakers", logs=logs.entries
            )

        elif sub_type == "PERSISTENT_MENU":
            messaging = services.require("messaging")
            payload = [item.model_dump(exclude_none=True) for item in parsed.menu_items]
            result = _with_retry(lambda: messaging.set_persistent_menu(payload, context.token))
            if result.success:
                logs.info("Persistent menu set", count=len(payload))
                return NodeExecutionResult.ok([], "Persistent menu set successfully", logs=logs.entries)
            logs.error("Persistent menu rejected", error=result.error)
            return NodeExecutionResult.fail(
                result.error or "Failed to set persistent menu", logs=logs.entries
            )

        else:  # LOG_TO_SHEETS
            sheets = services.require("sheets")
            target = parsed.sheets_config
            row = [
                datetime.now(timezone.utc).isoformat(),
                context.sender_id or "Unknown",
                context.message_text or context.comment_id or "N/A",
                context.trigger_type,
            ]
            result = _with_retry(lambda: sheets.append_row(
                context.user_id,
                target.spreadsheet_id,
                target.sheet_name,
                SHEETS_COLUMN_HEADERS,
                row,
            ))
            if result.success:
                logs.info("Row appended", spreadsheetId=target.spreadsheet_id)
                return NodeExecutionResult.ok([], "Data logged to sheets", logs=logs.entries)
            logs.error("Export failed", error=result.error)
            return NodeExecutionResult.fail(result.error or "Export failed", logs=logs.entries)

    except CapabilityUnavailableError as e:
        logs.error(str(e))
        return NodeExecutionResult.fail(str(e), logs=logs.entries)
    except Exception as e:
        logs.error("Execution error", error=str(e), errorType=type(e).__name__)
        return NodeExecutionResult.fail(f"Execution error: {e}", logs=logs.entries)


# ==============================================================================
# Bridge
# ==============================================================================

class LegacyNode(BaseNode):
    """BaseNode adapter around ``execute_legacy_node`` for one subtype."""

    category = NodeCategory.ACTION

    def __init__(self, sub_type: str) -> None:
        self.sub_type = sub_type
        self.description = LEGACY_DESCRIPTIONS.get(sub_type, "")
        self.config_model = LEGACY_CONFIG_MODELS[sub_type]
        super().__init__()

    def execute(
        self,
        config: Dict[str, Any],
        items: List[Item],
        context: ExecutionContext,
    ) -> NodeExecutionResult:
        result = execute_legacy_node(self.sub_type, config, context)
        if not result.success:
            return result
        return NodeExecutionResult.ok(items, result.message, logs=result.logs)

    def to_definition(self) -> NodeDefinition:
        return NodeDefinition(
            sub_type=self.sub_type,
            category=self.category.value,
            description=self.description,
            node_class=f"{__name__}.execute_legacy_node",
            source="legacy",
            config_schema=self.config_model.model_json_schema(),
        )


class LegacyBridge:
    """
    Lower-priority fallback consulted after the registry.

    Refuses any subtype the registry already serves, so each subtype
    has exactly one dispatch path.
    """

    def __init__(self, registry: Optional[NodeRegistry] = None) -> None:
        self._registry = registry
        self._adapters: Dict[str, LegacyNode] = {
            sub_type: LegacyNode(sub_type) for sub_type in sorted(LEGACY_SUBTYPES)
        }

    def resolve(self, sub_type: str) -> Optional[BaseNode]:
        """Get the adapter for a legacy subtype, or None."""
        if self._registry is not None and self._registry.has_node(sub_type):
            logger.warning(f"Legacy bridge refused migrated subtype: {sub_type}")
            return None
        return self._adapters.get(sub_type)

    def has_node(self, sub_type: str) -> bool:
        return self.resolve(sub_type) is not None

    def list_nodes(self) -> List[NodeDefinition]:
        return [
            adapter.to_definition()
            for sub_type, adapter in self._adapters.items()
            if self._registry is None or not self._registry.has_node(sub_type)
        ]
