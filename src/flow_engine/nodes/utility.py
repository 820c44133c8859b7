"""
Utility executors.
"""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from flow_engine.config import get_settings
from flow_engine.node_sdk import (
    BaseNode,
    ExecutionContext,
    Item,
    NodeCategory,
    NodeExecutionResult,
)

from .base import first_error, pass_through


class DelayConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    delay: Optional[float] = Field(None, ge=0, description="Seconds to wait")
    seconds: Optional[float] = Field(None, ge=0, description="Alias of delay")

    @model_validator(mode="after")
    def require_duration(self) -> "DelayConfig":
        if self.delay is None and self.seconds is None:
            raise ValueError("delay or seconds is required")
        return self

    @property
    def duration(self) -> float:
        return self.delay if self.delay is not None else self.seconds


class DelayNode(BaseNode):
    """
    Pause the current run.

    Runs are synchronous, so the sleep blocks only the thread (or worker
    task) executing this run. Durations above ``max_delay_s`` are capped.
    """

    category = NodeCategory.ACTION
    sub_type = "DELAY"
    description = "Wait before continuing"
    config_model = DelayConfig

    def __init__(self, sleep=time.sleep) -> None:
        super().__init__()
        self._sleep = sleep

    def execute(
        self,
        config: Dict[str, Any],
        items: List[Item],
        context: ExecutionContext,
    ) -> NodeExecutionResult:
        logs = self.new_log_buffer(context)

        try:
            parsed = self.parse_config(config)
        except ValidationError as e:
            detail = first_error(e)
            logs.error("Invalid delay configuration", detail=detail)
            return NodeExecutionResult.fail(f"Invalid DELAY configuration: {detail}", logs=logs.entries)

        limit = get_settings().max_delay_s
        seconds = parsed.duration
        if seconds > limit:
            logs.warn("Delay capped", requested=seconds, cap=limit)
            seconds = limit

        logs.info(f"Waiting {seconds:g}s", seconds=seconds)
        if seconds > 0:
            self._sleep(seconds)

        return NodeExecutionResult.ok(pass_through(items), f"Delayed {seconds:g}s", logs=logs.entries)
