# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
flowrunner Models

Pydantic models for workflow graphs, execution records and the invocation
API. Wire names are camelCase (``nodeId``, ``sourceHandle``); Python code
uses the snake_case attribute names.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


# ============================================================================
# Workflow Definition Models
# ============================================================================

class WorkflowNode(BaseModel):
    """Single node in a workflow graph"""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    type: str
    label: str = ""
    category: str = ""
    config: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def flatten_editor_shape(cls, data: Any) -> Any:
        # Editor canvas stores {id, type: "custom", data: {label, type, config}}
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            inner = data["data"]
            flat = {"id": data.get("id")}
            flat["type"] = inner.get("type") or data.get("type")
            flat["label"] = inner.get("label") or data.get("label") or ""
            flat["category"] = inner.get("category") or data.get("category") or ""
            flat["config"] = inner.get("config") or data.get("config") or {}
            return flat
        return data

    @property
    def name(self) -> str:
        """Display name used in logs and error messages."""
        return self.label or self.type


class WorkflowEdge(BaseModel):
    """Directed connection between two nodes, optionally branch-tagged"""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = ""
    source: str
    target: str
    source_handle: Optional[str] = Field(default=None, alias="sourceHandle")

    @field_validator("source_handle", mode="before")
    @classmethod
    def normalize_handle(cls, v):
        # Editor writes "" or null for plain edges
        if v is None or v == "":
            return None
        return str(v)

    @property
    def is_conditional(self) -> bool:
        return self.source_handle is not None


class Workflow(BaseModel):
    """Stored workflow definition"""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str = ""
    user_id: str = ""
    status: str = "active"
    webhook_enabled: bool = False
    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status == "active"


# ============================================================================
# Execution Models
# ============================================================================

class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class LogStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class ExecutionLog(BaseModel):
    """One entry per node visited during a run"""
    model_config = ConfigDict(populate_by_name=True)

    node_id: str = Field(alias="nodeId")
    node_name: str = Field(alias="nodeName")
    status: LogStatus
    started_at: str = Field(alias="startedAt")
    finished_at: Optional[str] = Field(default=None, alias="finishedAt")
    input: Optional[Any] = None
    output: Optional[Any] = None
    error: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class Execution(BaseModel):
    """Persisted record of one run"""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    workflow_id: str = Field(alias="workflowId")
    user_id: str = Field(default="", alias="userId")
    status: ExecutionStatus = ExecutionStatus.RUNNING
    trigger: str = "manual"
    started_at: str = Field(alias="startedAt")
    finished_at: Optional[str] = Field(default=None, alias="finishedAt")
    duration_ms: Optional[int] = Field(default=None, alias="durationMs")
    input: Optional[Any] = None
    output: Optional[Any] = None
    error: Optional[str] = None
    logs: List[ExecutionLog] = Field(default_factory=list)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# ============================================================================
# API Models
# ============================================================================

class ExecutionRequest(BaseModel):
    """Request to run a workflow"""
    model_config = ConfigDict(populate_by_name=True)

    workflow_id: str = Field(alias="workflowId", min_length=1)
    execution_id: Optional[str] = Field(default=None, alias="executionId")
    input: Optional[Any] = None
    trigger: str = "manual"


class ExecutionResponse(BaseModel):
    """Outcome of one run, returned as 200 even when the run failed"""
    model_config = ConfigDict(populate_by_name=True)

    execution_id: str = Field(alias="executionId")
    status: ExecutionStatus
    output: Optional[Any] = None
    logs: List[ExecutionLog] = Field(default_factory=list)
    duration_ms: int = Field(default=0, alias="durationMs")
    error: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        body = self.model_dump(by_alias=True, mode="json")
        if body.get("error") is None:
            body.pop("error", None)
        return body


class WebhookResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    reply: Optional[Any] = None
    execution_id: str = Field(alias="executionId")
