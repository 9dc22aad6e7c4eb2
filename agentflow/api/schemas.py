"""
Pydantic Schemas for API Request/Response Models.

These schemas define the structure of data flowing through the API,
providing automatic validation and documentation. Engine models are reused
directly where the API returns them unchanged.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime

from agentflow.engine.graph import GraphEdge, GraphNode
from agentflow.engine.plan import ExecutionPlan


# ============================================================
# Graph Schemas
# ============================================================

class GraphPayload(BaseModel):
    """A workflow graph as drawn in the editor."""
    nodes: List[GraphNode] = Field(..., description="Nodes of the workflow")
    edges: List[GraphEdge] = Field(default_factory=list, description="Directed edges")

    class Config:
        json_schema_extra = {
            "example": {
                "nodes": [
                    {"id": "start", "type": "startNode", "data": {"label": "Start"}},
                    {
                        "id": "chat",
                        "type": "aiDialogNode",
                        "data": {"label": "Chat", "model": "gpt-4o", "inputSource": "2"},
                    },
                    {"id": "end", "type": "endNode", "data": {"label": "End"}},
                ],
                "edges": [
                    {"source": "start", "target": "chat"},
                    {"source": "chat", "target": "end"},
                ],
            }
        }


class ValidationResponse(BaseModel):
    """Result of structural graph validation."""
    valid: bool
    errors: List[str] = Field(default_factory=list)


class PlanPreviewResponse(BaseModel):
    """Execution plan computed without running anything."""
    plan: ExecutionPlan


# ============================================================
# Session Schemas
# ============================================================

class SessionCreateRequest(BaseModel):
    """Request to open a debug session."""
    name: Optional[str] = Field(None, description="Display name of the session")


class SessionResponse(BaseModel):
    """A debug session."""
    session_id: str
    name: str
    status: str
    is_running: bool
    created_at: datetime


class SessionListResponse(BaseModel):
    """List of debug sessions."""
    sessions: List[SessionResponse]
    total: int


# ============================================================
# Control Schemas
# ============================================================

class StartRunRequest(GraphPayload):
    """Request to run a graph inside a session."""
    workflow_id: Optional[str] = Field(None, description="Workflow id recorded in the plan")


class UserInputSubmitRequest(BaseModel):
    """A value for the pending input request."""
    step_id: str = Field("", description="Step being answered; empty answers the pending step")
    value: Any = Field("", description="Scalar or object value")

    class Config:
        json_schema_extra = {
            "example": {"step_id": "step_1_start", "value": "Summarize today's tickets"}
        }


class ControlResponse(BaseModel):
    """Acknowledgement of a control action."""
    session_id: str
    status: str
    message: str


# ============================================================
# Stats Schemas
# ============================================================

class StatsExportResponse(BaseModel):
    """Everything the stats collector knows, plus a summary."""
    execution_stats: Dict[str, Any]
    node_performance_stats: List[Dict[str, Any]]
    execution_history: List[Dict[str, Any]]
    summary: Dict[str, Any]


# ============================================================
# Error Schemas
# ============================================================

class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: Optional[Any] = None
