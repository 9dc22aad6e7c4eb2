"""
Debug Session API Routes.

Endpoints for validating graphs, previewing plans and driving debug runs:
open a session, start a run in the background, answer input requests,
stop or reset, and read state and statistics.
"""

from typing import List
from fastapi import APIRouter, HTTPException, status
import asyncio
import logging

from agentflow.api.schemas import (
    ControlResponse,
    ErrorResponse,
    GraphPayload,
    PlanPreviewResponse,
    SessionCreateRequest,
    SessionListResponse,
    SessionResponse,
    StartRunRequest,
    StatsExportResponse,
    UserInputSubmitRequest,
    ValidationResponse,
)
from agentflow.engine.errors import PlanBuildError
from agentflow.engine.graph import GraphValidator
from agentflow.engine.plan import PlanBuilder
from agentflow.engine.state import DebugExecutionState, DebugStatus, UserInputResponse
from agentflow.engine.stats import ExecutionStats, NodePerformanceStats, RunRecord
from agentflow.storage.memory import DebugSession, SessionLimitError, session_storage


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/debug", tags=["Debug"])

_validator = GraphValidator()
_plan_builder = PlanBuilder()


# ============================================================
# Graph Endpoints
# ============================================================

@router.post("/validate", response_model=ValidationResponse)
async def validate_graph(request: GraphPayload) -> ValidationResponse:
    """Check a graph for structural problems without running it."""
    errors = _validator.validate(request.nodes, request.edges)
    return ValidationResponse(valid=not errors, errors=errors)


@router.post(
    "/plan",
    response_model=PlanPreviewResponse,
    responses={400: {"model": ErrorResponse, "description": "Invalid graph"}},
)
async def preview_plan(request: GraphPayload) -> PlanPreviewResponse:
    """Compute the execution order and input prompts for a graph."""
    errors = _validator.validate(request.nodes, request.edges)
    if errors:
        raise HTTPException(
            status_code=400,
            detail={"message": "Invalid workflow graph", "errors": errors},
        )

    try:
        plan = _plan_builder.build(request.nodes, request.edges, workflow_id="preview")
    except PlanBuildError as e:
        raise HTTPException(status_code=400, detail={"message": str(e), "errors": [str(e)]})

    return PlanPreviewResponse(plan=plan)


# ============================================================
# Session Endpoints
# ============================================================

@router.post(
    "/sessions",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse, "description": "Session limit reached"}},
)
async def create_session(request: SessionCreateRequest) -> SessionResponse:
    """Open a debug session with its own engine, state and statistics."""
    try:
        session = await session_storage.create(request.name)
    except SessionLimitError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return SessionResponse(**session.to_dict())


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions() -> SessionListResponse:
    """List all debug sessions."""
    sessions = await session_storage.list_all()
    return SessionListResponse(
        sessions=[SessionResponse(**s.to_dict()) for s in sessions],
        total=len(sessions),
    )


@router.delete("/sessions/{session_id}", responses={404: {"model": ErrorResponse}})
async def delete_session(session_id: str):
    """Close a session, stopping any active run."""
    deleted = await session_storage.delete(session_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")
    return {"message": f"Session '{session_id}' deleted"}


# ============================================================
# Control Endpoints
# ============================================================

@router.post(
    "/sessions/{session_id}/start",
    response_model=ControlResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid graph"},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "A run is already active"},
    },
)
async def start_run(session_id: str, request: StartRunRequest) -> ControlResponse:
    """
    Start a run in the background.

    Follow progress over the WebSocket at `/ws/debug/{session_id}` or by
    polling `GET /debug/sessions/{session_id}/state`.
    """
    session = await _get_session(session_id)
    orchestrator = session.orchestrator

    # A stopped run may still be unwinding; it no longer owns the session
    pending = session.is_running and orchestrator.store.status != DebugStatus.STOPPED
    if orchestrator.is_running or pending:
        raise HTTPException(status_code=409, detail="A run is already active in this session")

    errors = orchestrator.validate(request.nodes, request.edges)
    if errors:
        raise HTTPException(
            status_code=400,
            detail={"message": "Invalid workflow graph", "errors": errors},
        )

    session.task = asyncio.create_task(_run_in_background(session, request))
    return ControlResponse(
        session_id=session_id,
        status=orchestrator.store.status.value,
        message="Run started",
    )


@router.post("/sessions/{session_id}/stop", response_model=ControlResponse)
async def stop_run(session_id: str) -> ControlResponse:
    """Stop the active run. Nodes that already completed keep their results."""
    session = await _get_session(session_id)
    session.orchestrator.stop()
    return ControlResponse(
        session_id=session_id,
        status=session.orchestrator.store.status.value,
        message="Stop requested",
    )


@router.post("/sessions/{session_id}/reset", response_model=ControlResponse)
async def reset_run(session_id: str) -> ControlResponse:
    """Discard the current run and return to idle. Statistics are kept."""
    session = await _get_session(session_id)
    session.orchestrator.reset()
    return ControlResponse(
        session_id=session_id,
        status=session.orchestrator.store.status.value,
        message="Session reset",
    )


@router.post(
    "/sessions/{session_id}/input",
    response_model=ControlResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "No matching input request"},
    },
)
async def submit_input(session_id: str, request: UserInputSubmitRequest) -> ControlResponse:
    """Answer the pending input request."""
    session = await _get_session(session_id)
    accepted = session.orchestrator.submit_user_input(
        UserInputResponse(step_id=request.step_id, value=request.value)
    )
    if not accepted:
        raise HTTPException(
            status_code=409,
            detail="The session is not waiting for input for this step",
        )
    return ControlResponse(
        session_id=session_id,
        status=session.orchestrator.store.status.value,
        message="Input accepted",
    )


# ============================================================
# Read Endpoints
# ============================================================

@router.get("/sessions/{session_id}/state", response_model=DebugExecutionState)
async def get_state(session_id: str) -> DebugExecutionState:
    """Current run state, including node results and any pending input request."""
    session = await _get_session(session_id)
    return session.orchestrator.get_state()


@router.get("/sessions/{session_id}/stats", response_model=ExecutionStats)
async def get_stats(session_id: str) -> ExecutionStats:
    session = await _get_session(session_id)
    return session.orchestrator.get_stats()


@router.get("/sessions/{session_id}/node-stats", response_model=List[NodePerformanceStats])
async def get_node_stats(session_id: str) -> List[NodePerformanceStats]:
    session = await _get_session(session_id)
    return session.orchestrator.get_node_stats()


@router.get("/sessions/{session_id}/history", response_model=List[RunRecord])
async def get_history(session_id: str) -> List[RunRecord]:
    """Most recent runs, newest first."""
    session = await _get_session(session_id)
    return session.orchestrator.get_history()


@router.get("/sessions/{session_id}/stats/export", response_model=StatsExportResponse)
async def export_stats(session_id: str) -> StatsExportResponse:
    session = await _get_session(session_id)
    return StatsExportResponse(**session.orchestrator.export_stats())


@router.delete("/sessions/{session_id}/stats")
async def reset_stats(session_id: str):
    """Clear statistics and run history of a session."""
    session = await _get_session(session_id)
    session.orchestrator.reset_stats()
    return {"message": "Statistics reset"}


# ============================================================
# Helpers
# ============================================================

async def _get_session(session_id: str) -> DebugSession:
    session = await session_storage.get(session_id)
    if not session:
        raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")
    return session


async def _run_in_background(session: DebugSession, request: StartRunRequest) -> None:
    """Run a graph to the end. Outcomes are reported through the session state."""
    try:
        errors = await session.orchestrator.start(
            request.nodes,
            request.edges,
            workflow_id=request.workflow_id,
        )
    except RuntimeError as e:
        logger.warning(f"Session {session.session_id} could not start a run: {e}")
        return

    if errors:
        logger.warning(f"Session {session.session_id} rejected the graph: {errors}")
