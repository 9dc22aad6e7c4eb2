"""
WebSocket Routes for Live Debug State.

A client connected to a session receives the full state on connect and after
every change, and may send control actions over the same socket.
"""

from typing import Any, Dict, Set
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import asyncio
import logging

from agentflow.engine.state import DebugExecutionState, UserInputResponse
from agentflow.storage.memory import DebugSession, session_storage


logger = logging.getLogger(__name__)

router = APIRouter(tags=["WebSocket"])


class ConnectionManager:
    """Tracks WebSocket connections per session."""

    def __init__(self):
        self.active_connections: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, session_id: str):
        """Accept a new WebSocket connection."""
        await websocket.accept()
        if session_id not in self.active_connections:
            self.active_connections[session_id] = set()
        self.active_connections[session_id].add(websocket)
        logger.info(f"WebSocket connected for session: {session_id}")

    def disconnect(self, websocket: WebSocket, session_id: str):
        """Remove a WebSocket connection."""
        if session_id in self.active_connections:
            self.active_connections[session_id].discard(websocket)
            if not self.active_connections[session_id]:
                del self.active_connections[session_id]
        logger.info(f"WebSocket disconnected for session: {session_id}")

    @property
    def connection_count(self) -> int:
        return sum(len(c) for c in self.active_connections.values())


# Global connection manager
manager = ConnectionManager()


def _state_message(state: DebugExecutionState) -> Dict[str, Any]:
    return {"type": "state", "state": state.model_dump(mode="json")}


@router.websocket("/ws/debug/{session_id}")
async def websocket_debug(websocket: WebSocket, session_id: str):
    """
    Live state of a debug session.

    Message format (server -> client):
    ```json
    {"type": "state", "state": {"status": "running", "completed_nodes": [...], ...}}
    ```

    Message format (client -> server):
    ```json
    {"action": "submit_input", "step_id": "step_2_chat", "value": "hello"}
    {"action": "stop"}
    {"action": "reset"}
    {"action": "get_state"}
    ```
    """
    session = await session_storage.get(session_id)
    if not session:
        await websocket.close(code=4004, reason=f"Session '{session_id}' not found")
        return

    await manager.connect(websocket, session_id)

    # Listeners are called synchronously on the event loop; queue and forward
    queue: asyncio.Queue = asyncio.Queue()
    unsubscribe = session.orchestrator.subscribe(queue.put_nowait)
    queue.put_nowait(session.orchestrator.get_state())
    sender = asyncio.create_task(_forward_states(websocket, queue))

    try:
        while True:
            message = await websocket.receive_json()
            error = _handle_action(session, message, queue)
            if error:
                await websocket.send_json({"type": "error", "error": error})

    except WebSocketDisconnect:
        logger.info(f"Client disconnected from session {session_id}")
    except Exception as e:
        logger.exception(f"WebSocket error: {e}")
    finally:
        unsubscribe()
        sender.cancel()
        manager.disconnect(websocket, session_id)


async def _forward_states(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        state = await queue.get()
        await websocket.send_json(_state_message(state))


def _handle_action(session: DebugSession, message: Any, queue: asyncio.Queue):
    """Apply a client action. Returns an error message, or None."""
    if not isinstance(message, dict):
        return "Expected a JSON object"

    action = message.get("action")
    orchestrator = session.orchestrator

    if action == "get_state":
        queue.put_nowait(orchestrator.get_state())
    elif action == "stop":
        orchestrator.stop()
    elif action == "reset":
        orchestrator.reset()
    elif action == "submit_input":
        accepted = orchestrator.submit_user_input(UserInputResponse(
            step_id=message.get("step_id", ""),
            value=message.get("value", ""),
        ))
        if not accepted:
            return "The session is not waiting for input for this step"
    else:
        return f"Unknown action: {action}"
    return None
