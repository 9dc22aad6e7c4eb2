"""
Observable Run State.

There is exactly one DebugExecutionState per orchestrator. The store is the only
writer: every mutation goes through one of its methods and is followed by a
notification carrying a full snapshot of the new state, so observers never
need to diff or poll.
"""

from typing import Any, Callable, Deque, Dict, List, Optional
from pydantic import BaseModel, Field
from collections import deque
from datetime import datetime
from enum import Enum
import logging

from agentflow.engine.plan import ExecutionPlan, UserInputConfig


logger = logging.getLogger(__name__)


class DebugStatus(str, Enum):
    """Status of the current run."""
    IDLE = "idle"
    RUNNING = "running"
    WAITING_INPUT = "waiting_input"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"


TERMINAL_STATUSES = frozenset({DebugStatus.COMPLETED, DebugStatus.FAILED, DebugStatus.STOPPED})
ACTIVE_STATUSES = frozenset({DebugStatus.RUNNING, DebugStatus.WAITING_INPUT})


class NodeResultStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    WAITING_INPUT = "waiting_input"


class DebugNodeInput(BaseModel):
    """What a node was given, kept for auditing a run."""

    node_info: Dict[str, Any] = Field(default_factory=dict)
    node_config: Dict[str, Any] = Field(default_factory=dict)
    context_data: Dict[str, Any] = Field(default_factory=dict)
    execution_meta: Dict[str, Any] = Field(default_factory=dict)


class DebugNodeResult(BaseModel):
    """Outcome of one node within a run."""

    node_id: str
    node_type: str
    status: NodeResultStatus
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: float = 0
    input: Optional[DebugNodeInput] = None
    output: Any = None
    error: Optional[str] = None


class UserInputRequest(BaseModel):
    """Prompt published while the run waits for a human value."""

    step_id: str
    node_id: str
    node_type: str
    node_label: str
    config: UserInputConfig
    previous_data: Dict[str, Any] = Field(default_factory=dict)


class UserInputResponse(BaseModel):
    """A human-supplied value. An empty step id matches the pending request."""

    step_id: str = ""
    value: Any = ""
    timestamp: datetime = Field(default_factory=datetime.now)


class DebugExecutionState(BaseModel):
    status: DebugStatus = DebugStatus.IDLE
    execution_id: Optional[str] = None
    current_node: Optional[str] = None
    current_step: Optional[str] = None
    completed_nodes: List[str] = Field(default_factory=list)
    total_nodes: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    error: Optional[str] = None
    results: Dict[str, DebugNodeResult] = Field(default_factory=dict)
    current_user_input_request: Optional[UserInputRequest] = None
    execution_plan: Optional[ExecutionPlan] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


StateListener = Callable[[DebugExecutionState], None]


class ExecutionStateStore:
    """
    Holds the current DebugExecutionState and fans out change notifications.

    Listeners are called synchronously with a snapshot after every mutation.
    A listener may itself trigger a mutation (for example by submitting user
    input); the resulting notification is queued and delivered after the
    current one has reached every listener, so all observers see states in
    the order they were produced.
    """

    def __init__(self):
        self._state = DebugExecutionState()
        self._listeners: List[StateListener] = []
        self._pending: Deque[DebugExecutionState] = deque()
        self._notifying = False

    # =========================================================================
    # Reading
    # =========================================================================

    def get_state(self) -> DebugExecutionState:
        """Return a deep copy of the current state."""
        return self._state.model_copy(deep=True)

    @property
    def status(self) -> DebugStatus:
        return self._state.status

    @property
    def execution_id(self) -> Optional[str]:
        return self._state.execution_id

    @property
    def current_request(self) -> Optional[UserInputRequest]:
        return self._state.current_user_input_request

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener. Returns a callable that unsubscribes it."""
        if listener not in self._listeners:
            self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def clear_listeners(self) -> None:
        self._listeners.clear()

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    # =========================================================================
    # Mutations
    # =========================================================================

    def update(self, **changes: Any) -> None:
        """Apply field changes to the state and notify."""
        for key, value in changes.items():
            if key not in DebugExecutionState.model_fields:
                raise AttributeError(f"DebugExecutionState has no field '{key}'")
            setattr(self._state, key, value)
        self._notify()

    def start_run(self, execution_id: str, plan: ExecutionPlan) -> None:
        self._state = DebugExecutionState(
            status=DebugStatus.RUNNING,
            execution_id=execution_id,
            total_nodes=len(plan.steps),
            start_time=datetime.now(),
            execution_plan=plan,
        )
        self._notify()

    def set_current(self, node_id: Optional[str], step_id: Optional[str] = None) -> None:
        self.update(current_node=node_id, current_step=step_id)

    def record_result(self, result: DebugNodeResult) -> None:
        """Store a node result, replacing any earlier result for the same node."""
        results = dict(self._state.results)
        results[result.node_id] = result
        self.update(results=results)

    def mark_completed(self, node_id: str) -> None:
        """Append a node to completed_nodes. Repeats are ignored."""
        if node_id in self._state.completed_nodes:
            return
        self.update(completed_nodes=self._state.completed_nodes + [node_id])

    def request_input(self, request: UserInputRequest) -> None:
        self.update(
            status=DebugStatus.WAITING_INPUT,
            current_user_input_request=request,
        )

    def resume(self) -> None:
        self.update(status=DebugStatus.RUNNING, current_user_input_request=None)

    def finish(self, status: DebugStatus, error: Optional[str] = None) -> None:
        """Move to a terminal status and stamp the end time."""
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"{status.value} is not a terminal status")
        self.update(
            status=status,
            error=error,
            end_time=datetime.now(),
            current_node=None,
            current_step=None,
            current_user_input_request=None,
        )

    def reset(self) -> None:
        """Back to a fresh idle state."""
        self._state = DebugExecutionState()
        self._notify()

    def _notify(self) -> None:
        if not self._listeners:
            return

        self._pending.append(self.get_state())
        if self._notifying:
            return

        self._notifying = True
        try:
            while self._pending:
                snapshot = self._pending.popleft()
                for listener in list(self._listeners):
                    try:
                        listener(snapshot)
                    except Exception as e:
                        logger.warning(f"State listener failed: {e}")
        finally:
            self._notifying = False
