"""
Engine package - Core workflow execution components.
"""

from agentflow.engine.errors import (
    ExecutionError,
    PlanBuildError,
    ServiceError,
    UnknownNodeTypeError,
    WorkflowError,
)
from agentflow.engine.graph import GraphEdge, GraphNode, GraphValidator
from agentflow.engine.plan import ExecutionPlan, ExecutionStep, PlanBuilder, UserInputConfig
from agentflow.engine.state import (
    DebugExecutionState,
    DebugNodeResult,
    DebugStatus,
    ExecutionStateStore,
    UserInputRequest,
    UserInputResponse,
)
from agentflow.engine.stats import StatsCollector
from agentflow.engine.gate import UserInputGate
from agentflow.engine.node import (
    ExecutionContext,
    NeedsInput,
    NodeExecutor,
    NodeExecutorFactory,
    NodeInput,
    register_executor,
)
from agentflow.engine.executor import ExecutionOrchestrator

__all__ = [
    "WorkflowError",
    "PlanBuildError",
    "ExecutionError",
    "UnknownNodeTypeError",
    "ServiceError",
    "GraphNode",
    "GraphEdge",
    "GraphValidator",
    "ExecutionPlan",
    "ExecutionStep",
    "PlanBuilder",
    "UserInputConfig",
    "DebugExecutionState",
    "DebugNodeResult",
    "DebugStatus",
    "ExecutionStateStore",
    "UserInputRequest",
    "UserInputResponse",
    "StatsCollector",
    "UserInputGate",
    "ExecutionContext",
    "NeedsInput",
    "NodeExecutor",
    "NodeExecutorFactory",
    "NodeInput",
    "register_executor",
    "ExecutionOrchestrator",
]
