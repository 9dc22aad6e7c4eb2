"""Client for the external node execution service."""

from agentflow.service.client import (
    ExecutionServiceClient,
    NodeExecutionRequest,
    NodeExecutionResponse,
)

__all__ = [
    "ExecutionServiceClient",
    "NodeExecutionRequest",
    "NodeExecutionResponse",
]
