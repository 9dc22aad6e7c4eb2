"""
Exceptions raised by the workflow engine.
"""

from typing import Optional


class WorkflowError(Exception):
    """Base class for engine errors."""


class PlanBuildError(WorkflowError):
    """The graph cannot be turned into an execution plan."""


class ExecutionError(WorkflowError):
    """A node failed to execute. Terminal for the run."""

    def __init__(self, message: str, node_id: Optional[str] = None):
        super().__init__(message)
        self.node_id = node_id


class UnknownNodeTypeError(ExecutionError):
    """No executor is registered for a node type."""


class ServiceError(WorkflowError):
    """Transport-level failure talking to the execution service."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
