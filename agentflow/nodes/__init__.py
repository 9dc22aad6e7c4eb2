"""
Nodes package - Built-in executors for every supported node kind.

Importing this package registers the executors.
"""

from agentflow.nodes.local import EndExecutor, StartExecutor
from agentflow.nodes.remote import (
    EXECUTION_POLICIES,
    ExecutionPolicy,
    ServiceNodeExecutor,
    previous_data_as_text,
)

__all__ = [
    "StartExecutor",
    "EndExecutor",
    "ServiceNodeExecutor",
    "ExecutionPolicy",
    "EXECUTION_POLICIES",
    "previous_data_as_text",
]
