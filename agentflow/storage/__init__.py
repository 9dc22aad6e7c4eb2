"""
Storage package - In-memory storage for debug sessions.
"""

from agentflow.storage.memory import (
    DebugSession,
    SessionLimitError,
    SessionStorage,
    session_storage,
)

__all__ = [
    "DebugSession",
    "SessionLimitError",
    "SessionStorage",
    "session_storage",
]
