"""
In-Memory Storage for Debug Sessions.

A debug session owns one orchestrator, so its state, stats and history
survive between runs for as long as the process lives. Nothing is persisted.
"""

from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime
import asyncio
import logging
import uuid

from agentflow.config import settings
from agentflow.engine.executor import ExecutionOrchestrator
from agentflow.engine.stats import StatsCollector
from agentflow.service.client import ExecutionServiceClient


logger = logging.getLogger(__name__)


class SessionLimitError(Exception):
    """Raised when the session registry is full."""


@dataclass
class DebugSession:
    """A stored debug session."""
    session_id: str
    name: str
    orchestrator: ExecutionOrchestrator
    created_at: datetime = field(default_factory=datetime.now)
    task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self.task is not None and not self.task.done()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "name": self.name,
            "status": self.orchestrator.store.status.value,
            "is_running": self.is_running,
            "created_at": self.created_at.isoformat(),
        }


class SessionStorage:
    """
    In-memory registry of debug sessions, guarded by an asyncio lock.

    Each session gets its own orchestrator and stats collector; all of them
    share one execution service client.
    """

    def __init__(
        self,
        max_sessions: int = 100,
        history_limit: int = 50,
        retry_backoff: float = 0.5,
        service: Optional[ExecutionServiceClient] = None,
    ):
        self.max_sessions = max_sessions
        self.history_limit = history_limit
        self.retry_backoff = retry_backoff
        self.service = service
        self._sessions: Dict[str, DebugSession] = {}
        self._lock = asyncio.Lock()

    def _build_orchestrator(self) -> ExecutionOrchestrator:
        return ExecutionOrchestrator(
            service=self.service,
            stats=StatsCollector(history_limit=self.history_limit),
            retry_backoff=self.retry_backoff,
        )

    async def create(self, name: Optional[str] = None) -> DebugSession:
        """
        Create a new session.

        Raises:
            SessionLimitError: If ``max_sessions`` sessions already exist
        """
        async with self._lock:
            if len(self._sessions) >= self.max_sessions:
                raise SessionLimitError(f"Session limit reached ({self.max_sessions})")

            session_id = uuid.uuid4().hex
            session = DebugSession(
                session_id=session_id,
                name=name or f"session-{session_id[:8]}",
                orchestrator=self._build_orchestrator(),
            )
            self._sessions[session_id] = session
            logger.info(f"Created debug session {session_id}")
            return session

    async def get(self, session_id: str) -> Optional[DebugSession]:
        """Get a session by ID."""
        async with self._lock:
            return self._sessions.get(session_id)

    async def delete(self, session_id: str) -> bool:
        """Delete a session, stopping its run."""
        async with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False

        session.orchestrator.dispose()
        if session.is_running:
            session.task.cancel()
        logger.info(f"Deleted debug session {session_id}")
        return True

    async def list_all(self) -> List[DebugSession]:
        """List all sessions."""
        async with self._lock:
            return list(self._sessions.values())

    async def close(self) -> None:
        """Drop every session and release the service client."""
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()

        for session in sessions:
            session.orchestrator.dispose()
            if session.is_running:
                session.task.cancel()

        if self.service is not None:
            await self.service.aclose()
            self.service = None

    def __len__(self) -> int:
        return len(self._sessions)


# Global storage instance
session_storage = SessionStorage(
    max_sessions=settings.MAX_SESSIONS,
    history_limit=settings.STATS_HISTORY_LIMIT,
    retry_backoff=settings.RETRY_BACKOFF_SECONDS,
)
