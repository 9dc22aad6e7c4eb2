"""
Execution Statistics.

Aggregates timing and success counters across runs. Averages are updated
incrementally; history keeps only the most recent runs, newest first.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime, timedelta
import tracemalloc
import uuid


class NodeTypeStats(BaseModel):
    execution_count: int = 0
    average_execution_time: float = 0
    total_execution_time: float = 0


class ExecutionStats(BaseModel):
    """Totals across every recorded run."""

    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    average_execution_time: float = 0
    total_execution_time: float = 0
    last_execution_time: Optional[datetime] = None
    node_execution_counts: Dict[str, int] = Field(default_factory=dict)
    node_average_execution_times: Dict[str, float] = Field(default_factory=dict)
    peak_memory_usage: int = 0
    current_memory_usage: int = 0


class NodePerformanceStats(BaseModel):
    """Per node id timings."""

    node_id: str
    node_type: str
    execution_count: int = 0
    total_execution_time: float = 0
    average_execution_time: float = 0
    min_execution_time: Optional[float] = None
    max_execution_time: float = 0
    success_count: int = 0
    failure_count: int = 0
    last_execution_time: Optional[datetime] = None


class RunRecord(BaseModel):
    id: str
    start_time: datetime
    end_time: datetime
    status: str
    node_count: int
    duration: float


class StatsCollector:
    """
    Collects run and node statistics.

    Usage:
        stats = StatsCollector()
        stats.record_node("n1", "aiDialogNode", 1200, success=True)
        stats.record_run(success=True, duration_ms=1500, node_count=3)
    """

    def __init__(self, history_limit: int = 50):
        self.history_limit = history_limit
        self._stats = ExecutionStats()
        self._node_stats: Dict[str, NodePerformanceStats] = {}
        self._history: List[RunRecord] = []

    def record_run(
        self,
        success: bool,
        duration_ms: float,
        node_count: int,
        status: Optional[str] = None,
    ) -> None:
        stats = self._stats
        now = datetime.now()

        stats.total_executions += 1
        stats.total_execution_time += duration_ms
        stats.average_execution_time += (
            (duration_ms - stats.average_execution_time) / stats.total_executions
        )
        stats.last_execution_time = now
        if success:
            stats.successful_executions += 1
        else:
            stats.failed_executions += 1

        stats.current_memory_usage = self._memory_usage()
        stats.peak_memory_usage = max(stats.peak_memory_usage, stats.current_memory_usage)

        self._history.insert(0, RunRecord(
            id=f"exec_{uuid.uuid4().hex[:12]}",
            start_time=now - timedelta(milliseconds=duration_ms),
            end_time=now,
            status=status or ("completed" if success else "failed"),
            node_count=node_count,
            duration=duration_ms,
        ))
        del self._history[self.history_limit:]

    def record_node(self, node_id: str, node_type: str, duration_ms: float, success: bool) -> None:
        node = self._node_stats.get(node_id)
        if node is None:
            node = NodePerformanceStats(node_id=node_id, node_type=node_type)
            self._node_stats[node_id] = node

        node.execution_count += 1
        node.total_execution_time += duration_ms
        node.average_execution_time += (
            (duration_ms - node.average_execution_time) / node.execution_count
        )
        node.min_execution_time = (
            duration_ms if node.min_execution_time is None
            else min(node.min_execution_time, duration_ms)
        )
        node.max_execution_time = max(node.max_execution_time, duration_ms)
        node.last_execution_time = datetime.now()
        if success:
            node.success_count += 1
        else:
            node.failure_count += 1

        counts = self._stats.node_execution_counts
        averages = self._stats.node_average_execution_times
        counts[node_type] = counts.get(node_type, 0) + 1
        average = averages.get(node_type, 0.0)
        averages[node_type] = average + (duration_ms - average) / counts[node_type]

    # =========================================================================
    # Snapshots
    # =========================================================================

    def get_stats(self) -> ExecutionStats:
        return self._stats.model_copy(deep=True)

    def get_node_stats(self) -> List[NodePerformanceStats]:
        return [s.model_copy() for s in self._node_stats.values()]

    def get_history(self) -> List[RunRecord]:
        return [r.model_copy() for r in self._history]

    def node_type_stats(self, node_type: str) -> NodeTypeStats:
        count = self._stats.node_execution_counts.get(node_type, 0)
        average = self._stats.node_average_execution_times.get(node_type, 0.0)
        return NodeTypeStats(
            execution_count=count,
            average_execution_time=average,
            total_execution_time=average * count,
        )

    def success_rate(self) -> float:
        """Percentage of successful runs, 0 when nothing ran."""
        if self._stats.total_executions == 0:
            return 0.0
        return self._stats.successful_executions / self._stats.total_executions * 100

    def best_performing_node_type(self) -> Optional[str]:
        averages = self._stats.node_average_execution_times
        if not averages:
            return None
        return min(averages, key=averages.get)

    def worst_performing_node_type(self) -> Optional[str]:
        averages = self._stats.node_average_execution_times
        if not averages:
            return None
        return max(averages, key=averages.get)

    def export(self) -> Dict[str, Any]:
        return {
            "execution_stats": self.get_stats().model_dump(mode="json"),
            "node_performance_stats": [s.model_dump(mode="json") for s in self.get_node_stats()],
            "execution_history": [r.model_dump(mode="json") for r in self.get_history()],
            "summary": {
                "success_rate": self.success_rate(),
                "best_performing_node_type": self.best_performing_node_type(),
                "worst_performing_node_type": self.worst_performing_node_type(),
            },
        }

    def reset(self) -> None:
        self._stats = ExecutionStats()
        self._node_stats.clear()
        self._history.clear()

    def _memory_usage(self) -> int:
        # Real figures only while tracemalloc is tracing
        if not tracemalloc.is_tracing():
            return 0
        current, _peak = tracemalloc.get_traced_memory()
        return current
