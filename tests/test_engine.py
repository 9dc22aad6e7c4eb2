"""
Tests for the Workflow Engine core components.
"""

import pytest
import asyncio
from datetime import datetime
from typing import Any, Dict, List

from agentflow.engine.errors import PlanBuildError
from agentflow.engine.gate import UserInputGate
from agentflow.engine.graph import GraphNode, GraphValidator, coerce_graph
from agentflow.engine.plan import (
    ExecutionPlan,
    PlanBuilder,
    PlanStatus,
    StepStatus,
    requires_user_input,
)
from agentflow.engine.state import (
    DebugExecutionState,
    DebugNodeResult,
    DebugStatus,
    ExecutionStateStore,
    NodeResultStatus,
    UserInputResponse,
)
from agentflow.engine.stats import StatsCollector


def make_node(node_id: str, node_type: str, **data: Any) -> Dict[str, Any]:
    return {"id": node_id, "type": node_type, "data": {"label": node_id, **data}}


def make_edges(*pairs) -> List[Dict[str, str]]:
    return [{"source": s, "target": t} for s, t in pairs]


def linear_graph():
    nodes = [
        make_node("start", "startNode"),
        make_node("chat", "aiDialogNode", inputSource="2"),
        make_node("end", "endNode"),
    ]
    return nodes, make_edges(("start", "chat"), ("chat", "end"))


def long_chain(length: int):
    """start -> p0 -> ... -> p<length-1> -> end"""
    ids = ["start"] + [f"p{i}" for i in range(length)] + ["end"]
    nodes = [make_node(ids[0], "startNode")]
    nodes += [make_node(node_id, "dataProcessNode") for node_id in ids[1:-1]]
    nodes.append(make_node(ids[-1], "endNode"))
    return nodes, make_edges(*zip(ids, ids[1:]))


# ============================================================
# Graph Validation Tests
# ============================================================

class TestGraphValidator:
    """Tests for GraphValidator."""

    def test_valid_linear_graph(self):
        """Test that a simple start -> node -> end graph is valid."""
        nodes, edges = linear_graph()
        assert GraphValidator().validate(nodes, edges) == []

    def test_start_to_end_only(self):
        """Test the smallest runnable graph."""
        nodes = [make_node("start", "startNode"), make_node("end", "endNode")]
        assert GraphValidator().validate(nodes, make_edges(("start", "end"))) == []

    def test_empty_graph(self):
        """Test that an empty graph is rejected."""
        assert GraphValidator().validate([], []) == ["Graph must have at least one node"]

    def test_missing_start_and_end(self):
        """Test that both the start and terminal requirements are reported."""
        errors = GraphValidator().validate([make_node("a", "aiDialogNode")], [])
        assert "Graph must have exactly one start node (found none)" in errors
        assert "Graph must have at least one end node (end or response node)" in errors

    def test_multiple_start_nodes(self):
        """Test that two start nodes are rejected."""
        nodes = [
            make_node("s1", "startNode"),
            make_node("s2", "start-node"),
            make_node("end", "endNode"),
        ]
        errors = GraphValidator().validate(nodes, make_edges(("s1", "end"), ("s2", "end")))
        assert any("found 2" in e for e in errors)

    def test_ambiguous_fan_in(self):
        """Test that a non-terminal node with two incoming edges is rejected."""
        nodes = [
            make_node("start", "startNode"),
            make_node("check", "conditionNode"),
            make_node("a", "aiDialogNode"),
            make_node("b", "databaseNode"),
            make_node("merge", "dataProcessNode"),
            make_node("end", "endNode"),
        ]
        edges = make_edges(
            ("start", "check"), ("check", "a"), ("check", "b"),
            ("a", "merge"), ("b", "merge"), ("merge", "end"),
        )

        errors = GraphValidator().validate(nodes, edges)

        assert errors
        assert any("'merge'" in e and "ambiguous execution order" in e for e in errors)

    def test_terminal_fan_in_allowed(self):
        """Test that terminal nodes may collect several branches."""
        nodes = [
            make_node("start", "startNode"),
            make_node("check", "conditionNode"),
            make_node("a", "aiDialogNode"),
            make_node("b", "databaseNode"),
            make_node("end", "endNode"),
        ]
        edges = make_edges(("start", "check"), ("check", "a"), ("check", "b"), ("a", "end"), ("b", "end"))
        assert GraphValidator().validate(nodes, edges) == []

    def test_fan_out_requires_multi_output_kind(self):
        """Test that only condition-like nodes may branch."""
        nodes = [
            make_node("start", "startNode"),
            make_node("a", "aiDialogNode"),
            make_node("end1", "endNode"),
            make_node("end2", "responseNode"),
        ]
        edges = make_edges(("start", "a"), ("a", "end1"), ("a", "end2"))

        errors = GraphValidator().validate(nodes, edges)

        assert any("parallel branches are not supported" in e for e in errors)

    def test_isolated_node(self):
        """Test that a node off every start -> end path is reported."""
        nodes = [
            make_node("start", "startNode"),
            make_node("lonely", "aiDialogNode"),
            make_node("end", "endNode"),
        ]
        errors = GraphValidator().validate(nodes, make_edges(("start", "end")))
        assert any(e.startswith("Isolated nodes") and "lonely" in e for e in errors)

    def test_unreachable_terminal(self):
        """Test that a terminal not reachable from start is reported."""
        nodes = [
            make_node("start", "startNode"),
            make_node("a", "aiDialogNode"),
            make_node("end", "endNode"),
            make_node("reply", "responseNode"),
        ]
        edges = make_edges(("start", "end"), ("a", "reply"))

        errors = GraphValidator().validate(nodes, edges)

        assert "Terminal node 'reply' is not reachable from the start node" in errors

    def test_cycle_detected(self):
        """Test that a cycle is reported with its path."""
        nodes = [
            make_node("start", "startNode"),
            make_node("a", "aiDialogNode"),
            make_node("check", "conditionNode"),
            make_node("end", "endNode"),
        ]
        edges = make_edges(("start", "a"), ("a", "check"), ("check", "a"), ("check", "end"))

        errors = GraphValidator().validate(nodes, edges)

        assert "Graph contains a cycle: a -> check -> a" in errors

    def test_long_chain(self):
        """Test that a chain deeper than the recursion limit validates."""
        nodes, edges = long_chain(1500)
        assert GraphValidator().validate(nodes, edges) == []

    def test_long_cycle_detected(self):
        """Test that a cycle spanning a long chain is found."""
        nodes, edges = long_chain(1500)
        edges += make_edges(("p1499", "p0"))

        errors = GraphValidator().validate(nodes, edges)

        cycles = [e for e in errors if e.startswith("Graph contains a cycle: ")]
        assert len(cycles) == 1
        assert cycles[0].startswith("Graph contains a cycle: p0 -> p1 -> p2")
        assert cycles[0].endswith("p1498 -> p1499 -> p0")

    def test_unknown_edge_endpoint(self):
        """Test that edges to unknown nodes are reported."""
        nodes = [make_node("start", "startNode"), make_node("end", "endNode")]
        edges = make_edges(("start", "end"), ("start", "ghost"))

        errors = GraphValidator().validate(nodes, edges)

        assert any("unknown node 'ghost'" in e for e in errors)

    def test_duplicate_node_ids(self):
        """Test that duplicate ids are reported."""
        nodes = [
            make_node("start", "startNode"),
            make_node("end", "endNode"),
            make_node("end", "endNode"),
        ]
        errors = GraphValidator().validate(nodes, make_edges(("start", "end")))
        assert "Duplicate node id 'end'" in errors

    def test_accepts_models_and_aliases(self):
        """Test that GraphNode models and camelCase edge handles are accepted."""
        nodes, edges = coerce_graph(
            [GraphNode(id="start", type="startNode"), {"id": "end", "type": "endNode"}],
            [{"source": "start", "target": "end", "sourceHandle": "out"}],
        )
        assert edges[0].source_handle == "out"
        assert GraphValidator().validate(nodes, edges) == []


# ============================================================
# Plan Builder Tests
# ============================================================

class TestPlanBuilder:
    """Tests for PlanBuilder."""

    def test_build_linear_plan(self):
        """Test building a plan for a linear graph."""
        nodes, edges = linear_graph()
        plan = PlanBuilder().build(nodes, edges, workflow_id="wf-1")

        assert plan.id.startswith("plan_")
        assert plan.workflow_id == "wf-1"
        assert plan.total_steps == 3
        assert [s.node_id for s in plan.steps] == ["start", "chat", "end"]
        assert [s.id for s in plan.steps] == ["step_1_start", "step_2_chat", "step_3_end"]
        assert plan.steps[1].dependencies == ["start"]
        assert plan.status == PlanStatus.DRAFT
        assert plan.metadata == {"node_count": 3, "edge_count": 2, "has_user_interaction": True}

    def test_topological_order_respects_edges(self):
        """Test that every edge source comes before its target."""
        nodes = [
            make_node("end", "endNode"),
            make_node("b", "databaseNode"),
            make_node("check", "conditionNode"),
            make_node("a", "aiDialogNode"),
            make_node("start", "startNode"),
        ]
        edges = make_edges(("start", "check"), ("check", "a"), ("check", "b"), ("a", "end"), ("b", "end"))

        order = PlanBuilder().topological_order(nodes, edges)
        position = {node_id: i for i, node_id in enumerate(order)}

        assert sorted(order) == sorted(n["id"] for n in nodes)
        for edge in edges:
            assert position[edge["source"]] < position[edge["target"]]

    def test_ties_follow_node_order(self):
        """Test that ready nodes keep their input order."""
        nodes = [
            make_node("start", "startNode"),
            make_node("check", "conditionNode"),
            make_node("second", "aiDialogNode"),
            make_node("first", "aiDialogNode"),
            make_node("end", "endNode"),
        ]
        edges = make_edges(
            ("start", "check"), ("check", "first"), ("check", "second"),
            ("first", "end"), ("second", "end"),
        )

        order = PlanBuilder().topological_order(nodes, edges)

        assert order == ["start", "check", "second", "first", "end"]

    def test_ready_nodes_leave_in_arrival_order(self):
        """Test that a node freed later runs after nodes already queued."""
        nodes = [
            make_node("start", "startNode"),
            make_node("z", "dataProcessNode"),
            make_node("cond", "conditionNode"),
            make_node("end", "endNode"),
            make_node("x", "dataProcessNode"),
            make_node("y", "dataProcessNode"),
        ]
        edges = make_edges(
            ("start", "cond"), ("cond", "x"), ("cond", "y"),
            ("x", "z"), ("z", "end"), ("y", "end"),
        )

        order = PlanBuilder().topological_order(nodes, edges)

        assert order == ["start", "cond", "x", "y", "z", "end"]

    def test_long_chain_plan(self):
        """Test building a plan for a chain deeper than the recursion limit."""
        nodes, edges = long_chain(1500)
        plan = PlanBuilder().build(nodes, edges, workflow_id="wf-long")

        assert plan.total_steps == 1502
        assert plan.steps[0].node_id == "start"
        assert plan.steps[-1].node_id == "end"
        assert plan.steps[-1].dependencies == ["p1499"]

    def test_cycle_raises(self):
        """Test that a cyclic graph cannot be linearized."""
        nodes = [make_node("a", "aiDialogNode"), make_node("b", "aiDialogNode")]
        with pytest.raises(PlanBuildError, match="cycles involving: a, b"):
            PlanBuilder().topological_order(nodes, make_edges(("a", "b"), ("b", "a")))

    def test_missing_start_raises(self):
        """Test that the builder guards against a missing start node."""
        with pytest.raises(PlanBuildError, match="No start node found"):
            PlanBuilder().build([make_node("end", "endNode")], [], workflow_id="wf")

    def test_start_step_always_requests_input(self):
        """Test that the start step carries an input prompt."""
        nodes, edges = linear_graph()
        start = PlanBuilder().build(nodes, edges, "wf").steps[0]

        assert start.requires_user_input
        assert start.user_input_config.label == "Initial input"
        assert start.estimated_duration == 100

    def test_input_source_controls_prompt(self):
        """Test that only inputSource '1' asks the user."""
        builder = PlanBuilder()
        asks = builder.user_input_config_for(GraphNode(
            id="a", type="aiDialogNode", data={"inputSource": "1"},
        ))
        silent = builder.user_input_config_for(GraphNode(
            id="b", type="aiDialogNode", data={"inputSource": "2", "requiresUserInput": True},
        ))

        assert asks is not None
        assert asks.label == "User message"
        assert silent is None
        assert requires_user_input("1")
        assert not requires_user_input("3")

    def test_requires_user_input_flag(self):
        """Test the legacy flag when no inputSource is set."""
        config = PlanBuilder().user_input_config_for(GraphNode(
            id="a", type="basicNode", data={"requiresUserInput": True},
        ))
        assert config is not None
        assert config.label == "Input data"

    def test_user_input_node_template(self):
        """Test that a user-input node carries its own prompt settings."""
        config = PlanBuilder().input_template(GraphNode(
            id="ask",
            type="userInputNode",
            data={"userInputType": "boolean", "placeholder": "Proceed?", "defaultValue": True},
        ))

        assert config.type == "confirm"
        assert config.placeholder == "Proceed?"
        assert config.default_value is True

    def test_condition_template_is_select(self):
        """Test that conditions ask for one of two outcomes."""
        config = PlanBuilder().input_template(GraphNode(id="c", type="conditionNode"))
        assert config.type == "select"
        assert [o["value"] for o in config.options] == ["true", "false"]

    def test_node_override_wins(self):
        """Test that a node's userInputConfig overrides the template."""
        config = PlanBuilder().input_template(GraphNode(
            id="h", type="httpNode", data={"userInputConfig": {"label": "Payload", "required": False}},
        ))
        assert config.type == "json"
        assert config.label == "Payload"
        assert config.required is False

    def test_estimates_and_descriptions(self):
        """Test duration estimates and descriptions for known and unknown kinds."""
        nodes = [
            make_node("start", "startNode"),
            make_node("x", "mysteryNode"),
            make_node("end", "endNode"),
        ]
        plan = PlanBuilder().build(nodes, make_edges(("start", "x"), ("x", "end")), "wf")

        assert plan.steps[1].estimated_duration == 1000
        assert plan.steps[1].description == "mysteryNode node"
        assert plan.estimated_total_duration == 1200

    def test_update_step_and_next_executable(self):
        """Test step updates and dependency-aware step selection."""
        builder = PlanBuilder()
        nodes, edges = linear_graph()
        plan = builder.build(nodes, edges, "wf")

        assert builder.next_executable_step(plan).node_id == "start"

        builder.update_step(plan, "step_1_start", status=StepStatus.RUNNING)
        assert plan.status == PlanStatus.RUNNING
        assert builder.next_executable_step(plan) is None

        builder.update_step(plan, "step_1_start", status=StepStatus.COMPLETED)
        assert builder.next_executable_step(plan).node_id == "chat"

        for step in plan.steps[1:]:
            builder.update_step(plan, step.id, status=StepStatus.COMPLETED)
        assert plan.status == PlanStatus.COMPLETED

    def test_update_unknown_step(self):
        """Test that updating a missing step raises."""
        nodes, edges = linear_graph()
        plan = PlanBuilder().build(nodes, edges, "wf")
        with pytest.raises(KeyError):
            PlanBuilder().update_step(plan, "step_9_ghost", status=StepStatus.FAILED)

    def test_status_values(self):
        """Test that only statuses the run loop can reach exist."""
        assert {s.value for s in StepStatus} == {
            "pending", "running", "waiting_input", "completed", "failed",
        }
        assert {s.value for s in PlanStatus} == {
            "draft", "running", "completed", "failed", "cancelled",
        }


# ============================================================
# State Store Tests
# ============================================================

class TestExecutionStateStore:
    """Tests for ExecutionStateStore."""

    def _plan(self) -> ExecutionPlan:
        nodes, edges = linear_graph()
        return PlanBuilder().build(nodes, edges, "wf")

    def test_initial_state(self):
        """Test the idle state."""
        state = ExecutionStateStore().get_state()
        assert state.status == DebugStatus.IDLE
        assert state.completed_nodes == []
        assert state.results == {}
        assert state.error is None

    def test_listeners_receive_snapshots(self):
        """Test that every mutation notifies with a full copy."""
        store = ExecutionStateStore()
        seen: List[DebugExecutionState] = []
        store.subscribe(seen.append)

        store.start_run("exec_1", self._plan())
        store.set_current("start", "step_1_start")

        assert [s.status for s in seen] == [DebugStatus.RUNNING, DebugStatus.RUNNING]
        assert seen[0].total_nodes == 3
        assert seen[0].current_node is None
        assert seen[1].current_node == "start"

        seen[1].completed_nodes.append("tampered")
        assert store.get_state().completed_nodes == []

    def test_unsubscribe(self):
        """Test both ways of unsubscribing."""
        store = ExecutionStateStore()
        seen = []
        unsubscribe = store.subscribe(seen.append)
        store.subscribe(seen.append)
        assert store.listener_count == 1

        unsubscribe()
        store.update(error="x")

        assert seen == []
        assert store.listener_count == 0

    def test_completed_nodes_no_duplicates(self):
        """Test that completed_nodes only grows and never repeats."""
        store = ExecutionStateStore()
        store.mark_completed("a")
        store.mark_completed("b")
        store.mark_completed("a")
        assert store.get_state().completed_nodes == ["a", "b"]

    def test_record_result_replaces(self):
        """Test that a node has at most one result."""
        store = ExecutionStateStore()
        store.record_result(DebugNodeResult(
            node_id="a", node_type="aiDialogNode",
            status=NodeResultStatus.RUNNING, start_time=datetime.now(),
        ))
        store.record_result(DebugNodeResult(
            node_id="a", node_type="aiDialogNode",
            status=NodeResultStatus.COMPLETED, start_time=datetime.now(), output={"x": 1},
        ))

        results = store.get_state().results
        assert list(results) == ["a"]
        assert results["a"].status == NodeResultStatus.COMPLETED

    def test_finish_requires_terminal_status(self):
        """Test that finish only accepts terminal statuses."""
        store = ExecutionStateStore()
        store.start_run("exec_1", self._plan())
        store.set_current("start", "step_1_start")

        with pytest.raises(ValueError):
            store.finish(DebugStatus.RUNNING)

        store.finish(DebugStatus.FAILED, error="boom")
        state = store.get_state()
        assert state.status == DebugStatus.FAILED
        assert state.error == "boom"
        assert state.end_time is not None
        assert state.current_node is None

    def test_unknown_field(self):
        """Test that updating an unknown field raises."""
        with pytest.raises(AttributeError):
            ExecutionStateStore().update(nonsense=1)

    def test_reentrant_notifications_keep_order(self):
        """Test that a mutation made by a listener is delivered after the current one."""
        store = ExecutionStateStore()
        first: List[str] = []
        second: List[str] = []

        def bump(state: DebugExecutionState):
            first.append(state.status.value)
            if state.status == DebugStatus.RUNNING:
                store.update(status=DebugStatus.COMPLETED)

        store.subscribe(bump)
        store.subscribe(lambda state: second.append(state.status.value))
        store.update(status=DebugStatus.RUNNING)

        assert first == ["running", "completed"]
        assert second == ["running", "completed"]

    def test_failing_listener_does_not_block_others(self):
        """Test that one broken listener does not stop delivery."""
        store = ExecutionStateStore()
        seen = []

        def broken(state):
            raise RuntimeError("listener bug")

        store.subscribe(broken)
        store.subscribe(seen.append)
        store.update(error="x")

        assert len(seen) == 1

    def test_reset(self):
        """Test that reset returns to the idle state."""
        store = ExecutionStateStore()
        store.start_run("exec_1", self._plan())
        store.mark_completed("start")
        store.reset()
        assert store.get_state() == DebugExecutionState()


# ============================================================
# Stats Tests
# ============================================================

class TestStatsCollector:
    """Tests for StatsCollector."""

    def test_empty(self):
        """Test figures before anything ran."""
        stats = StatsCollector()
        assert stats.get_stats().total_executions == 0
        assert stats.success_rate() == 0
        assert stats.best_performing_node_type() is None
        assert stats.worst_performing_node_type() is None

    def test_record_runs(self):
        """Test run counters and the running average."""
        stats = StatsCollector()
        stats.record_run(success=True, duration_ms=100, node_count=3)
        stats.record_run(success=False, duration_ms=300, node_count=2)

        snapshot = stats.get_stats()
        assert snapshot.total_executions == 2
        assert snapshot.successful_executions == 1
        assert snapshot.failed_executions == 1
        assert snapshot.total_execution_time == 400
        assert snapshot.average_execution_time == pytest.approx(200)
        assert snapshot.last_execution_time is not None
        assert stats.success_rate() == pytest.approx(50)

    def test_history_newest_first_and_capped(self):
        """Test that history is bounded and newest first."""
        stats = StatsCollector(history_limit=3)
        for i in range(5):
            stats.record_run(success=True, duration_ms=i, node_count=i)

        history = stats.get_history()
        assert [r.node_count for r in history] == [4, 3, 2]
        assert history[0].id.startswith("exec_")
        assert history[0].status == "completed"

    def test_record_nodes(self):
        """Test per-node and per-type aggregates."""
        stats = StatsCollector()
        stats.record_node("a", "aiDialogNode", 100, success=True)
        stats.record_node("a", "aiDialogNode", 300, success=False)
        stats.record_node("d", "databaseNode", 50, success=True)

        by_id = {s.node_id: s for s in stats.get_node_stats()}
        assert by_id["a"].execution_count == 2
        assert by_id["a"].average_execution_time == pytest.approx(200)
        assert by_id["a"].min_execution_time == 100
        assert by_id["a"].max_execution_time == 300
        assert by_id["a"].success_count == 1
        assert by_id["a"].failure_count == 1

        assert stats.node_type_stats("aiDialogNode").execution_count == 2
        assert stats.node_type_stats("aiDialogNode").total_execution_time == pytest.approx(400)
        assert stats.best_performing_node_type() == "databaseNode"
        assert stats.worst_performing_node_type() == "aiDialogNode"

    def test_export_and_reset(self):
        """Test the export layout and resetting."""
        stats = StatsCollector()
        stats.record_node("a", "aiDialogNode", 10, success=True)
        stats.record_run(success=True, duration_ms=10, node_count=1)

        exported = stats.export()
        assert set(exported) == {
            "execution_stats", "node_performance_stats", "execution_history", "summary",
        }
        assert exported["summary"]["success_rate"] == 100

        stats.reset()
        assert stats.get_stats().total_executions == 0
        assert stats.get_node_stats() == []
        assert stats.get_history() == []


# ============================================================
# User Input Gate Tests
# ============================================================

class TestUserInputGate:
    """Tests for UserInputGate."""

    @pytest.mark.asyncio
    async def test_submit_resolves_wait(self):
        """Test that a submitted value resolves the wait."""
        gate = UserInputGate()
        waiter = asyncio.create_task(gate.wait())
        await asyncio.sleep(0)

        assert gate.is_waiting
        assert gate.submit(UserInputResponse(step_id="s", value="hello"))

        response = await waiter
        assert response.value == "hello"
        assert not gate.is_waiting

    @pytest.mark.asyncio
    async def test_submit_before_wait_when_armed(self):
        """Test that a value submitted right after arming is kept."""
        gate = UserInputGate()
        gate.arm()
        assert gate.submit(UserInputResponse(value=42))

        response = await gate.wait()
        assert response.value == 42

    @pytest.mark.asyncio
    async def test_submit_without_wait(self):
        """Test that submitting with nothing pending is refused."""
        assert not UserInputGate().submit(UserInputResponse(value="x"))

    @pytest.mark.asyncio
    async def test_cancel_resolves_empty(self):
        """Test that cancel releases the waiter with an empty response."""
        gate = UserInputGate()
        waiter = asyncio.create_task(gate.wait())
        await asyncio.sleep(0)

        gate.cancel()
        response = await waiter

        assert response.step_id == ""
        assert response.value == ""

    @pytest.mark.asyncio
    async def test_second_wait_rejected(self):
        """Test that only one wait may be outstanding."""
        gate = UserInputGate()
        waiter = asyncio.create_task(gate.wait())
        await asyncio.sleep(0)

        with pytest.raises(RuntimeError):
            await gate.wait()
        with pytest.raises(RuntimeError):
            gate.arm()

        gate.cancel()
        await waiter
