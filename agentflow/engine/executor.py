"""
Async Workflow Orchestrator.

The orchestrator runs a validated graph once, step by step, in plan order.
It pauses for human input where a step asks for it, dispatches each step to
its node executor, publishes every state change through the state store and
reports timings to the stats collector.
"""

from typing import Any, Dict, List, Optional, Sequence, Union
from copy import deepcopy
from datetime import datetime
import logging
import time
import uuid

from agentflow.engine.errors import PlanBuildError
from agentflow.engine.gate import UserInputGate
from agentflow.engine.graph import EdgeLike, GraphNode, GraphValidator, NodeLike, coerce_graph
from agentflow.engine.node import (
    ExecutionContext,
    NeedsInput,
    NodeExecutorFactory,
    NodeInput,
    filter_node_data,
)
from agentflow.engine.plan import (
    ExecutionPlan,
    ExecutionStep,
    PlanBuilder,
    PlanStatus,
    StepStatus,
    UserInputConfig,
)
from agentflow.engine.state import (
    ACTIVE_STATUSES,
    DebugExecutionState,
    DebugNodeInput,
    DebugNodeResult,
    DebugStatus,
    ExecutionStateStore,
    NodeResultStatus,
    StateListener,
    UserInputRequest,
    UserInputResponse,
)
from agentflow.engine.stats import ExecutionStats, NodePerformanceStats, RunRecord, StatsCollector


# Configure logging
logger = logging.getLogger(__name__)

# Returned in place of an outcome when the run was stopped mid-step
_DISCARDED = object()


class ExecutionOrchestrator:
    """
    Drives one workflow run at a time.

    Handles:
    - Graph validation and plan building
    - Sequential step execution in topological order
    - Suspending for user input and resuming
    - Cooperative stop and reset
    - Run and node statistics

    Usage:
        orchestrator = ExecutionOrchestrator(service=client)
        orchestrator.subscribe(lambda state: print(state.status))
        errors = await orchestrator.start(nodes, edges)
    """

    def __init__(
        self,
        service: Any = None,
        executors: Optional[NodeExecutorFactory] = None,
        stats: Optional[StatsCollector] = None,
        validator: Optional[GraphValidator] = None,
        plan_builder: Optional[PlanBuilder] = None,
        retry_backoff: float = 0.5,
    ):
        """
        Initialize the orchestrator.

        Args:
            service: Execution service client handed to service-backed executors
            executors: Executor factory (built from ``service`` if not provided)
            stats: Stats collector, shared across runs
            validator: Graph validator
            plan_builder: Plan builder
            retry_backoff: Seconds between executor retries, multiplied per attempt
        """
        self.executors = executors or NodeExecutorFactory(service, retry_backoff=retry_backoff)
        self.stats = stats or StatsCollector()
        self.validator = validator or GraphValidator()
        self.plan_builder = plan_builder or PlanBuilder()
        self.store = ExecutionStateStore()
        self.gate = UserInputGate()

        # Identity of the active run; cleared by stop() and reset()
        self._run_token: Optional[object] = None
        self._plan: Optional[ExecutionPlan] = None
        self._context: Optional[ExecutionContext] = None

    @property
    def is_running(self) -> bool:
        return self._run_token is not None

    # =========================================================================
    # Control surface
    # =========================================================================

    def validate(self, nodes: Sequence[NodeLike], edges: Sequence[EdgeLike]) -> List[str]:
        return self.validator.validate(nodes, edges)

    async def start(
        self,
        nodes: Sequence[NodeLike],
        edges: Sequence[EdgeLike],
        workflow_id: Optional[str] = None,
    ) -> List[str]:
        """
        Validate the graph and run it to the end.

        Returns:
            The validation errors. When the list is not empty the run never
            started and the state is untouched. Execution failures are not
            raised; they are reported through the state.

        Raises:
            RuntimeError: If a run is already active
        """
        if self.is_running:
            raise RuntimeError("A workflow run is already active")

        errors = self.validate(nodes, edges)
        if errors:
            logger.warning(f"Graph validation failed: {errors}")
            return errors

        nodes, edges = coerce_graph(nodes, edges)
        workflow_id = workflow_id or f"workflow_{uuid.uuid4().hex[:12]}"
        try:
            plan = self.plan_builder.build(nodes, edges, workflow_id)
        except PlanBuildError as e:
            logger.warning(f"Plan building failed: {e}")
            return [str(e)]

        token = object()
        self._run_token = token
        self._plan = plan
        self._context = context = ExecutionContext(
            execution_id=plan.id,
            workflow_id=workflow_id,
            plan=plan,
        )

        plan.status = PlanStatus.RUNNING
        self.store.start_run(plan.id, plan)
        logger.info(f"Run {plan.id} started with {len(plan.steps)} steps")

        start_time = time.time()
        outcome = DebugStatus.STOPPED

        try:
            node_map = {n.id: n for n in nodes}
            finished = await self._run_steps(plan, node_map, context, token)
            if finished and self._run_token is token:
                outcome = DebugStatus.COMPLETED
                plan.status = PlanStatus.COMPLETED
                self.store.finish(DebugStatus.COMPLETED)
                logger.info(f"Run {plan.id} completed")

        except Exception as e:
            if self._run_token is token:
                logger.exception(f"Run {plan.id} failed: {e}")
                outcome = DebugStatus.FAILED
                plan.status = PlanStatus.FAILED
                self.store.finish(DebugStatus.FAILED, error=str(e))
            else:
                logger.info(f"Run {plan.id} failed after it was stopped: {e}")

        finally:
            if self._run_token is token:
                self._run_token = None
            self.stats.record_run(
                success=outcome == DebugStatus.COMPLETED,
                duration_ms=(time.time() - start_time) * 1000,
                node_count=len(plan.steps),
                status=outcome.value,
            )

        return []

    def stop(self) -> None:
        """
        Ask the active run to stop.

        The state moves to ``stopped`` at once. The loop itself stops at its
        next check point; a pending input wait is released and the result of
        a node that is still executing is discarded.
        """
        if self._run_token is None:
            return

        self._run_token = None
        self.gate.cancel()
        if self._plan is not None:
            self._plan.status = PlanStatus.CANCELLED
        if self.store.status in ACTIVE_STATUSES:
            self.store.finish(DebugStatus.STOPPED)
        logger.info("Run stop requested")

    def reset(self) -> None:
        """Drop the current run, if any, and return to a fresh idle state."""
        self._run_token = None
        self.gate.cancel()
        self._plan = None
        self._context = None
        self.store.reset()

    def submit_user_input(self, response: Union[UserInputResponse, Dict[str, Any]]) -> bool:
        """
        Resolve the pending input request.

        An empty ``step_id`` answers whatever is pending; otherwise it must
        match the current request.

        Returns:
            True if the value was accepted
        """
        if isinstance(response, dict):
            response = UserInputResponse.model_validate(response)

        request = self.store.current_request
        if self.store.status != DebugStatus.WAITING_INPUT or request is None or not self.gate.is_waiting:
            logger.warning("User input submitted while no input is pending")
            return False
        if response.step_id and response.step_id != request.step_id:
            logger.warning(
                f"User input for step '{response.step_id}' does not match "
                f"pending step '{request.step_id}'"
            )
            return False

        self.store.resume()
        return self.gate.submit(response)

    def subscribe(self, listener: StateListener):
        return self.store.subscribe(listener)

    def unsubscribe(self, listener: StateListener) -> None:
        self.store.unsubscribe(listener)

    def dispose(self) -> None:
        self.reset()
        self.store.clear_listeners()

    # =========================================================================
    # Read-only views
    # =========================================================================

    def get_state(self) -> DebugExecutionState:
        return self.store.get_state()

    def get_stats(self) -> ExecutionStats:
        return self.stats.get_stats()

    def get_node_stats(self) -> List[NodePerformanceStats]:
        return self.stats.get_node_stats()

    def get_history(self) -> List[RunRecord]:
        return self.stats.get_history()

    def reset_stats(self) -> None:
        self.stats.reset()

    def export_stats(self) -> Dict[str, Any]:
        return self.stats.export()

    # =========================================================================
    # Run loop
    # =========================================================================

    async def _run_steps(
        self,
        plan: ExecutionPlan,
        node_map: Dict[str, GraphNode],
        context: ExecutionContext,
        token: object,
    ) -> bool:
        """Execute every step in order. Returns False if the run was stopped."""
        for index, step in enumerate(plan.steps, start=1):
            if self._run_token is not token:
                logger.info(f"Run {plan.id} stopped before step {index}")
                return False

            node = node_map[step.node_id]
            context.current_step = step
            self.store.set_current(node.id, step.id)
            logger.info(f"Executing node: {node.id} ({node.type}, step {index}/{len(plan.steps)})")

            if step.requires_user_input:
                config = step.user_input_config or self.plan_builder.input_template(node)
                if not await self._collect_input(plan, step, node, context, token, config):
                    return False

            # A node may keep asking for input; each answer re-runs it
            while True:
                outcome = await self._execute_step(plan, step, node, context, token)
                if outcome is _DISCARDED:
                    return False
                if not isinstance(outcome, NeedsInput):
                    break
                config = (
                    outcome.config
                    or step.user_input_config
                    or self.plan_builder.input_template(node)
                )
                if not await self._collect_input(plan, step, node, context, token, config):
                    return False

        return True

    async def _collect_input(
        self,
        plan: ExecutionPlan,
        step: ExecutionStep,
        node: GraphNode,
        context: ExecutionContext,
        token: object,
        config: UserInputConfig,
    ) -> bool:
        """Publish an input request and wait. Returns False if the run was stopped."""
        self.plan_builder.update_step(plan, step.id, status=StepStatus.WAITING_INPUT)

        request = UserInputRequest(
            step_id=step.id,
            node_id=node.id,
            node_type=node.type,
            node_label=step.label,
            config=config,
            previous_data=self._previous_data(step, context),
        )

        self.gate.arm()
        self.store.request_input(request)
        logger.info(f"Waiting for user input at node '{node.id}'")

        response = await self.gate.wait()
        if self._run_token is not token:
            return False

        context.merge_input(deepcopy(response.value))
        if self.store.status == DebugStatus.WAITING_INPUT:
            self.store.resume()
        return True

    async def _execute_step(
        self,
        plan: ExecutionPlan,
        step: ExecutionStep,
        node: GraphNode,
        context: ExecutionContext,
        token: object,
    ) -> Any:
        """
        Run one node and record its result.

        Returns the node outcome, or ``_DISCARDED`` when the run was stopped
        while the node was executing. Node failures are recorded and re-raised.
        """
        node_input = NodeInput.from_node(node)
        debug_input = self._build_debug_input(plan, step, node, context)
        started_at = datetime.now()
        node_start_time = time.time()

        self.plan_builder.update_step(plan, step.id, status=StepStatus.RUNNING, start_time=started_at)
        self.store.record_result(DebugNodeResult(
            node_id=node.id,
            node_type=node.type,
            status=NodeResultStatus.RUNNING,
            start_time=started_at,
            input=debug_input,
        ))

        try:
            executor = self.executors.get(node.type)
            outcome = await executor.execute(node_input, context)

        except Exception as e:
            if self._run_token is not token:
                return _DISCARDED

            duration = (time.time() - node_start_time) * 1000
            error = str(e)
            logger.error(f"Node {node.id} failed: {error}")

            self.store.record_result(DebugNodeResult(
                node_id=node.id,
                node_type=node.type,
                status=NodeResultStatus.FAILED,
                start_time=started_at,
                end_time=datetime.now(),
                duration=duration,
                input=debug_input,
                error=error,
            ))
            self.plan_builder.update_step(
                plan, step.id,
                status=StepStatus.FAILED,
                end_time=datetime.now(),
                actual_duration=duration,
                error=error,
            )
            self.stats.record_node(node.id, node.type, duration, success=False)
            raise

        if self._run_token is not token:
            logger.info(f"Discarding result of node '{node.id}': run was stopped")
            return _DISCARDED

        duration = (time.time() - node_start_time) * 1000

        if isinstance(outcome, NeedsInput):
            logger.info(f"Node '{node.id}' needs user input: {outcome.message}")
            self.store.record_result(DebugNodeResult(
                node_id=node.id,
                node_type=node.type,
                status=NodeResultStatus.WAITING_INPUT,
                start_time=started_at,
                duration=duration,
                input=debug_input,
            ))
            return outcome

        self.store.record_result(DebugNodeResult(
            node_id=node.id,
            node_type=node.type,
            status=NodeResultStatus.COMPLETED,
            start_time=started_at,
            end_time=datetime.now(),
            duration=duration,
            input=debug_input,
            output=outcome,
        ))
        context.node_results[node.id] = outcome
        self.store.mark_completed(node.id)
        self.plan_builder.update_step(
            plan, step.id,
            status=StepStatus.COMPLETED,
            end_time=datetime.now(),
            actual_duration=duration,
        )
        self.stats.record_node(node.id, node.type, duration, success=True)

        return outcome

    # =========================================================================
    # Payload helpers
    # =========================================================================

    def _build_debug_input(
        self,
        plan: ExecutionPlan,
        step: ExecutionStep,
        node: GraphNode,
        context: ExecutionContext,
    ) -> DebugNodeInput:
        """Snapshot of what the node is about to receive."""
        previous_results = {
            node_id: {
                "output": result.get("output"),
                "result": result.get("result"),
                "markdownOutput": result.get("markdownOutput"),
            }
            for node_id, result in context.node_results.items()
            if isinstance(result, dict)
        }
        system_variables = {k: v for k, v in context.variables.items() if k != "userInput"}

        context_data: Dict[str, Any] = {}
        if context.user_input is not None:
            context_data["userInput"] = context.user_input
        if previous_results:
            context_data["previousNodeResults"] = previous_results
        if system_variables:
            context_data["systemVariables"] = system_variables

        return DebugNodeInput(
            node_info={
                "nodeId": node.id,
                "nodeType": node.type,
                "label": node.label,
                "description": node.data.get("description"),
                "inputSource": node.data.get("inputSource"),
            },
            node_config=deepcopy(filter_node_data(node.data)),
            context_data=deepcopy(context_data),
            execution_meta={
                "executionId": plan.id,
                "stepId": step.id,
                "workflowId": plan.workflow_id,
                "timestamp": time.time() * 1000,
            },
        )

    def _previous_data(self, step: ExecutionStep, context: ExecutionContext) -> Dict[str, Any]:
        """Data shown next to an input prompt."""
        data: Dict[str, Any] = {
            dep: context.node_results[dep]
            for dep in step.dependencies
            if dep in context.node_results
        }
        if context.user_input is not None:
            data["userInput"] = context.user_input

        variables = {k: v for k, v in context.variables.items() if k != "userInput"}
        if variables:
            data["_variables"] = variables
        return deepcopy(data)
