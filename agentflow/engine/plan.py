"""
Execution Plan Builder.

Turns a validated graph into a linear, dependency-respecting list of steps.
The order comes from Kahn's algorithm; ties between nodes that become ready at
the same time are broken by their position in the editor's node list, so the
same graph always produces the same plan.
"""

from typing import Any, Dict, List, Literal, Optional, Sequence
from collections import defaultdict, deque
from datetime import datetime
from enum import Enum
import logging
import uuid

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from agentflow.engine.errors import PlanBuildError
from agentflow.engine.graph import (
    EdgeLike,
    GraphNode,
    NodeLike,
    coerce_graph,
    is_start_type,
)


logger = logging.getLogger(__name__)


class InputSource(str, Enum):
    """Where a node takes its input from (values as stored by the editor)."""
    USER_INPUT = "1"
    PREVIOUS_RESULT = "2"
    CONTEXT_DATA = "3"


def requires_user_input(input_source: Optional[str]) -> bool:
    """Check whether an ``inputSource`` value asks for a human value."""
    return input_source == InputSource.USER_INPUT.value


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    WAITING_INPUT = "waiting_input"
    COMPLETED = "completed"
    FAILED = "failed"


class PlanStatus(str, Enum):
    DRAFT = "draft"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class InputValidation(BaseModel):
    pattern: Optional[str] = None
    min: Optional[float] = None
    max: Optional[float] = None
    message: Optional[str] = None


class UserInputConfig(BaseModel):
    """Shape of the prompt shown to the user for a step that needs input."""

    type: Literal["text", "textarea", "select", "json", "confirm"] = "text"
    label: str = "Please enter a value"
    description: Optional[str] = None
    placeholder: Optional[str] = None
    required: bool = True
    options: Optional[List[Dict[str, Any]]] = None
    validation: Optional[InputValidation] = None
    default_value: Any = None
    show_previous_data: bool = True
    previous_data_keys: Optional[List[str]] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class ExecutionStep(BaseModel):
    """One node's slot in the execution plan."""

    id: str
    node_id: str
    node_type: str
    label: str
    description: Optional[str] = None
    dependencies: List[str] = Field(default_factory=list)
    estimated_duration: Optional[float] = None
    requires_user_input: bool = False
    user_input_config: Optional[UserInputConfig] = None
    status: StepStatus = StepStatus.PENDING
    actual_duration: Optional[float] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    error: Optional[str] = None


class ExecutionPlan(BaseModel):
    """Ordered steps for one run of a workflow."""

    id: str
    name: str
    description: Optional[str] = None
    workflow_id: str
    steps: List[ExecutionStep] = Field(default_factory=list)
    total_steps: int = 0
    estimated_total_duration: float = 0
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    status: PlanStatus = PlanStatus.DRAFT
    version: str = "1.0.0"
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def get_step(self, step_id: str) -> Optional[ExecutionStep]:
        return next((s for s in self.steps if s.id == step_id), None)


# Estimated execution time per node type, in milliseconds. Display only.
ESTIMATED_DURATIONS: Dict[str, float] = {
    "startNode": 100,
    "endNode": 100,
    "aiDialogNode": 3000,
    "aiSummaryNode": 2500,
    "aiExtractNode": 2000,
    "databaseNode": 1500,
    "knowledgeBaseNode": 2000,
    "httpNode": 1000,
    "conditionNode": 300,
    "responseNode": 200,
    "basicNode": 500,
}
DEFAULT_ESTIMATED_DURATION = 1000.0

NODE_TYPE_DESCRIPTIONS: Dict[str, str] = {
    "startNode": "Workflow start",
    "endNode": "Workflow end",
    "aiDialogNode": "AI dialog",
    "aiSummaryNode": "AI summary",
    "aiExtractNode": "AI extraction",
    "aiJsonNode": "AI JSON output",
    "databaseNode": "Database query",
    "knowledgeBaseNode": "Knowledge base search",
    "bingNode": "Web search",
    "httpNode": "HTTP request",
    "conditionNode": "Condition",
    "decisionNode": "Decision",
    "responseNode": "Response",
    "dataProcessNode": "Data processing",
    "jsonExtractor": "JSON extraction",
    "userInputNode": "User input",
}

USER_INPUT_NODE_TYPES = frozenset({"userInputNode", "formNode"})

_AI_TYPES = ("aiDialogNode", "aiSummaryNode", "aiExtractNode", "aiJsonNode")

# Per-kind overrides applied on top of the generic prompt
INPUT_TEMPLATES: Dict[str, Dict[str, Any]] = {
    "startNode": {
        "label": "Initial input",
        "description": "Enter the initial data or question for this workflow",
        "placeholder": "Type your question or data...",
    },
    **{
        t: {
            "label": "User message",
            "description": "Enter the message to send to the model",
            "placeholder": "Ask the model something...",
        }
        for t in _AI_TYPES
    },
    **{
        t: {
            "type": "select",
            "label": "Condition result",
            "description": "Choose the outcome of this condition",
            "options": [
                {"label": "Yes / pass", "value": "true"},
                {"label": "No / fail", "value": "false"},
            ],
        }
        for t in ("conditionNode", "decisionNode")
    },
    "databaseNode": {
        "label": "Query parameters",
        "description": "Enter query parameters or an SQL statement",
        "placeholder": "Query conditions or SQL...",
    },
    **{
        t: {
            "label": "Search query",
            "description": "Enter what to search for",
            "placeholder": "Search keywords...",
        }
        for t in ("knowledgeBaseNode", "bingNode")
    },
    "httpNode": {
        "type": "json",
        "label": "HTTP request data",
        "description": "Enter the request payload",
        "placeholder": '{"key": "value"}',
    },
    "jsonExtractor": {
        "type": "json",
        "label": "JSON data",
        "description": "Enter the JSON to process",
        "placeholder": '{"key": "value"}',
    },
    "formNode": {
        "type": "json",
        "label": "Form data",
        "description": "Fill in the form data",
        "placeholder": '{"key": "value"}',
    },
    **{
        t: {
            "label": "Input data",
            "description": "Enter the data to process",
            "placeholder": "Data...",
        }
        for t in ("basicNode", "processNode", "customNode")
    },
}

# userInputType values of a user-input node mapped onto prompt kinds
_USER_INPUT_TYPE_MAP = {
    "text": "text",
    "textarea": "textarea",
    "json": "json",
    "select": "select",
    "boolean": "confirm",
    "confirm": "confirm",
}


class PlanBuilder:
    """
    Builds an ExecutionPlan from a graph that already passed GraphValidator.

    Usage:
        plan = PlanBuilder().build(nodes, edges, workflow_id="wf-1")
    """

    def build(
        self,
        nodes: Sequence[NodeLike],
        edges: Sequence[EdgeLike],
        workflow_id: str,
    ) -> ExecutionPlan:
        nodes, edges = coerce_graph(nodes, edges)

        if not any(is_start_type(n.type) for n in nodes):
            raise PlanBuildError("No start node found")

        node_map = {n.id: n for n in nodes}
        dependencies: Dict[str, List[str]] = defaultdict(list)
        for edge in edges:
            if edge.source not in dependencies[edge.target]:
                dependencies[edge.target].append(edge.source)

        steps: List[ExecutionStep] = []
        for index, node_id in enumerate(self.topological_order(nodes, edges), start=1):
            node = node_map[node_id]
            input_config = self.user_input_config_for(node)
            steps.append(ExecutionStep(
                id=f"step_{index}_{node.id}",
                node_id=node.id,
                node_type=node.type,
                label=node.label or f"Step {index}",
                description=node.data.get("description") or self.describe_node_type(node.type),
                dependencies=dependencies.get(node.id, []),
                estimated_duration=ESTIMATED_DURATIONS.get(node.type, DEFAULT_ESTIMATED_DURATION),
                requires_user_input=input_config is not None,
                user_input_config=input_config,
            ))

        plan = ExecutionPlan(
            id=f"plan_{uuid.uuid4().hex[:12]}",
            name=f"Execution plan - {datetime.now():%Y-%m-%d}",
            description=f"Workflow execution plan with {len(steps)} steps",
            workflow_id=workflow_id,
            steps=steps,
            total_steps=len(steps),
            estimated_total_duration=sum(s.estimated_duration or 0 for s in steps),
            metadata={
                "node_count": len(nodes),
                "edge_count": len(edges),
                "has_user_interaction": any(s.requires_user_input for s in steps),
            },
        )
        logger.debug(f"Built plan {plan.id} with {len(steps)} steps")
        return plan

    def topological_order(
        self,
        nodes: Sequence[NodeLike],
        edges: Sequence[EdgeLike],
    ) -> List[str]:
        """
        Kahn's algorithm with a FIFO queue. Nodes freed by the same dequeue
        are enqueued in editor order.

        Raises:
            PlanBuildError: If the graph has a cycle
        """
        nodes, edges = coerce_graph(nodes, edges)
        position = {n.id: i for i, n in enumerate(nodes)}
        in_degree = {n.id: 0 for n in nodes}
        successors: Dict[str, List[str]] = defaultdict(list)

        for edge in edges:
            if edge.source in position and edge.target in position:
                successors[edge.source].append(edge.target)
                in_degree[edge.target] += 1

        queue = deque(node_id for node_id, degree in in_degree.items() if degree == 0)
        order: List[str] = []

        while queue:
            node_id = queue.popleft()
            order.append(node_id)
            freed = []
            for target in successors[node_id]:
                in_degree[target] -= 1
                if in_degree[target] == 0:
                    freed.append(target)
            queue.extend(sorted(freed, key=position.get))

        if len(order) != len(in_degree):
            remaining = [n.id for n in nodes if n.id not in set(order)]
            raise PlanBuildError(f"Graph has cycles involving: {', '.join(remaining)}")

        return order

    def user_input_config_for(self, node: GraphNode) -> Optional[UserInputConfig]:
        """Return the prompt for a node that needs a human value, else None."""
        data = node.data

        # The start step is the run's only external entry point
        if is_start_type(node.type):
            return self.input_template(node)

        if "inputSource" in data:
            if requires_user_input(data.get("inputSource")):
                return self.input_template(node)
            return None

        if node.type in USER_INPUT_NODE_TYPES:
            return self.input_template(node)
        if data.get("requiresUserInput") or data.get("userInputType"):
            return self.input_template(node)
        return None

    def input_template(self, node: GraphNode) -> UserInputConfig:
        """Generic prompt, specialised per node kind and by the node's own settings."""
        fields: Dict[str, Any] = {
            "type": "text",
            "label": "Please enter a value",
            "description": "This step needs user input",
            "placeholder": "Enter a value...",
            "required": True,
            "show_previous_data": True,
        }
        fields.update(INPUT_TEMPLATES.get(node.type, {}))

        data = node.data
        if node.type in USER_INPUT_NODE_TYPES:
            input_type = _USER_INPUT_TYPE_MAP.get(str(data.get("userInputType", "")))
            if input_type:
                fields["type"] = input_type
            for key, field in (
                ("placeholder", "placeholder"),
                ("defaultValue", "default_value"),
                ("options", "options"),
                ("validation", "validation"),
            ):
                if data.get(key) is not None:
                    fields[field] = data[key]

        config = UserInputConfig(**fields)
        override = data.get("userInputConfig")
        if isinstance(override, dict):
            merged = config.model_dump(by_alias=True)
            merged.update(override)
            config = UserInputConfig.model_validate(merged)
        return config

    def describe_node_type(self, node_type: str) -> str:
        return NODE_TYPE_DESCRIPTIONS.get(node_type, f"{node_type} node")

    def update_step(self, plan: ExecutionPlan, step_id: str, **changes: Any) -> ExecutionPlan:
        """Apply changes to one step and refresh the overall plan status."""
        step = plan.get_step(step_id)
        if step is None:
            raise KeyError(f"Step '{step_id}' not found in plan {plan.id}")
        for key, value in changes.items():
            setattr(step, key, value)
        plan.updated_at = datetime.now()
        self.refresh_status(plan)
        return plan

    def refresh_status(self, plan: ExecutionPlan) -> None:
        statuses = [s.status for s in plan.steps]
        if statuses and all(s == StepStatus.COMPLETED for s in statuses):
            plan.status = PlanStatus.COMPLETED
        elif any(s == StepStatus.FAILED for s in statuses):
            plan.status = PlanStatus.FAILED
        elif any(s in (StepStatus.RUNNING, StepStatus.WAITING_INPUT) for s in statuses):
            plan.status = PlanStatus.RUNNING

    def next_executable_step(self, plan: ExecutionPlan) -> Optional[ExecutionStep]:
        """First pending step whose dependencies have all completed."""
        by_node = {s.node_id: s for s in plan.steps}
        for step in plan.steps:
            if step.status != StepStatus.PENDING:
                continue
            if all(
                by_node.get(dep) is not None and by_node[dep].status == StepStatus.COMPLETED
                for dep in step.dependencies
            ):
                return step
        return None
