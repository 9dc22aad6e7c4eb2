"""
Node Executors for the Workflow Engine.

Each node kind has an executor that turns the node's raw editor data into a
request, runs it, and normalizes what comes back. Executors register
themselves by node type with the ``register_executor`` decorator; the
orchestrator looks them up through a NodeExecutorFactory.
"""

from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple, Type, Union
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import logging
import time

from agentflow.engine.errors import UnknownNodeTypeError
from agentflow.engine.graph import GraphNode
from agentflow.engine.plan import ExecutionPlan, ExecutionStep, UserInputConfig

if TYPE_CHECKING:
    from agentflow.service.client import ExecutionServiceClient


logger = logging.getLogger(__name__)


@dataclass
class NodeInput:
    """Static description of the node being executed."""

    node_id: str
    node_type: str
    label: Optional[str] = None
    description: Optional[str] = None
    input_source: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_node(cls, node: GraphNode) -> "NodeInput":
        input_source = node.data.get("inputSource")
        description = node.data.get("description")
        return cls(
            node_id=node.id,
            node_type=node.type,
            label=node.label,
            description=description if isinstance(description, str) else None,
            input_source=input_source if isinstance(input_source, str) else None,
            data=dict(node.data),
        )


@dataclass
class ExecutionContext:
    """
    Per-run scratch space shared with executors.

    Attributes:
        variables: Side-channel values, including the latest human input.
            Executors may add entries but never remove them.
        node_results: Output of each completed node, in execution order
        current_step: The step being executed
        plan: The plan of the run
    """

    execution_id: str
    workflow_id: str
    variables: Dict[str, Any] = field(default_factory=dict)
    node_results: Dict[str, Any] = field(default_factory=dict)
    current_step: Optional[ExecutionStep] = None
    plan: Optional[ExecutionPlan] = None

    @property
    def user_input(self) -> Any:
        return self.variables.get("userInput")

    def merge_input(self, value: Any) -> None:
        """Fold a human-supplied value into the variables."""
        if value is None or value == "":
            return
        if isinstance(value, dict):
            self.variables.update(value)
        else:
            self.variables["userInput"] = value


@dataclass
class NeedsInput:
    """Returned by an executor that cannot proceed without a human value."""

    message: str = "Waiting for user input"
    config: Optional[UserInputConfig] = None


NodeOutcome = Union[Dict[str, Any], NeedsInput]


# Node data keys worth showing in a debug snapshot
ALLOWED_CONFIG_FIELDS = (
    "label", "description", "inputSource",
    "model", "systemPrompt", "temperature", "maxTokens", "stream", "userMessage",
    "summaryStyle", "summaryLength", "maxSummaryLength", "language",
    "includeKeyPoints", "extractKeywords",
    "extractType", "extractPrompt",
    "dbType", "connectionString", "query", "parameters", "operation",
    "knowledgeBaseId", "searchQuery", "topK", "threshold", "similarityThreshold", "searchType",
    "url", "method", "headers", "body", "timeout", "retryCount",
    "condition", "conditionType", "trueBranch", "falseBranch",
    "processType", "transformScript", "filterCondition", "aggregateFields",
    "sortBy", "sortOrder", "groupBy", "jsonPath", "extractMode",
    "triggerType", "initialData",
    "outputFormat", "returnCode", "finalMessage", "saveResult", "resultFormat",
    "userInputType", "placeholder", "defaultValue", "validation", "options",
    "responseTemplate", "responseFormat", "statusCode",
    "required", "disabled", "data",
)


def filter_node_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only known configuration keys, dropping editor state."""
    return {key: data[key] for key in ALLOWED_CONFIG_FIELDS if key in data}


class NodeExecutor(ABC):
    """
    Base class for node executors.

    Subclasses implement ``execute`` and return either a result dict or a
    NeedsInput outcome. Any raised exception is a failure of the node.
    """

    node_types: Tuple[str, ...] = ()

    def __init__(
        self,
        service: Optional["ExecutionServiceClient"] = None,
        retry_backoff: float = 0.5,
    ):
        self.service = service
        self.retry_backoff = retry_backoff

    @abstractmethod
    async def execute(self, node_input: NodeInput, context: ExecutionContext) -> NodeOutcome:
        ...

    def normalize_output(
        self,
        output: Any,
        execution_time: Optional[float] = None,
        timestamp: Any = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Bring an output into the common result shape.

        A string is taken as pre-rendered markdown and also exposed as
        ``result``; a dict is kept as is; anything else goes under ``result``.
        """
        extras = {
            "executionTime": execution_time,
            "timestamp": timestamp if timestamp is not None else time.time() * 1000,
            "metadata": metadata,
        }

        if isinstance(output, str):
            return {"markdownOutput": output, "result": output, **extras}
        if isinstance(output, dict):
            return {**output, **extras}
        return {"result": output, **extras}


# Registry of executor classes keyed by node type
_executor_registry: Dict[str, Type[NodeExecutor]] = {}


def register_executor(*node_types: str):
    """
    Class decorator registering an executor for one or more node types.

    Usage:
        @register_executor("aiDialogNode", "aiExtractNode")
        class AIDialogExecutor(ServiceNodeExecutor):
            ...
    """
    def decorator(cls: Type[NodeExecutor]) -> Type[NodeExecutor]:
        cls.node_types = tuple(node_types)
        for node_type in node_types:
            if node_type in _executor_registry and _executor_registry[node_type] is not cls:
                logger.warning(
                    f"Executor for '{node_type}' replaced: "
                    f"{_executor_registry[node_type].__name__} -> {cls.__name__}"
                )
            _executor_registry[node_type] = cls
        return cls

    return decorator


def get_registered_executor(node_type: str) -> Optional[Type[NodeExecutor]]:
    return _executor_registry.get(node_type)


def list_registered_executors() -> Dict[str, str]:
    """Map each registered node type to its executor class name."""
    return {node_type: cls.__name__ for node_type, cls in _executor_registry.items()}


def _load_builtin_executors() -> None:
    # The built-in executors register themselves on import
    import agentflow.nodes  # noqa: F401


class NodeExecutorFactory:
    """
    Hands out executor instances by node type.

    Instances are created on first use and shared between node types served
    by the same class. ``register`` installs an instance for this factory
    only, ahead of the global registry.
    """

    def __init__(
        self,
        service: Optional["ExecutionServiceClient"] = None,
        retry_backoff: float = 0.5,
    ):
        self.service = service
        self.retry_backoff = retry_backoff
        self._overrides: Dict[str, NodeExecutor] = {}
        self._instances: Dict[Type[NodeExecutor], NodeExecutor] = {}
        _load_builtin_executors()

    def register(self, node_type: str, executor: NodeExecutor) -> None:
        self._overrides[node_type] = executor

    def get(self, node_type: str) -> NodeExecutor:
        """
        Return the executor for a node type.

        Raises:
            UnknownNodeTypeError: If nothing handles the type
        """
        if node_type in self._overrides:
            return self._overrides[node_type]

        cls = _executor_registry.get(node_type)
        if cls is None:
            raise UnknownNodeTypeError(f"Unknown node type: {node_type}")

        if cls not in self._instances:
            self._instances[cls] = cls(service=self.service, retry_backoff=self.retry_backoff)
        return self._instances[cls]

    def supported_types(self) -> List[str]:
        return sorted(set(_executor_registry) | set(self._overrides))

    def is_supported(self, node_type: str) -> bool:
        return node_type in self._overrides or node_type in _executor_registry
