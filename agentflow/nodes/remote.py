"""
Executors backed by the external execution service.

Every kind here follows the same path: shape a typed config from the node
data, send one flat request, retry transport failures within the kind's
budget, then normalize the response.
"""

from typing import Any, Dict, Optional, Type
from dataclasses import dataclass
import asyncio
import json
import logging

from agentflow.engine.errors import ExecutionError, ServiceError
from agentflow.engine.graph import is_start_type
from agentflow.engine.node import (
    ExecutionContext,
    NeedsInput,
    NodeExecutor,
    NodeInput,
    NodeOutcome,
    register_executor,
)
from agentflow.engine.plan import UserInputConfig, requires_user_input
from agentflow.nodes.configs import (
    AIDialogConfig,
    AISummaryConfig,
    ConditionConfig,
    DatabaseConfig,
    DataProcessConfig,
    HttpConfig,
    KnowledgeBaseConfig,
    NodeConfig,
    ResponseConfig,
    UserInputNodeConfig,
)
from agentflow.service.client import NodeExecutionRequest, NodeExecutionResponse


logger = logging.getLogger(__name__)

# Marker the service uses when a node cannot run without a human value
WAITING_FOR_USER_INPUT = "WAITING_FOR_USER_INPUT"

# Client errors worth another attempt; any other 4xx fails the node at once
RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})


@dataclass(frozen=True)
class ExecutionPolicy:
    """Timeout in seconds per attempt and the number of extra attempts."""
    timeout: float
    retries: int


AI_POLICY = ExecutionPolicy(timeout=30, retries=2)
CONTROL_POLICY = ExecutionPolicy(timeout=3, retries=0)
DEFAULT_POLICY = ExecutionPolicy(timeout=10, retries=1)

EXECUTION_POLICIES: Dict[str, ExecutionPolicy] = {
    "aiDialogNode": AI_POLICY,
    "aiSummaryNode": AI_POLICY,
    "aiExtractNode": AI_POLICY,
    "aiJsonNode": AI_POLICY,
    "ai-conversation": AI_POLICY,
    "ai-dialog-node": AI_POLICY,
    "httpNode": ExecutionPolicy(timeout=10, retries=3),
    "databaseNode": ExecutionPolicy(timeout=15, retries=1),
    "database-node": ExecutionPolicy(timeout=15, retries=1),
    "knowledgeBaseNode": ExecutionPolicy(timeout=20, retries=1),
    "knowledge-base-node": ExecutionPolicy(timeout=20, retries=1),
    "bingNode": ExecutionPolicy(timeout=20, retries=1),
    "dataProcessNode": DEFAULT_POLICY,
    "conditionNode": CONTROL_POLICY,
    "decisionNode": CONTROL_POLICY,
    "switchNode": CONTROL_POLICY,
    "condition": CONTROL_POLICY,
    "responseNode": CONTROL_POLICY,
    "response-node": CONTROL_POLICY,
    "userInputNode": CONTROL_POLICY,
    "user-input": CONTROL_POLICY,
    "formNode": CONTROL_POLICY,
}

# Timing fields left out when a whole result is forwarded as previous data
_TIMING_KEYS = frozenset({"timestamp", "duration", "startTime", "endTime", "message", "executionTime"})


def is_client_error(status_code: Optional[int]) -> bool:
    """A 4xx reply that another attempt would not fix."""
    return (
        status_code is not None
        and 400 <= status_code < 500
        and status_code not in RETRYABLE_CLIENT_STATUSES
    )


def previous_data_as_text(context: ExecutionContext) -> str:
    """
    Render the latest non-start result for the next request.

    Only one result is forwarded: its ``output``, else ``result``, else
    ``response``, else the result itself without timing fields.
    """
    start_ids = set()
    if context.plan is not None:
        start_ids = {s.node_id for s in context.plan.steps if is_start_type(s.node_type)}

    results = [
        result for node_id, result in context.node_results.items()
        if node_id not in start_ids and isinstance(result, dict)
    ]
    if not results:
        return ""

    last = results[-1]
    for key in ("output", "result", "response"):
        if last.get(key) is not None:
            value = last[key]
            break
    else:
        value = {k: v for k, v in last.items() if k not in _TIMING_KEYS}

    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


class ServiceNodeExecutor(NodeExecutor):
    """
    Base for executors that delegate to the execution service.

    Subclasses set ``config_model`` and ``service_node_type``, the canonical
    type name reported to the service for every alias they serve.
    """

    config_model: Type[NodeConfig] = NodeConfig
    service_node_type: str = ""

    def __init__(self, service=None, retry_backoff: float = 0.5):
        super().__init__(service=service, retry_backoff=retry_backoff)
        self.policies: Dict[str, ExecutionPolicy] = dict(EXECUTION_POLICIES)

    def policy_for(self, node_type: str) -> ExecutionPolicy:
        return self.policies.get(node_type, DEFAULT_POLICY)

    def build_config(self, node_input: NodeInput) -> Dict[str, Any]:
        config = self.config_model.model_validate(node_input.data)
        return {
            "nodeType": self.service_node_type or node_input.node_type,
            **config.model_dump(by_alias=True),
        }

    def build_request(self, node_input: NodeInput, context: ExecutionContext) -> NodeExecutionRequest:
        user_input = context.user_input
        if requires_user_input(node_input.input_source) and user_input is not None:
            user_message = user_input
        else:
            user_message = node_input.data.get("userMessage")

        step = context.current_step
        return NodeExecutionRequest(
            node_id=node_input.node_id,
            node_type=self.service_node_type or node_input.node_type,
            label=node_input.label,
            description=node_input.description,
            execution_id=context.execution_id,
            step_id=step.id if step else "",
            workflow_id=context.workflow_id,
            config=self.build_config(node_input),
            variables=dict(context.variables),
            user_input=user_input,
            user_message=str(user_message) if user_message is not None else None,
            input_data=node_input.data.get("data"),
            previous_data=previous_data_as_text(context),
        )

    async def execute(self, node_input: NodeInput, context: ExecutionContext) -> NodeOutcome:
        if self.service is None:
            raise ExecutionError(
                f"No execution service configured for node type '{node_input.node_type}'",
                node_id=node_input.node_id,
            )

        request = self.build_request(node_input, context)
        response = await self._call_with_retry(request, self.policy_for(node_input.node_type))

        needs_input = self._needs_input(response)
        if needs_input is not None:
            return needs_input

        if not response.success:
            raise ExecutionError(
                response.error or "Node execution failed",
                node_id=node_input.node_id,
            )

        return self.normalize_output(
            response.output,
            execution_time=response.execution_time,
            timestamp=response.timestamp,
            metadata=response.metadata,
        )

    async def _call_with_retry(
        self,
        request: NodeExecutionRequest,
        policy: ExecutionPolicy,
    ) -> NodeExecutionResponse:
        """
        Call the service, retrying failures that may be transient.

        A response with ``success=False`` is returned as is and a 4xx
        reply fails at once: the service has spoken and retrying would
        not change its mind.

        Raises:
            ExecutionError: When every attempt failed or the request was refused
        """
        last_error: Optional[str] = None

        for attempt in range(policy.retries + 1):
            try:
                return await asyncio.wait_for(
                    self.service.execute_node(request, timeout=policy.timeout),
                    timeout=policy.timeout,
                )
            except asyncio.TimeoutError:
                last_error = f"Node '{request.node_id}' timed out after {policy.timeout}s"
            except ServiceError as e:
                if is_client_error(e.status_code):
                    logger.warning(f"Node '{request.node_id}' refused by the execution service: {e}")
                    raise ExecutionError(str(e), node_id=request.node_id) from e
                last_error = str(e)

            if attempt < policy.retries:
                logger.warning(
                    f"Retrying node '{request.node_id}' "
                    f"({attempt + 1}/{policy.retries}): {last_error}"
                )
                if self.retry_backoff:
                    await asyncio.sleep(self.retry_backoff * (attempt + 1))

        raise ExecutionError(last_error or "Node execution failed", node_id=request.node_id)

    def _needs_input(self, response: NodeExecutionResponse) -> Optional[NeedsInput]:
        metadata = response.metadata or {}
        if response.error != WAITING_FOR_USER_INPUT and not metadata.get("requiresUserInput"):
            return None

        config = metadata.get("userInputConfig")
        return NeedsInput(
            message=metadata.get("message") or "Waiting for user input",
            config=UserInputConfig.model_validate(config) if isinstance(config, dict) else None,
        )


# =============================================================================
# Concrete executors
# =============================================================================

@register_executor(
    "aiDialogNode", "aiExtractNode", "aiJsonNode", "ai-conversation", "ai-dialog-node",
)
class AIDialogExecutor(ServiceNodeExecutor):
    config_model = AIDialogConfig
    service_node_type = "aiDialogNode"


@register_executor("aiSummaryNode")
class AISummaryExecutor(ServiceNodeExecutor):
    config_model = AISummaryConfig
    service_node_type = "aiSummaryNode"


@register_executor("databaseNode", "database-node")
class DatabaseExecutor(ServiceNodeExecutor):
    config_model = DatabaseConfig
    service_node_type = "databaseNode"


@register_executor("knowledgeBaseNode", "knowledge-base-node", "bingNode")
class KnowledgeBaseExecutor(ServiceNodeExecutor):
    config_model = KnowledgeBaseConfig
    service_node_type = "knowledgeBaseNode"


@register_executor("httpNode")
class HttpExecutor(ServiceNodeExecutor):
    config_model = HttpConfig
    service_node_type = "httpNode"


@register_executor("conditionNode", "decisionNode", "switchNode", "condition")
class ConditionExecutor(ServiceNodeExecutor):
    config_model = ConditionConfig
    service_node_type = "conditionNode"


@register_executor(
    "dataProcessNode", "data-process", "jsonExtractor", "basicNode", "processNode", "customNode",
)
class DataProcessExecutor(ServiceNodeExecutor):
    config_model = DataProcessConfig
    service_node_type = "dataProcessNode"


@register_executor("responseNode", "response-node")
class ResponseExecutor(ServiceNodeExecutor):
    config_model = ResponseConfig
    service_node_type = "responseNode"


@register_executor("userInputNode", "user-input", "formNode")
class UserInputExecutor(ServiceNodeExecutor):
    config_model = UserInputNodeConfig
    service_node_type = "userInputNode"
