"""
Execution Service Client.

The service performs a node's domain work (calling a model, querying a
database, ...). The engine sends one flat request per node and gets back a
success flag and an output. Timeouts and retries are the caller's concern.
"""

from typing import Any, Dict, Optional
import logging

import httpx
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from agentflow.engine.errors import ServiceError


logger = logging.getLogger(__name__)


class NodeExecutionRequest(BaseModel):
    """Flattened request for a single node."""

    node_id: str
    node_type: str
    label: Optional[str] = None
    description: Optional[str] = None

    execution_id: str = ""
    step_id: str = ""
    workflow_id: str = ""

    config: Dict[str, Any] = Field(default_factory=dict)
    variables: Dict[str, Any] = Field(default_factory=dict)
    user_input: Any = None
    user_message: Optional[str] = None
    input_data: Any = None
    previous_data: str = Field("", alias="previousdata")

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class NodeExecutionResponse(BaseModel):
    success: bool
    output: Any = None
    error: Optional[str] = None
    execution_time: Optional[float] = None
    timestamp: Any = None
    metadata: Optional[Dict[str, Any]] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "ignore"


class ExecutionServiceClient:
    """
    HTTP client for the node execution service.

    Usage:
        client = ExecutionServiceClient("http://localhost:8080")
        response = await client.execute_node(request, timeout=30)
        await client.aclose()
    """

    def __init__(
        self,
        base_url: str,
        endpoint: str = "/api/workflow/execute-node",
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self.endpoint = endpoint
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            transport=transport,
        )

    async def execute_node(
        self,
        request: NodeExecutionRequest,
        timeout: Optional[float] = None,
    ) -> NodeExecutionResponse:
        """
        POST one node request.

        Raises:
            ServiceError: On transport failures, HTTP errors or malformed bodies
        """
        payload = request.model_dump(mode="json", by_alias=True)

        try:
            response = await self._client.post(self.endpoint, json=payload, timeout=timeout)
        except httpx.TimeoutException as e:
            raise ServiceError(f"Execution service timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ServiceError(f"Execution service unreachable: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code >= 400:
            message = None
            if isinstance(body, dict):
                message = body.get("message") or body.get("detail")
            raise ServiceError(
                message or f"Execution service returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        if not isinstance(body, dict):
            raise ServiceError("Execution service returned a non-JSON body")

        # Some deployments wrap the payload as {code, data, message}
        if "success" not in body and isinstance(body.get("data"), dict):
            body = body["data"]

        try:
            return NodeExecutionResponse.model_validate(body)
        except ValueError as e:
            raise ServiceError(f"Malformed execution service response: {e}") from e

    async def aclose(self) -> None:
        await self._client.aclose()
