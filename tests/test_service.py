"""
Tests for the execution service client.
"""

import pytest
import json

import httpx

from agentflow.engine.errors import ServiceError
from agentflow.service.client import ExecutionServiceClient, NodeExecutionRequest


def make_request(**overrides) -> NodeExecutionRequest:
    fields = {
        "node_id": "chat",
        "node_type": "aiDialogNode",
        "execution_id": "plan_1",
        "step_id": "step_2_chat",
        "workflow_id": "wf_1",
        "config": {"nodeType": "aiDialogNode", "model": "gpt-4o"},
        "user_message": "hello",
        "previous_data": "seed",
    }
    fields.update(overrides)
    return NodeExecutionRequest(**fields)


def make_client(handler, **kwargs) -> ExecutionServiceClient:
    return ExecutionServiceClient(
        "http://service.test",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestExecutionServiceClient:
    """Tests for ExecutionServiceClient.execute_node."""

    @pytest.mark.asyncio
    async def test_payload_is_camel_case(self):
        """Test the request body and headers sent to the service."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True, "output": "hi"})

        client = make_client(handler, token="secret")
        response = await client.execute_node(make_request(), timeout=5)
        await client.aclose()

        assert response.success
        assert response.output == "hi"
        assert seen["url"] == "http://service.test/api/workflow/execute-node"
        assert seen["auth"] == "Bearer secret"

        body = seen["body"]
        assert body["nodeId"] == "chat"
        assert body["stepId"] == "step_2_chat"
        assert body["userMessage"] == "hello"
        assert body["previousdata"] == "seed"
        assert body["config"]["model"] == "gpt-4o"

    @pytest.mark.asyncio
    async def test_envelope_unwrapped(self):
        """Test a response wrapped as {code, data, message}."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={
                "code": 200,
                "message": "ok",
                "data": {"success": True, "output": {"rows": 3}, "executionTime": 40},
            })

        client = make_client(handler)
        response = await client.execute_node(make_request())
        await client.aclose()

        assert response.output == {"rows": 3}
        assert response.execution_time == 40

    @pytest.mark.asyncio
    async def test_http_error(self):
        """Test that an HTTP error carries the service's message and status."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, json={"message": "model overloaded"})

        client = make_client(handler)
        with pytest.raises(ServiceError, match="model overloaded") as excinfo:
            await client.execute_node(make_request())
        await client.aclose()

        assert excinfo.value.status_code == 503

    @pytest.mark.asyncio
    async def test_http_error_without_body(self):
        """Test the fallback message for an HTTP error."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="oops")

        client = make_client(handler)
        with pytest.raises(ServiceError, match="HTTP 500"):
            await client.execute_node(make_request())
        await client.aclose()

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        """Test that a non-JSON success body is rejected."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html></html>")

        client = make_client(handler)
        with pytest.raises(ServiceError, match="non-JSON"):
            await client.execute_node(make_request())
        await client.aclose()

    @pytest.mark.asyncio
    async def test_transport_error(self):
        """Test that connection failures become ServiceError."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)
        with pytest.raises(ServiceError, match="unreachable"):
            await client.execute_node(make_request())
        await client.aclose()

    @pytest.mark.asyncio
    async def test_failure_response_returned(self):
        """Test that success=False is a normal response, not an error."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"success": False, "error": "bad query"})

        client = make_client(handler)
        response = await client.execute_node(make_request())
        await client.aclose()

        assert not response.success
        assert response.error == "bad query"
