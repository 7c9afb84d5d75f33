import json

import pytest
from capi_jobs_client.errors import TransportError
from capi_jobs_client.transport import AiohttpTransport


@pytest.mark.asyncio
async def test_error_status_is_returned_not_raised(server):
    """Test that HTTP error statuses are returned as responses."""
    _, base_url = server

    async with AiohttpTransport(base_url) as transport:
        response = await transport.request("GET", "/v3/jobs/missing")

    assert response.status == 404
    assert not response.ok
    assert json.loads(response.body)["errors"][0]["code"] == 10010


@pytest.mark.asyncio
async def test_dict_body_is_sent_as_json(server):
    """Test that dict bodies are sent as JSON."""
    _, base_url = server

    async with AiohttpTransport(base_url) as transport:
        response = await transport.request(
            "POST", "/v3/service_credential_bindings", body={"type": "key", "name": "creds"}
        )

    assert response.status == 201
    assert response.header("content-type").startswith("application/json")
    assert json.loads(response.body)["name"] == "creds"


@pytest.mark.asyncio
async def test_accepted_response_keeps_location(server):
    """Test that response headers are passed through."""
    _, base_url = server

    async with AiohttpTransport(base_url) as transport:
        response = await transport.request(
            "POST",
            "/v3/spaces/space-guid/actions/apply_manifest",
            body="applications: []",
            headers={"Content-Type": "application/x-yaml"},
        )

    assert response.status == 202
    assert response.header("Location").startswith("/v3/jobs/")


@pytest.mark.asyncio
async def test_connection_failure_raises_transport_error():
    """Test behavior when the server is not reachable."""
    async with AiohttpTransport("http://localhost:9999", timeout=2.0) as transport:
        with pytest.raises(TransportError) as exc_info:
            await transport.request("GET", "/v3/jobs/job-guid")

    assert exc_info.value.status is None


@pytest.mark.asyncio
async def test_dict_body_sets_json_content_type(server):
    """Test that dict bodies are declared as JSON."""
    server_instance, base_url = server

    async with AiohttpTransport(base_url) as transport:
        await transport.request("POST", "/v3/service_credential_bindings", body={"type": "key"})

    assert server_instance.request_headers[-1]["Content-Type"].startswith("application/json")
