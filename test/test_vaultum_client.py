import asyncio

import pytest
from pydantic import ValidationError
from vaultum_sdk.errors import (
    ErrorKind,
    OperationIdFormatError,
    OperationNotFoundError,
    RequestFailedError,
    TransportError,
    VaultumError,
    VaultumTimeoutError,
    VaultumValidationError,
)
from vaultum_sdk.gateway import GatewayResponse
from vaultum_sdk.models import (
    AccountModule,
    Chain,
    ClientOptions,
    OperationState,
    QuoteRequest,
    SubmitRequest,
    UserOperation,
)
from vaultum_sdk.vaultum_client import VaultumApiClient

OP_ID = "550e8400-e29b-41d4-a716-446655440000"


def quote_request() -> QuoteRequest:
    return QuoteRequest(
        from_chain=Chain.ethereum,
        to_chain=Chain.polygon,
        token="0x0000000000000000000000000000000000000000",
        amount="1000000000000000000",
    )


def user_operation() -> UserOperation:
    return UserOperation(
        sender="0x742d35Cc6634C0532925a3b844Bc9e7595f0bEb0",
        nonce="0",
        init_code="0x",
        call_data="0xb61d27f6000000000000000000000000",
        call_gas_limit="100000",
        verification_gas_limit="100000",
        pre_verification_gas="21000",
        max_fee_per_gas="1000000000",
        max_priority_fee_per_gas="1000000000",
        paymaster_and_data="0x",
    )


class RaisingGateway:
    """Gateway whose every request raises the given exception."""

    def __init__(self, exc: BaseException):
        self.exc = exc
        self.calls = 0

    async def request(self, method, url, headers, body=None, timeout_ms=None) -> GatewayResponse:
        self.calls += 1
        raise self.exc

    async def close(self) -> None:
        pass


@pytest.mark.asyncio
async def test_trailing_slash_is_removed(server):
    """A trailing slash on the base URL does not produce a double slash."""
    server_instance, base_url = server
    server_instance.script(OP_ID, {"id": OP_ID, "state": "queued", "txHash": None})

    async with VaultumApiClient(ClientOptions(base_url=base_url + "/")) as api:
        await api.get_op_status(OP_ID)

    assert api.base_url == base_url
    assert server_instance.requests[-1]["path"] == f"/api/op/{OP_ID}"


@pytest.mark.asyncio
async def test_custom_headers_override_defaults(server):
    """Caller headers are merged over the JSON defaults."""
    server_instance, base_url = server
    options = ClientOptions(
        base_url=base_url,
        api_key="test-key",
        headers={"X-Custom-Header": "custom-value", "Content-Type": "application/xml"},
    )

    async with VaultumApiClient(options) as api:
        await api.quote_op(quote_request())

    headers = server_instance.requests[-1]["headers"]
    assert headers["x-custom-header"] == "custom-value"
    assert headers["content-type"] == "application/xml"
    assert headers["accept"] == "application/json"
    assert headers["x-api-key"] == "test-key"


@pytest.mark.asyncio
async def test_quote_op(server, client):
    """Quote requests are sent as camelCase JSON and the route is parsed."""
    server_instance, _ = server

    result = await client.quote_op(quote_request())

    assert result.estimated_fee == "50000000000000000"
    assert result.route.path == ["ethereum", "polygon"]
    assert result.route.estimated_time == 300

    recorded = server_instance.requests[-1]
    assert recorded["method"] == "POST"
    assert recorded["path"] == "/api/op/quote"
    assert recorded["body"] == {
        "fromChain": "ethereum",
        "toChain": "polygon",
        "token": "0x0000000000000000000000000000000000000000",
        "amount": "1000000000000000000",
    }


@pytest.mark.asyncio
async def test_quote_validation_error(server, client):
    """A 422 keeps the server message and the per-field errors."""
    server_instance, _ = server
    errors = {
        "fromChain": ["The fromChain must be one of: ethereum, polygon, arbitrum"],
        "token": ["The token must be a valid Ethereum address"],
    }
    server_instance.override(
        "POST", "/api/op/quote", 422, {"message": "The given data was invalid.", "errors": errors}
    )

    with pytest.raises(VaultumValidationError) as exc_info:
        await client.quote_op(quote_request())

    assert exc_info.value.message == "The given data was invalid."
    assert exc_info.value.status_code == 422
    assert exc_info.value.errors == errors
    assert exc_info.value.kind is ErrorKind.validation


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, message",
    [
        (400, "Bad request: missing required fields"),
        (403, "Forbidden: API key invalid"),
        (500, "Internal server error"),
    ],
)
async def test_error_field_becomes_message(server, client, status, message):
    """Non-2xx responses with an `error` field surface that message and status."""
    server_instance, _ = server
    server_instance.override("POST", "/api/op/submit", status, {"error": message})

    with pytest.raises(RequestFailedError) as exc_info:
        await client.submit_op(SubmitRequest(chain=Chain.ethereum, user_op=user_operation()))

    assert exc_info.value.message == message
    assert exc_info.value.status_code == status


@pytest.mark.asyncio
async def test_non_json_error_response(server, client):
    """An error response that is not JSON is reported as a transport error."""
    server_instance, _ = server
    server_instance.override("POST", "/api/op/quote", 503, "<html>Service Unavailable</html>")

    with pytest.raises(TransportError):
        await client.quote_op(quote_request())


@pytest.mark.asyncio
async def test_submit_op(server, client):
    """Submitting returns the new operation id."""
    server_instance, _ = server
    request = SubmitRequest(
        chain=Chain.ethereum, user_op=user_operation(), signature="0x" + "a" * 130
    )

    result = await client.submit_op(request)

    assert result.id == OP_ID
    assert result.state is OperationState.queued
    submitted = server_instance.submitted[-1]
    assert submitted["chain"] == "ethereum"
    assert submitted["signature"] == "0x" + "a" * 130
    assert submitted["userOp"]["callGasLimit"] == "100000"
    assert "signature" not in submitted["userOp"]


@pytest.mark.asyncio
async def test_get_op_status(server, client):
    """Status payloads are parsed, including the transaction hash."""
    server_instance, _ = server
    tx_hash = "0x" + "a" * 64
    server_instance.script(OP_ID, {"id": OP_ID, "state": "sent", "txHash": tx_hash})

    result = await client.get_op_status(OP_ID)

    assert result.id == OP_ID
    assert result.state is OperationState.sent
    assert result.tx_hash == tx_hash
    assert server_instance.requests[-1]["method"] == "GET"
    assert server_instance.requests[-1]["headers"]["accept"] == "application/json"


@pytest.mark.asyncio
async def test_get_op_status_null_tx_hash(server, client):
    server_instance, _ = server
    server_instance.script(OP_ID, {"id": OP_ID, "state": "queued", "txHash": None})

    result = await client.get_op_status(OP_ID)

    assert result.state is OperationState.queued
    assert result.tx_hash is None


@pytest.mark.asyncio
async def test_get_op_status_uppercase_uuid(server, client):
    server_instance, _ = server
    upper = OP_ID.upper()
    server_instance.script(upper, {"id": upper, "state": "queued"})

    result = await client.get_op_status(upper)

    assert result.id == upper


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "op_id",
    [
        "",
        "not-a-uuid",
        "550e8400-e29b-41d4-a716",
        "550e8400e29b41d4a716446655440000",
        "g50e8400-e29b-41d4-a716-446655440000",
        "550e8400-e29b-41d4-a716-446655440000-extra",
    ],
)
async def test_invalid_operation_id_is_rejected_before_any_request(op_id):
    """Malformed ids fail fast and never reach the network."""
    gateway = RaisingGateway(AssertionError("gateway must not be called"))
    api = VaultumApiClient(ClientOptions(base_url="http://localhost:1"), gateway=gateway)

    with pytest.raises(OperationIdFormatError, match="Invalid operation ID format"):
        await api.get_op_status(op_id)

    assert gateway.calls == 0


@pytest.mark.asyncio
async def test_status_not_found(server, client):
    """An unknown operation on the UUID route is a not-found error."""
    with pytest.raises(OperationNotFoundError) as exc_info:
        await client.get_op_status(OP_ID)

    assert exc_info.value.message == "Operation not found"
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_alternate_route_not_found_ignores_body(server, client):
    """The short route reports 404 with a fixed message."""
    server_instance, _ = server
    server_instance.override("GET", "/op/op_missing", 404, {"error": "gone"})

    with pytest.raises(OperationNotFoundError) as exc_info:
        await client.get_op("op_missing")

    assert exc_info.value.message == "Operation not found"


@pytest.mark.asyncio
async def test_alternate_route_escapes_the_operation_id(server, client):
    """Reserved URL characters in a free-form id stay inside the path segment."""
    server_instance, _ = server
    server_instance.script("op?x#1", {"id": "op?x#1", "state": "queued"})

    result = await client.get_op("op?x#1")

    assert result.id == "op?x#1"
    assert server_instance.requests[-1]["path"] == "/op/op?x#1"
    assert server_instance.requests[-1]["query"] == {}


def test_gateway_response_ok():
    assert GatewayResponse(status=200, payload={"id": OP_ID}).ok
    assert GatewayResponse(status=204).ok
    assert GatewayResponse(status=204).payload is None
    assert not GatewayResponse(status=404, payload={"error": "missing"}).ok
    assert not GatewayResponse(status=302).ok


@pytest.mark.asyncio
async def test_validation_error_without_message(server, client):
    server_instance, _ = server
    server_instance.script(OP_ID, (422, {"errors": {"field": ["Error without message"]}}))

    with pytest.raises(VaultumValidationError) as exc_info:
        await client.get_op_status(OP_ID)

    assert exc_info.value.message == "Validation failed"
    assert exc_info.value.status_code == 422
    assert exc_info.value.errors == {"field": ["Error without message"]}


@pytest.mark.asyncio
async def test_empty_error_body(server, client):
    server_instance, _ = server
    server_instance.script(OP_ID, (400, {}))

    with pytest.raises(RequestFailedError) as exc_info:
        await client.get_op_status(OP_ID)

    assert exc_info.value.message == "Request failed with status 400"
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_json_parse_error_on_success(server, client):
    server_instance, _ = server
    server_instance.script(OP_ID, (200, "<html>not json</html>"))

    with pytest.raises(TransportError):
        await client.get_op_status(OP_ID)


@pytest.mark.asyncio
async def test_malformed_status_payload(server, client):
    """A payload with an unknown state cannot be decoded."""
    server_instance, _ = server
    server_instance.script(OP_ID, {"id": OP_ID, "state": "exploded"})

    with pytest.raises(TransportError, match="Malformed StatusResponse payload"):
        await client.get_op_status(OP_ID)


@pytest.mark.asyncio
async def test_server_unavailable(unused_tcp_port_factory):
    """Connection failures are normalized into transport errors."""
    port = unused_tcp_port_factory()
    async with VaultumApiClient(ClientOptions(base_url=f"http://localhost:{port}")) as api:
        with pytest.raises(TransportError) as exc_info:
            await api.get_op_status(OP_ID)

    assert exc_info.value.message
    assert exc_info.value.kind is ErrorKind.transport


@pytest.mark.asyncio
async def test_request_timeout(server):
    """A response slower than the request timeout raises a timeout error."""
    server_instance, base_url = server
    server_instance.delay = 0.5
    server_instance.script(OP_ID, {"id": OP_ID, "state": "queued"})

    async with VaultumApiClient(ClientOptions(base_url=base_url, timeout_ms=50)) as api:
        with pytest.raises(VaultumTimeoutError, match="Request timeout"):
            await api.get_op_status(OP_ID)


@pytest.mark.asyncio
async def test_long_poll_outlives_the_request_timeout(server):
    """The server-side wait may hold the request past the ordinary request timeout."""
    server_instance, base_url = server
    server_instance.delay = 0.3
    server_instance.script(OP_ID, {"id": OP_ID, "state": "success", "txHash": "0xabc"})

    async with VaultumApiClient(ClientOptions(base_url=base_url, timeout_ms=100)) as api:
        result = await api.wait_on_server(OP_ID, timeout_s=1)

    assert result.state is OperationState.success
    assert server_instance.requests[-1]["query"] == {"timeout": "1"}


def test_request_timeout_must_be_positive():
    with pytest.raises(ValidationError):
        ClientOptions(base_url="http://localhost:1", timeout_ms=0)

    with pytest.raises(ValidationError):
        ClientOptions(base_url="http://localhost:1", timeout_ms=-1)


@pytest.mark.asyncio
async def test_gateway_error_without_message():
    api = VaultumApiClient(
        ClientOptions(base_url="http://localhost:1"), gateway=RaisingGateway(RuntimeError())
    )

    with pytest.raises(TransportError) as exc_info:
        await api.get_op_status(OP_ID)

    assert exc_info.value.message == "Unknown error occurred"


@pytest.mark.asyncio
async def test_gateway_network_error_message():
    api = VaultumApiClient(
        ClientOptions(base_url="http://localhost:1"),
        gateway=RaisingGateway(ConnectionError("Network error: ECONNREFUSED")),
    )

    with pytest.raises(TransportError, match="Network error: ECONNREFUSED"):
        await api.get_op_status(OP_ID)


@pytest.mark.asyncio
async def test_vaultum_error_passes_through_unchanged():
    original = RequestFailedError("Custom error", 400)
    api = VaultumApiClient(ClientOptions(base_url="http://localhost:1"), gateway=RaisingGateway(original))

    with pytest.raises(RequestFailedError) as exc_info:
        await api.get_op_status(OP_ID)

    assert exc_info.value is original


@pytest.mark.asyncio
async def test_gateway_timeout_is_a_timeout_error():
    api = VaultumApiClient(
        ClientOptions(base_url="http://localhost:1"),
        gateway=RaisingGateway(asyncio.TimeoutError()),
    )

    with pytest.raises(TimeoutError):
        await api.get_op_status(OP_ID)


@pytest.mark.asyncio
async def test_deploy_account(server, client):
    server_instance, _ = server

    result = await client.deploy_account(
        "0x742d35Cc6634C0532925a3b844Bc9e7595f0bEb0",
        Chain.sepolia,
        modules=[AccountModule.social_recovery, AccountModule.session_keys],
    )

    assert result["chain"] == "sepolia"
    assert server_instance.requests[-1]["body"] == {
        "owner": "0x742d35Cc6634C0532925a3b844Bc9e7595f0bEb0",
        "chain": "sepolia",
        "modules": ["socialRecovery", "sessionKeys"],
    }


@pytest.mark.asyncio
async def test_recovery_endpoints(server, client):
    server_instance, _ = server
    account = "0x742d35Cc6634C0532925a3b844Bc9e7595f0bEb0"

    started = await client.initiate_recovery(account, "0x" + "1" * 40, "0x" + "2" * 40, "0xsig")
    status = await client.get_recovery_status(account)

    assert started == {"account": account, "status": "pending"}
    assert status["approvals"] == 1
    assert server_instance.requests[0]["body"] == {
        "account": account,
        "newOwner": "0x" + "1" * 40,
        "guardian": "0x" + "2" * 40,
        "signature": "0xsig",
    }
    assert server_instance.requests[1]["path"] == f"/api/recovery/{account}/status"


def test_error_carries_optional_fields():
    error = VaultumError("Test error", 400, {"field": ["error1", "error2"]})

    assert isinstance(error, Exception)
    assert str(error) == "Test error"
    assert error.status_code == 400
    assert error.errors == {"field": ["error1", "error2"]}

    bare = VaultumError("Test error")
    assert bare.status_code is None
    assert bare.errors is None


def test_options_from_environment(monkeypatch):
    monkeypatch.setenv("VAULTUM_API_URL", "https://api.vaultum.test/")
    monkeypatch.setenv("VAULTUM_API_KEY", "env-key")
    monkeypatch.setenv("VAULTUM_TIMEOUT_MS", "1500")

    options = ClientOptions.from_env(headers={"X-Trace": "1"})
    api = VaultumApiClient(options)

    assert api.base_url == "https://api.vaultum.test"
    assert api.timeout_ms == 1500
    assert api.headers["X-API-Key"] == "env-key"
    assert api.headers["X-Trace"] == "1"
