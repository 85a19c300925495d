import asyncio
import re
from typing import Any, Dict, List, Optional, Type, TypeVar
from urllib.parse import quote

from loguru import logger
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from vaultum_sdk.errors import (
    OperationIdFormatError,
    OperationNotFoundError,
    TransportError,
    error_from_response,
    normalize_exception,
)
from vaultum_sdk.gateway import AiohttpGateway, GatewayResponse, HttpGateway
from vaultum_sdk.models import (
    AccountModule,
    Chain,
    ClientOptions,
    DeployAccountRequest,
    PollConfig,
    QuoteRequest,
    QuoteResponse,
    RecoveryRequest,
    StatusResponse,
    SubmitRequest,
    SubmitResponse,
)
from vaultum_sdk.poller import OperationPoller, StatusCallback

OPERATION_ID_PATTERN = re.compile(
    r"^[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}$", re.IGNORECASE
)

DEFAULT_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
}

# Extra time allowed past the server-side hold of a long-poll request
LONG_POLL_MARGIN_MS = 5000

ModelT = TypeVar("ModelT", bound=BaseModel)


def validate_operation_id(op_id: str) -> None:
    if not op_id or not OPERATION_ID_PATTERN.match(op_id):
        raise OperationIdFormatError("Invalid operation ID format")


class VaultumApiClient:
    """Typed client for the Vaultum HTTP API"""

    def __init__(
        self,
        options: ClientOptions,
        gateway: Optional[HttpGateway] = None,
    ):
        self.base_url = options.base_url[:-1] if options.base_url.endswith("/") else options.base_url
        self.headers: Dict[str, str] = dict(DEFAULT_HEADERS)
        if options.api_key:
            self.headers["X-API-Key"] = options.api_key
        self.headers.update(options.headers)
        self.timeout_ms = options.timeout_ms
        self.gateway = gateway or AiohttpGateway()
        self.logger = logger

    async def __aenter__(self) -> "VaultumApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self.gateway.close()

    async def _send(
        self,
        method: str,
        path: str,
        body: Optional[Any] = None,
        timeout_ms: Optional[int] = None,
    ) -> GatewayResponse:
        url = f"{self.base_url}{path}"
        try:
            return await self.gateway.request(
                method,
                url,
                headers=self.headers,
                body=body,
                timeout_ms=timeout_ms if timeout_ms is not None else self.timeout_ms,
            )
        except Exception as e:
            error = normalize_exception(e)
            self.logger.error(f"{method} {url} failed: {error.message}")
            raise error from e

    async def _request(
        self,
        method: str,
        path: str,
        body: Optional[Any] = None,
        timeout_ms: Optional[int] = None,
    ) -> Any:
        response = await self._send(method, path, body, timeout_ms=timeout_ms)
        if not response.ok:
            error = error_from_response(response.status, response.payload)
            self.logger.error(f"HTTP error {response.status} at {path}: {error.message}")
            raise error
        return response.payload

    def _parse(self, model: Type[ModelT], payload: Any) -> ModelT:
        try:
            return model.model_validate(payload)
        except PydanticValidationError as e:
            raise TransportError(f"Malformed {model.__name__} payload: {e}") from e

    async def quote_op(self, request: QuoteRequest) -> QuoteResponse:
        """Get a quote for a cross-chain operation"""
        payload = await self._request("POST", "/api/op/quote", request.to_wire())
        return self._parse(QuoteResponse, payload)

    async def submit_op(self, request: SubmitRequest) -> SubmitResponse:
        """Submit a UserOperation for execution"""
        payload = await self._request("POST", "/api/op/submit", request.to_wire())
        return self._parse(SubmitResponse, payload)

    async def get_op_status(self, op_id: str) -> StatusResponse:
        """Get the status of a submitted operation by its UUID"""
        validate_operation_id(op_id)
        payload = await self._request("GET", f"/api/op/{op_id}")
        return self._parse(StatusResponse, payload)

    async def get_op(self, op_id: str) -> StatusResponse:
        """Get an operation's status from the short `/op/{id}` route, which accepts any token"""
        response = await self._send("GET", f"/op/{quote(op_id, safe='')}")
        if response.status == 404:
            raise OperationNotFoundError("Operation not found", 404)
        if not response.ok:
            raise error_from_response(response.status, response.payload)
        return self._parse(StatusResponse, response.payload)

    async def wait_on_server(self, op_id: str, timeout_s: int = 30) -> StatusResponse:
        """Long-poll the server, which holds the request up to `timeout_s` seconds"""
        validate_operation_id(op_id)
        payload = await self._request(
            "GET",
            f"/api/op/{op_id}/wait?timeout={timeout_s}",
            timeout_ms=timeout_s * 1000 + LONG_POLL_MARGIN_MS,
        )
        return self._parse(StatusResponse, payload)

    async def deploy_account(
        self,
        owner: str,
        chain: Chain,
        modules: Optional[List[AccountModule]] = None,
        salt: Optional[str] = None,
    ) -> Dict[str, Any]:
        request = DeployAccountRequest(owner=owner, chain=chain, modules=modules, salt=salt)
        return await self._request("POST", "/api/account/deploy", request.to_wire())

    async def initiate_recovery(
        self, account: str, new_owner: str, guardian: str, signature: str
    ) -> Dict[str, Any]:
        request = RecoveryRequest(
            account=account, new_owner=new_owner, guardian=guardian, signature=signature
        )
        return await self._request("POST", "/api/recovery/initiate", request.to_wire())

    async def get_recovery_status(self, account: str) -> Dict[str, Any]:
        return await self._request("GET", f"/api/recovery/{account}/status")

    async def wait_for_operation(
        self,
        op_id: str,
        config: Optional[PollConfig] = None,
        on_status_change: Optional[StatusCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> StatusResponse:
        """Poll `get_op_status` until the operation succeeds or fails"""
        poller = OperationPoller(self.get_op_status, config)
        return await poller.poll(op_id, on_status=on_status_change, cancel_event=cancel_event)


async def wait_for_op(
    base_url: str,
    op_id: str,
    config: Optional[PollConfig] = None,
    on_tick: Optional[StatusCallback] = None,
    gateway: Optional[HttpGateway] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> StatusResponse:
    """Wait on an operation through the short `/op/{id}` route.

    A 404 ends the wait with OperationNotFoundError. When no gateway is
    passed, a temporary one is created and closed afterwards.
    """
    client = VaultumApiClient(ClientOptions(base_url=base_url), gateway=gateway)
    try:
        poller = OperationPoller(client.get_op, config)
        return await poller.poll(op_id, on_status=on_tick, cancel_event=cancel_event)
    finally:
        if gateway is None:
            await client.close()
