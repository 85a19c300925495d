from typing import Any, Dict, Optional, Protocol

import aiohttp
from loguru import logger
from pydantic import BaseModel


class GatewayResponse(BaseModel):
    status: int
    payload: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class HttpGateway(Protocol):
    """Issues one HTTP request and returns the decoded JSON body.

    Implementations raise on network failure, timeout or an undecodable body;
    non-2xx statuses are returned, not raised.
    """

    async def request(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Optional[Any] = None,
        timeout_ms: Optional[int] = None,
    ) -> GatewayResponse: ...

    async def close(self) -> None: ...


class AiohttpGateway:
    def __init__(self, session: Optional[aiohttp.ClientSession] = None):
        self._session = session
        self._owns_session = session is None
        self.logger = logger

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def request(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Optional[Any] = None,
        timeout_ms: Optional[int] = None,
    ) -> GatewayResponse:
        session = self._get_session()
        timeout = aiohttp.ClientTimeout(
            total=timeout_ms / 1000 if timeout_ms is not None else None
        )
        self.logger.debug(f"{method} {url}")

        async with session.request(
            method, url, headers=headers, json=body, timeout=timeout
        ) as response:
            # Empty bodies decode to None
            payload = await response.json(content_type=None)
            return GatewayResponse(status=response.status, payload=payload)

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
