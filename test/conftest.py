from typing import AsyncGenerator, Tuple

import pytest
import pytest_asyncio
from vaultum_server import FakeVaultumServer
from vaultum_sdk.models import ClientOptions, PollConfig
from vaultum_sdk.vaultum_client import VaultumApiClient

BASE_URL_TEMPLATE = "http://localhost:{}"
OP_ID = "550e8400-e29b-41d4-a716-446655440000"


@pytest_asyncio.fixture
async def server(unused_tcp_port_factory) -> AsyncGenerator[Tuple[FakeVaultumServer, str], None]:
    """Start and yield a fake Vaultum API with its base URL."""
    port = unused_tcp_port_factory()
    server_instance = FakeVaultumServer()
    await server_instance.start(port=port)
    try:
        yield server_instance, BASE_URL_TEMPLATE.format(port)
    finally:
        await server_instance.stop()


@pytest_asyncio.fixture
async def client(server) -> AsyncGenerator[VaultumApiClient, None]:
    _, base_url = server
    options = ClientOptions(base_url=base_url, api_key="test-key", timeout_ms=5000)
    async with VaultumApiClient(options) as api:
        yield api


@pytest.fixture
def fast_poll() -> PollConfig:
    """Short interval so polling tests stay quick."""
    return PollConfig(interval_ms=10, max_attempts=60, timeout_ms=5000)
