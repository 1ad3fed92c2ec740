from typing import AsyncGenerator

import pytest
import pytest_asyncio
from rynko_client.config import ClientConfig
from rynko_client.rynko_client import RynkoClient
from rynko_mock_server import MockRynkoServer

API_KEY = "test-key"


@pytest_asyncio.fixture
async def server(unused_tcp_port_factory) -> AsyncGenerator[MockRynkoServer, None]:
    """Start and yield a MockRynkoServer on a random port."""
    server_instance = MockRynkoServer(api_key=API_KEY, completion_polls=2)
    await server_instance.start(port=unused_tcp_port_factory())
    try:
        yield server_instance
    finally:
        await server_instance.stop()


@pytest.fixture
def config(server) -> ClientConfig:
    """Client configuration with delays small enough for tests."""
    return ClientConfig(
        api_key=API_KEY,
        base_url=server.base_url,
        timeout_ms=5000,
        max_retries=3,
        initial_delay_ms=10,
        max_delay_ms=50,
        max_jitter_ms=5,
    )


@pytest_asyncio.fixture
async def client(config) -> AsyncGenerator[RynkoClient, None]:
    async with RynkoClient(config=config) as rynko:
        yield rynko
