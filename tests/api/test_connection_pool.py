import httpx
import pytest

from glaneur.api.connection_pool import ConnectionPoolManager, create_client


@pytest.mark.unit
@pytest.mark.asyncio
async def test_create_client_settings():
    client = create_client(max_connections=3, timeout=7.5)
    try:
        assert isinstance(client, httpx.AsyncClient)
        assert client.timeout.read == 7.5
        assert client.timeout.connect == 5.0
        assert client.follow_redirects is True
    finally:
        await client.aclose()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_connection_pool_create_and_close():
    manager = ConnectionPoolManager(max_connections=2, timeout=5)
    client = await manager.get_client()
    assert client is not None
    assert await manager.get_client() is client

    await manager.close_client()
    assert manager.client is None
    assert client.is_closed


@pytest.mark.unit
@pytest.mark.asyncio
async def test_closed_client_is_replaced():
    manager = ConnectionPoolManager()
    first = await manager.get_client()
    await first.aclose()

    second = await manager.get_client()
    assert second is not first
    await manager.close_client()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_close_without_client_is_noop():
    manager = ConnectionPoolManager()
    await manager.close_client()
    assert manager.client is None
