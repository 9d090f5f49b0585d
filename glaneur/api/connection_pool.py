"""
HTTP connection pooling for media fetches

Provides one shared httpx client sized to the fetch concurrency.
"""

import asyncio
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


def create_client(max_connections: int = 10, timeout: float = 30.0) -> httpx.AsyncClient:
    """
    Create httpx async client with connection pooling

    Args:
        max_connections: Maximum number of connections in pool
        timeout: Read timeout in seconds

    Returns:
        Configured httpx.AsyncClient
    """
    limits = httpx.Limits(
        max_connections=max_connections,
        max_keepalive_connections=max_connections,
        keepalive_expiry=90.0,
    )

    timeout_config = httpx.Timeout(
        connect=5.0,
        read=timeout,
        write=5.0,
        pool=timeout,
    )

    # Retries are handled by the pipeline's source sweep
    transport = httpx.AsyncHTTPTransport(limits=limits, retries=0)

    client = httpx.AsyncClient(
        timeout=timeout_config,
        transport=transport,
        follow_redirects=True,
    )

    logger.debug(
        f"Connection pool: max_connections={max_connections}, "
        f"timeout={timeout}s"
    )

    return client


class ConnectionPoolManager:
    """
    Owns the shared client for the duration of a run

    Example:
        manager = ConnectionPoolManager(max_connections=4, timeout=30)
        client = await manager.get_client()
        ...
        await manager.close_client()
    """

    def __init__(self, max_connections: int = 10, timeout: float = 30.0):
        self.max_connections = max_connections
        self.timeout = timeout
        self.client: Optional[httpx.AsyncClient] = None
        self.lock = asyncio.Lock()

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create the shared client (async-safe)"""
        async with self.lock:
            if self.client is None or self.client.is_closed:
                self.client = create_client(self.max_connections, self.timeout)
            return self.client

    async def close_client(self) -> None:
        """Close client and release connections"""
        async with self.lock:
            if self.client and not self.client.is_closed:
                logger.debug("Closing connection pool...")
                await self.client.aclose()
            self.client = None
