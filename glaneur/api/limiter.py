"""
Bounded concurrency gates

Token pools that cap concurrent image/video fetches and concurrent
requests to a metadata provider.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from glaneur.api.error_handler import ScrapeCancelled

logger = logging.getLogger(__name__)


class ResourceLimiter:
    """
    Fixed-size token pool

    A caller acquires one token before doing bounded work and releases it
    on every exit path. Waiting can be interrupted by a shutdown event.

    Example:
        images = ResourceLimiter(4, name='images')

        async with images.slot(shutdown_event):
            await download(url)
    """

    def __init__(self, capacity: int, name: str = "limiter"):
        """
        Args:
            capacity: Number of tokens (>= 1)
            name: Label used in logs and stats
        """
        if capacity < 1:
            raise ValueError(f"{name}: capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self.name = name
        self._semaphore = asyncio.Semaphore(capacity)
        self._in_use = 0
        self._peak = 0

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def available(self) -> int:
        return self.capacity - self._in_use

    @property
    def peak(self) -> int:
        """Highest number of tokens held at the same time."""
        return self._peak

    async def acquire(self, shutdown_event: Optional[asyncio.Event] = None) -> None:
        """
        Wait for a token.

        Raises:
            ScrapeCancelled: If ``shutdown_event`` is set before a token is granted
        """
        if shutdown_event is None:
            await self._semaphore.acquire()
            self._mark_acquired()
            return

        if shutdown_event.is_set():
            raise ScrapeCancelled(f"{self.name}: shutdown requested")

        acquire_task = asyncio.ensure_future(self._semaphore.acquire())
        shutdown_task = asyncio.ensure_future(shutdown_event.wait())
        try:
            await asyncio.wait(
                {acquire_task, shutdown_task},
                return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            shutdown_task.cancel()
            await self._abandon(acquire_task)
            raise
        shutdown_task.cancel()

        if acquire_task.done() and not acquire_task.cancelled() and acquire_task.exception() is None:
            if not shutdown_event.is_set():
                self._mark_acquired()
                return
            # Token granted in the same tick as shutdown; hand it back
            self._semaphore.release()
            raise ScrapeCancelled(f"{self.name}: shutdown requested")

        await self._abandon(acquire_task)
        raise ScrapeCancelled(f"{self.name}: shutdown requested")

    async def _abandon(self, acquire_task: asyncio.Future) -> None:
        """Cancel a pending acquire, returning the token if it was granted anyway."""
        if not acquire_task.done():
            acquire_task.cancel()
            try:
                await acquire_task
            except asyncio.CancelledError:
                return
        if not acquire_task.cancelled() and acquire_task.exception() is None:
            self._semaphore.release()

    def _mark_acquired(self) -> None:
        self._in_use += 1
        if self._in_use > self._peak:
            self._peak = self._in_use

    def release(self) -> None:
        """Return a token to the pool."""
        if self._in_use <= 0:
            raise RuntimeError(f"{self.name}: release() without matching acquire()")
        self._in_use -= 1
        self._semaphore.release()

    @asynccontextmanager
    async def slot(self, shutdown_event: Optional[asyncio.Event] = None) -> AsyncIterator[None]:
        """Hold one token for the duration of the block."""
        await self.acquire(shutdown_event)
        try:
            yield
        finally:
            self.release()

    async def __aenter__(self) -> 'ResourceLimiter':
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()

    def get_stats(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'capacity': self.capacity,
            'in_use': self._in_use,
            'peak': self._peak,
        }


def determine_max_threads(
    api_limits: Optional[Dict[str, Any]],
    override: Optional[int] = None
) -> int:
    """
    Determine how many parallel requests a provider allows.

    Considers:
    1. Provider-granted maxthreads (authoritative upper bound)
    2. User override, clamped to the provider limit
    3. Conservative default (1)

    Args:
        api_limits: Provider limits dict, e.g. ``{'maxthreads': 4}``
        override: Requested thread count

    Returns:
        Thread count (>= 1)
    """
    api_maxthreads = None
    if api_limits and api_limits.get('maxthreads') is not None:
        api_maxthreads = max(1, int(api_limits['maxthreads']))

    if override is not None:
        requested = max(1, int(override))
        if api_maxthreads is not None and requested > api_maxthreads:
            logger.warning(
                f"Requested {requested} threads exceeds provider limit {api_maxthreads}, clamping"
            )
            return api_maxthreads
        return requested

    if api_maxthreads is not None:
        logger.info(f"Using provider maxthreads: {api_maxthreads}")
        return api_maxthreads

    logger.info("Using default maxthreads: 1 (provider limit not available)")
    return 1
