"""
Bounded work queue and per-ROM attempt state

Provides the input queue the pipeline workers pull from, and the small
state machine that tracks each ROM through its lookup attempts.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Optional, Tuple

from glaneur.scanner.rom_types import ROMInfo

logger = logging.getLogger(__name__)

_DONE = object()


async def wait_or_shutdown(
    awaitable: Awaitable,
    shutdown_event: Optional[asyncio.Event]
) -> Tuple[bool, Any]:
    """
    Await ``awaitable`` unless ``shutdown_event`` fires first.

    Returns:
        (True, result) when the awaitable completed, (False, None) when the
        shutdown event won and the awaitable was cancelled
    """
    if shutdown_event is None:
        return True, await awaitable

    task = asyncio.ensure_future(awaitable)
    if shutdown_event.is_set():
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return False, None

    waiter = asyncio.ensure_future(shutdown_event.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    if task.cancelled():
        return False, None
    return True, task.result()


class RomState(Enum):
    """Lifecycle of one ROM in the pipeline"""
    PENDING = "pending"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    NOT_FOUND = "not_found"


TERMINAL_STATES = (RomState.SUCCEEDED, RomState.FAILED, RomState.NOT_FOUND)


class InvalidTransition(RuntimeError):
    """A RomAttempt was moved to a state it cannot reach from its current one."""
    pass


@dataclass
class PipelineResult:
    """Final outcome for one ROM, consumed once by the aggregator"""
    rom: ROMInfo
    state: RomState
    game: Optional[Any] = None
    error: Optional[BaseException] = None
    entry: Optional[Any] = None
    attempts: int = 0
    pretty_name: str = ""

    @property
    def succeeded(self) -> bool:
        return self.state is RomState.SUCCEEDED


class RomAttempt:
    """
    Per-ROM state machine

    PENDING -> ATTEMPTING (at most 1 + max_retries sweeps)
            -> SUCCEEDED | FAILED | NOT_FOUND

    Example:
        attempt = RomAttempt(rom, max_retries=2)
        attempt.start()
        if transient_error and attempt.retry_or_fail(error):
            attempt.start()
    """

    def __init__(self, rom: ROMInfo, max_retries: int):
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.rom = rom
        self.max_retries = max_retries
        self.state = RomState.PENDING
        self.attempts = 0
        self.game = None
        self.error: Optional[BaseException] = None
        self.entry = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def can_retry(self) -> bool:
        return self.attempts <= self.max_retries

    def start(self) -> int:
        """Begin a sweep; returns the 1-based attempt number."""
        if self.is_terminal:
            raise InvalidTransition(f"{self.rom.path}: already {self.state.value}")
        if self.attempts > self.max_retries:
            raise InvalidTransition(f"{self.rom.path}: no attempts left")
        self.attempts += 1
        self.state = RomState.ATTEMPTING
        return self.attempts

    def _finish(self, state: RomState) -> None:
        if self.state is not RomState.ATTEMPTING:
            raise InvalidTransition(
                f"{self.rom.path}: cannot go from {self.state.value} to {state.value}"
            )
        self.state = state

    def succeed(self, game, entry=None) -> None:
        self._finish(RomState.SUCCEEDED)
        self.game = game
        self.entry = entry
        self.error = None

    def not_found(self, error: BaseException, entry=None) -> None:
        self._finish(RomState.NOT_FOUND)
        self.error = error
        self.entry = entry

    def fail(self, error: BaseException) -> None:
        self._finish(RomState.FAILED)
        self.error = error

    def retry_or_fail(self, error: BaseException) -> bool:
        """
        Record a transient failure.

        Returns:
            True if another sweep is allowed, False if the ROM is now FAILED
        """
        self.error = error
        if self.can_retry:
            return True
        self.fail(error)
        return False

    def to_result(self, pretty_name: str = "") -> PipelineResult:
        if not self.is_terminal:
            raise InvalidTransition(f"{self.rom.path}: result requested in state {self.state.value}")
        return PipelineResult(
            rom=self.rom,
            state=self.state,
            game=self.game,
            error=self.error,
            entry=self.entry,
            attempts=self.attempts,
            pretty_name=pretty_name,
        )


class WorkQueueManager:
    """
    Bounded FIFO of ROM descriptors

    The producer blocks when the queue is full, workers block when it is
    empty. Both waits give up when the shutdown event fires. ``close()``
    posts one end marker per worker.

    Example:
        work = WorkQueueManager(maxsize=8)
        await work.put(rom, shutdown_event)
        await work.close(workers=4)

        rom = await work.get_work_async(shutdown_event)  # None when done
    """

    def __init__(self, maxsize: int):
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.enqueued = 0
        self.discarded = 0

    async def put(self, rom: ROMInfo, shutdown_event: Optional[asyncio.Event] = None) -> bool:
        """
        Enqueue a ROM.

        Returns:
            False if shutdown was requested before the ROM could be queued
        """
        ok, _ = await wait_or_shutdown(self.queue.put(rom), shutdown_event)
        if ok:
            self.enqueued += 1
        return ok

    async def close(self, workers: int, shutdown_event: Optional[asyncio.Event] = None) -> None:
        """Signal that no more work will be added."""
        for _ in range(workers):
            ok, _ = await wait_or_shutdown(self.queue.put(_DONE), shutdown_event)
            if not ok:
                return

    async def get_work_async(self, shutdown_event: Optional[asyncio.Event] = None) -> Optional[ROMInfo]:
        """
        Get the next ROM.

        Returns:
            ROMInfo, or None when the queue is closed or shutdown was requested
        """
        ok, item = await wait_or_shutdown(self.queue.get(), shutdown_event)
        if not ok or item is _DONE:
            return None
        if shutdown_event is not None and shutdown_event.is_set():
            self.discarded += 1
            return None
        return item

    def drain(self) -> int:
        """Discard every queued ROM without processing it; returns the count."""
        count = 0
        while True:
            try:
                item = self.queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if item is not _DONE:
                count += 1
        if count:
            logger.info(f"Discarded {count} queued ROMs")
        self.discarded += count
        return count

    def get_stats(self) -> dict:
        return {
            'enqueued': self.enqueued,
            'discarded': self.discarded,
            'pending': self.queue.qsize(),
        }
