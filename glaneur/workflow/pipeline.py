"""
Worker pool pipeline

Fans ROM descriptors out to a fixed number of asyncio workers, runs the
source sweep with bounded retries for each ROM, and funnels every final
result through one queue into a single aggregation task.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from glaneur.api.error_handler import (
    ErrorCategory,
    NotFoundError,
    ScrapeCancelled,
    categorize_error,
)
from glaneur.api.sources import Game, LookupSource
from glaneur.gamelist.game_entry import GameEntry
from glaneur.media.downloader import MediaFetcher
from glaneur.scanner.rom_types import ROMInfo
from glaneur.workflow.work_queue import (
    PipelineResult,
    RomAttempt,
    RomState,
    WorkQueueManager,
    wait_or_shutdown,
)

logger = logging.getLogger(__name__)

_DONE = object()


class RunStatus(Enum):
    """How a pipeline run ended"""
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class GameOptions:
    """Options controlling how a Game becomes a gamelist entry"""
    add_not_found: bool = False
    use_pretty_name: bool = True
    use_filename: bool = False
    overview_length: int = 0


@dataclass
class PipelineOutcome:
    """Result of Pipeline.run()"""
    status: RunStatus
    results: List[PipelineResult] = field(default_factory=list)
    stats: Dict[str, int] = field(default_factory=dict)

    @property
    def cancelled(self) -> bool:
        return self.status is RunStatus.CANCELLED


class EntryRenderer:
    """
    Builds the gamelist entry for a found game, fetching its media.

    Example:
        renderer = EntryRenderer(rom_dir, fetcher, GameOptions(use_filename=True))
        entry = await renderer.render(rom, game, pretty_name, shutdown_event)
    """

    def __init__(
        self,
        rom_dir: Path,
        media_fetcher: Optional[MediaFetcher] = None,
        game_opts: Optional[GameOptions] = None
    ):
        self.rom_dir = Path(rom_dir)
        self.media_fetcher = media_fetcher
        self.game_opts = game_opts or GameOptions()

    async def render(
        self,
        rom: ROMInfo,
        game: Game,
        pretty_name: str = "",
        shutdown_event: Optional[asyncio.Event] = None
    ) -> GameEntry:
        media_paths = {}
        if self.media_fetcher is not None:
            media_paths = await self.media_fetcher.fetch_for_game(rom, game, shutdown_event)
        opts = self.game_opts
        return GameEntry.from_game(
            rom,
            game,
            self.rom_dir,
            media_paths=media_paths,
            pretty_name=pretty_name,
            use_pretty_name=opts.use_pretty_name,
            use_filename=opts.use_filename,
            overview_length=opts.overview_length,
        )

    def render_not_found(self, rom: ROMInfo) -> GameEntry:
        return GameEntry.not_found(rom, self.rom_dir)


class Pipeline:
    """
    Bounded worker pool over lookup sources

    Sweep semantics for each ROM:
    - sources are tried in priority order, the first Game wins
    - NotFound and errors fall through to the next source
    - all sources NotFound: terminal NOT_FOUND, no retry
    - any transient error and no Game: the whole sweep is retried up to
      ``max_retries`` more times, then FAILED
    - only fatal errors: FAILED without retrying

    Example:
        pipeline = Pipeline([hash_source, filename_source], workers=4,
                            max_retries=2, renderer=renderer,
                            aggregator=aggregator)
        outcome = await pipeline.run(roms, shutdown_event)
        if outcome.cancelled:
            ...
    """

    def __init__(
        self,
        sources: Sequence[LookupSource],
        workers: int = 1,
        max_retries: int = 0,
        renderer: Optional[EntryRenderer] = None,
        aggregator: Optional[Any] = None,
        game_opts: Optional[GameOptions] = None
    ):
        if workers < 1:
            raise ValueError("workers must be at least 1")
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.sources = list(sources)
        self.workers = workers
        self.max_retries = max_retries
        self.renderer = renderer
        self.aggregator = aggregator
        self.game_opts = game_opts or (renderer.game_opts if renderer else GameOptions())

        self._stats: Dict[str, int] = {}
        self._results: List[PipelineResult] = []

    async def run(
        self,
        roms: Iterable[ROMInfo],
        shutdown_event: Optional[asyncio.Event] = None
    ) -> PipelineOutcome:
        """
        Process every ROM of ``roms``.

        Args:
            roms: ROM descriptors (consumed lazily by the producer)
            shutdown_event: Setting it cancels the run

        Returns:
            PipelineOutcome with status CANCELLED when the event was set
        """
        if shutdown_event is None:
            shutdown_event = asyncio.Event()

        self._stats = {state.value: 0 for state in RomState if state not in (RomState.PENDING, RomState.ATTEMPTING)}
        self._stats.update({'attempts': 0, 'cancelled_in_flight': 0})
        self._results = []

        work = WorkQueueManager(maxsize=2 * self.workers)
        results: asyncio.Queue = asyncio.Queue(maxsize=self.workers)

        aggregator_task = asyncio.create_task(self._aggregate(results))
        worker_tasks = [
            asyncio.create_task(self._worker(i, work, results, shutdown_event))
            for i in range(self.workers)
        ]
        try:
            await self._produce(roms, work, shutdown_event)
            await asyncio.gather(*worker_tasks)
        finally:
            for task in worker_tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*worker_tasks, return_exceptions=True)
            await results.put(_DONE)
            await aggregator_task

        stats = dict(self._stats)
        stats.update(work.get_stats())
        status = RunStatus.CANCELLED if shutdown_event.is_set() else RunStatus.COMPLETED
        logger.info(
            f"Pipeline {status.value}: {len(self._results)} results, "
            f"{stats['succeeded']} succeeded, {stats['failed']} failed, "
            f"{stats['not_found']} not found"
        )
        return PipelineOutcome(status=status, results=list(self._results), stats=stats)

    async def _produce(self, roms: Iterable[ROMInfo], work: WorkQueueManager,
                       shutdown_event: asyncio.Event) -> None:
        # ``roms`` may be a lazy filesystem walk; it is stepped in a thread
        items = iter(roms)
        while not shutdown_event.is_set():
            pulled, rom = await wait_or_shutdown(
                asyncio.to_thread(next, items, _DONE), shutdown_event
            )
            if not pulled or rom is _DONE:
                break
            if not await work.put(rom, shutdown_event):
                break
        await work.close(self.workers, shutdown_event)

    async def _worker(self, worker_id: int, work: WorkQueueManager,
                      results: asyncio.Queue, shutdown_event: asyncio.Event) -> None:
        logger.debug(f"Worker {worker_id} started")
        while True:
            rom = await work.get_work_async(shutdown_event)
            if rom is None:
                break

            completed, result = await wait_or_shutdown(
                self.process_rom(rom, shutdown_event), shutdown_event
            )
            if not completed or result is None:
                self._stats['cancelled_in_flight'] += 1
                logger.info(f"Cancelled: {rom.path}")
                break

            await results.put(result)

        if shutdown_event.is_set():
            work.drain()
        logger.debug(f"Worker {worker_id} stopped")

    async def _aggregate(self, results: asyncio.Queue) -> None:
        while True:
            result = await results.get()
            if result is _DONE:
                break
            self._results.append(result)
            self._stats[result.state.value] += 1
            if self.aggregator is not None:
                try:
                    await self.aggregator.consume(result)
                except Exception as e:
                    logger.error(f"Aggregating {result.rom.path} failed: {e}")

    async def pretty_name(self, rom: ROMInfo) -> str:
        """First non-empty display name offered by any source."""
        for source in self.sources:
            name = await source.get_name(rom)
            if name:
                return name
        return ""

    async def _sweep(
        self,
        rom: ROMInfo,
        shutdown_event: asyncio.Event
    ) -> Tuple[Optional[Game], List[Tuple[BaseException, ErrorCategory]]]:
        errors: List[Tuple[BaseException, ErrorCategory]] = []
        for source in self.sources:
            try:
                game = await source.get_game(rom, shutdown_event)
                logger.debug(f"{source.name} found {rom.path}")
                return game, errors
            except asyncio.CancelledError:
                raise
            except Exception as e:
                exc, category = categorize_error(e)
                if category is ErrorCategory.CANCELLED:
                    raise
                logger.debug(f"{source.name}: {rom.path}: {exc}")
                errors.append((exc, category))
        return None, errors

    async def process_rom(
        self,
        rom: ROMInfo,
        shutdown_event: Optional[asyncio.Event] = None
    ) -> Optional[PipelineResult]:
        """
        Run the sweep for one ROM until it reaches a terminal state.

        Returns:
            PipelineResult, or None when the run was cancelled mid-ROM
        """
        if shutdown_event is None:
            shutdown_event = asyncio.Event()

        attempt = RomAttempt(rom, self.max_retries)
        pretty_name = ""
        try:
            if self.game_opts.use_pretty_name:
                pretty_name = await self.pretty_name(rom)

            while not attempt.is_terminal:
                number = attempt.start()
                self._stats['attempts'] = self._stats.get('attempts', 0) + 1
                logger.info(f"Starting: {rom.path}")
                game, errors = await self._sweep(rom, shutdown_event)

                if game is not None:
                    try:
                        entry = None
                        if self.renderer is not None:
                            entry = await self.renderer.render(rom, game, pretty_name, shutdown_event)
                    except (ScrapeCancelled, asyncio.CancelledError):
                        raise
                    except Exception as e:
                        logger.error(f"error processing {rom.path}: {e}")
                        self._retry_or_fail(attempt, e, number)
                        continue
                    attempt.succeed(game, entry)
                    continue

                transient = [e for e, c in errors if c is ErrorCategory.TRANSIENT]
                fatal = [e for e, c in errors if c is ErrorCategory.FATAL]
                if transient:
                    logger.error(f"error processing {rom.path}: {transient[-1]}")
                    self._retry_or_fail(attempt, transient[-1], number)
                elif fatal:
                    logger.error(f"error processing {rom.path}: {fatal[-1]}")
                    attempt.fail(fatal[-1])
                else:
                    error = errors[-1][0] if errors else NotFoundError("no sources configured")
                    logger.info(f"{rom.path}, not found")
                    entry = None
                    if self.game_opts.add_not_found and self.renderer is not None:
                        entry = self.renderer.render_not_found(rom)
                    attempt.not_found(error, entry)

        except ScrapeCancelled:
            return None

        return attempt.to_result(pretty_name)

    def _retry_or_fail(self, attempt: RomAttempt, error: BaseException, number: int) -> None:
        if attempt.retry_or_fail(error):
            logger.info(
                f"Retrying {attempt.rom.path} "
                f"(attempt {number + 1}/{self.max_retries + 1})"
            )
        else:
            logger.error(f"Giving up on {attempt.rom.path} after {number} attempts: {error}")
