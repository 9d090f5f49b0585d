"""
Scrape orchestration

Coordinates one complete run over a ROM directory:
1. Read the existing gamelist and scan ROMs
2. Identify each ROM through the configured lookup sources
3. Fetch media for found games
4. Write the gamelist and the missing report
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from glaneur.api.connection_pool import ConnectionPoolManager
from glaneur.api.limiter import ResourceLimiter, determine_max_threads
from glaneur.api.sources import (
    Catalog,
    FilenameSource,
    HashMap,
    HashSource,
    ImageType,
    LookupSource,
    VideoType,
    load_catalog,
)
from glaneur.gamelist.game_entry import GameEntry
from glaneur.gamelist.parser import read_gamelist
from glaneur.gamelist.xml_writer import write_gamelist
from glaneur.media.downloader import MediaFetcher
from glaneur.scanner.formats import MagicPolicy, default_registry
from glaneur.scanner.hasher import Hasher
from glaneur.scanner.rom_scanner import iter_roms
from glaneur.workflow.aggregator import Aggregator, OutputMode
from glaneur.workflow.pipeline import EntryRenderer, GameOptions, Pipeline, RunStatus
from glaneur.workflow.progress import MissingReport

logger = logging.getLogger(__name__)


@dataclass
class ScrapeSummary:
    """Outcome of one scrape run."""
    status: RunStatus
    total_roms: int = 0
    succeeded: int = 0
    failed: int = 0
    not_found: int = 0
    cancelled_in_flight: int = 0
    discarded: int = 0
    gamelist_entries: int = 0
    gamelist_path: Optional[Path] = None
    missing_path: Optional[Path] = None
    missing_rows: int = 0
    hasher_stats: Dict[str, int] = field(default_factory=dict)

    @property
    def cancelled(self) -> bool:
        return self.status is RunStatus.CANCELLED


def resolve_paths(config: Dict[str, Any]) -> Dict[str, Optional[Path]]:
    """Turn the ``paths`` section into absolute paths with defaults applied."""
    paths = config['paths']
    rom_dir = Path(os.path.abspath(Path(paths['roms']).expanduser()))

    def optional(key: str) -> Optional[Path]:
        value = paths.get(key)
        return Path(value).expanduser() if value else None

    return {
        'roms': rom_dir,
        'gamelist': optional('gamelist') or rom_dir / 'gamelist.xml',
        'media': optional('media') or rom_dir / 'images',
        'missing': optional('missing'),
        'hash_map': optional('hash_map'),
        'catalog': optional('catalog'),
    }


def _existing_paths(entries: List[GameEntry], rom_dir: Path) -> Set[Path]:
    """Absolute ROM paths already present in a gamelist."""
    paths = set()
    for entry in entries:
        if not entry.path:
            continue
        paths.add(Path(os.path.abspath(rom_dir / entry.path)))
    return paths


def build_sources(
    names: List[str],
    hasher: Hasher,
    catalog: Catalog,
    hash_map: Optional[HashMap] = None,
    limiter: Optional[ResourceLimiter] = None
) -> List[LookupSource]:
    """
    Build lookup sources in priority order.

    Raises:
        ValueError: If a source name is unknown
    """
    sources: List[LookupSource] = []
    for name in names:
        if name == HashSource.name:
            sources.append(HashSource(hasher, catalog, hash_map, limiter=limiter))
        elif name == FilenameSource.name:
            sources.append(FilenameSource(catalog, limiter=limiter))
        else:
            raise ValueError(f"Unknown lookup source: {name}")
    return sources


async def scrape(
    config: Dict[str, Any],
    shutdown_event: Optional[asyncio.Event] = None
) -> ScrapeSummary:
    """
    Run one scrape over ``config['paths']['roms']``.

    Args:
        config: Validated configuration with defaults applied
        shutdown_event: Setting it stops the run; completed results are
            still written

    Returns:
        ScrapeSummary

    Raises:
        ScannerError: If the ROM directory cannot be walked
        SourceError: If the hash map or catalog cannot be loaded
    """
    if shutdown_event is None:
        shutdown_event = asyncio.Event()

    paths = resolve_paths(config)
    scraping = config['scraping']
    hashing = config['hashing']
    media = config['media']
    workers = scraping['workers']

    registry = default_registry(
        magic_policy=MagicPolicy(hashing['magic_policy']),
        extra_extensions=hashing.get('extra_extensions') or None,
    )
    hasher = Hasher(
        registry=registry,
        algorithm=hashing['algorithm'],
        cache_size=hashing['cache_size'],
        workers=workers,
        buffer_size=hashing['buffer_size'],
    )

    hash_map = None
    if paths['hash_map'] is not None:
        hash_map = await asyncio.to_thread(HashMap.from_csv, paths['hash_map'])

    provider_limits = None
    if scraping.get('provider_maxthreads') is not None:
        provider_limits = {'maxthreads': scraping['provider_maxthreads']}
    provider_limiter = ResourceLimiter(
        determine_max_threads(provider_limits, scraping.get('provider_threads')),
        name='provider',
    )

    if paths['catalog'] is not None:
        catalog = await asyncio.to_thread(
            load_catalog, paths['catalog'], 'catalog', provider_limiter
        )
    else:
        logger.warning("No catalog configured, every ROM will be reported as not found")
        catalog = Catalog()

    sources = build_sources(scraping['sources'], hasher, catalog, hash_map, provider_limiter)
    logger.info(f"Lookup sources: {', '.join(s.name for s in sources) or 'none'}")

    mode = OutputMode(scraping['mode'])
    existing = await asyncio.to_thread(read_gamelist, paths['gamelist'])
    skip_paths = _existing_paths(existing, paths['roms']) if mode is OutputMode.NEW_ONLY else None

    roms = iter_roms(paths['roms'], registry, skip_paths)

    image_workers = scraping.get('image_workers') or workers
    image_limiter = ResourceLimiter(image_workers, name='images')
    pool = ConnectionPoolManager(
        max_connections=image_workers + 1,
        timeout=media['request_timeout'],
    )

    game_opts = GameOptions(
        add_not_found=scraping['add_not_found'],
        use_pretty_name=scraping['use_pretty_name'],
        use_filename=scraping['use_filename'],
        overview_length=scraping['overview_length'],
    )
    report = MissingReport(hasher=hasher, hash_map=hash_map)
    aggregator = Aggregator(existing, mode, report)

    try:
        client = await pool.get_client()
        fetcher = MediaFetcher(
            client,
            paths['media'],
            media_xml_dir=config['paths'].get('media_xml') or './images',
            image_limiter=image_limiter,
            image_types=[ImageType(t) for t in media['image_types']],
            thumb_only=media['thumb_only'],
            image_suffix=media['image_suffix'],
            thumb_suffix=media['thumb_suffix'],
            add_thumbnails=media['add_thumbnails'],
            download=media['download'],
            download_videos=media['download_videos'],
            video_types=[VideoType(t) for t in media['video_types']],
            video_suffix=media['video_suffix'],
        )
        renderer = EntryRenderer(paths['roms'], fetcher, game_opts)
        pipeline = Pipeline(
            sources,
            workers=workers,
            max_retries=scraping['max_retries'],
            renderer=renderer,
            aggregator=aggregator,
            game_opts=game_opts,
        )
        outcome = await pipeline.run(roms, shutdown_event)
    finally:
        await pool.close_client()

    entries = aggregator.entries
    if entries:
        await asyncio.to_thread(write_gamelist, entries, paths['gamelist'])
    else:
        logger.info("Gamelist is empty, not writing it")

    if paths['missing'] is not None:
        await asyncio.to_thread(report.write, paths['missing'])

    stats = outcome.stats
    summary = ScrapeSummary(
        status=outcome.status,
        total_roms=stats.get('enqueued', 0),
        succeeded=stats.get('succeeded', 0),
        failed=stats.get('failed', 0),
        not_found=stats.get('not_found', 0),
        cancelled_in_flight=stats.get('cancelled_in_flight', 0),
        discarded=stats.get('discarded', 0),
        gamelist_entries=len(entries),
        gamelist_path=paths['gamelist'] if entries else None,
        missing_path=paths['missing'],
        missing_rows=len(report.rows),
        hasher_stats=hasher.stats(),
    )
    logger.info(
        f"Scrape {summary.status.value}: {summary.succeeded} succeeded, "
        f"{summary.failed} failed, {summary.not_found} not found"
    )
    return summary
