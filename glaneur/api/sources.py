"""
Identity/lookup sources

A lookup source turns a ROM descriptor into a ``Game`` record. Sources are
consulted in priority order by the pipeline; each either returns a Game or
raises ``NotFoundError`` (definitive absence) or another source error.

Two offline sources are provided, both backed by a YAML game catalog:
``HashSource`` identifies ROMs by the digest of their canonical bytes
(optionally through a CSV hash map) and ``FilenameSource`` by filename.
"""

import asyncio
import csv
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from glaneur.api.error_handler import NotFoundError, SourceError
from glaneur.api.limiter import ResourceLimiter
from glaneur.scanner.errors import HashError
from glaneur.scanner.hasher import Hasher
from glaneur.scanner.rom_types import ROMInfo

logger = logging.getLogger(__name__)


class ImageType(Enum):
    """Image types a source may provide."""
    BOXART = "b"
    BOXART_3D = "3b"
    SCREEN = "s"
    FANART = "f"
    BANNER = "a"
    LOGO = "l"
    TITLE = "t"
    MARQUEE = "m"
    CABINET = "c"
    FLYER = "fly"


class VideoType(Enum):
    """Video types a source may provide."""
    VIDEO = "v"
    NORMALIZED = "vn"


@dataclass(frozen=True)
class MediaLocator:
    """Where a piece of media can be fetched from."""
    url: str
    extension: Optional[str] = None   # e.g. '.png'; guessed from URL when None
    limiter: Optional[ResourceLimiter] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Game:
    """Metadata for one game, as returned by a lookup source."""
    id: str
    title: str
    overview: str = ""
    developer: str = ""
    publisher: str = ""
    genre: str = ""
    release_date: str = ""     # YYYYMMDDT000000
    players: int = 0
    rating: float = 0.0        # 0.0 - 1.0
    images: Dict[ImageType, MediaLocator] = field(default_factory=dict)
    thumbs: Dict[ImageType, MediaLocator] = field(default_factory=dict)
    videos: Dict[VideoType, MediaLocator] = field(default_factory=dict)
    source: str = ""
    clone_of: str = ""


def to_xml_date(value: Any) -> str:
    """
    Convert a catalog date to the gamelist date format.

    Accepts ``YYYY-MM-DD``, ``YYYY`` or an already formatted
    ``YYYYMMDDT000000`` value; anything else yields ''.
    """
    if value is None:
        return ""
    text = str(value).strip()
    if re.fullmatch(r"\d{8}T\d{6}", text):
        return text
    if len(text) == 10:
        try:
            return datetime.strptime(text, "%Y-%m-%d").strftime("%Y%m%dT000000")
        except ValueError:
            return ""
    if len(text) == 4 and text.isdigit():
        return f"{text}0101T000000"
    return ""


class HashMap:
    """
    Mapping of content hash to catalog ID, no-intro name and system.

    Loaded from a CSV file whose rows are ``hash,id,system,name``.
    """

    def __init__(self, data: Optional[Dict[str, Tuple[str, str, str]]] = None):
        self._data = data or {}

    @classmethod
    def from_csv(cls, path: Path) -> 'HashMap':
        """
        Raises:
            SourceError: If the file cannot be read
        """
        data: Dict[str, Tuple[str, str, str]] = {}
        try:
            with open(path, 'r', encoding='utf-8', newline='') as f:
                for row in csv.reader(f):
                    if len(row) < 4 or not row[0]:
                        continue
                    data[row[0].strip().lower()] = (row[1], row[3], row[2])
        except OSError as e:
            raise SourceError(f"Cannot read hash map {path}: {e}") from e
        logger.info(f"Loaded {len(data)} hashes from {path}")
        return cls(data)

    def id(self, digest: str) -> Optional[str]:
        entry = self._data.get(digest.lower())
        return entry[0] if entry and entry[0] else None

    def name(self, digest: str) -> Optional[str]:
        entry = self._data.get(digest.lower())
        return entry[1] if entry and entry[1] else None

    def system(self, digest: str) -> Optional[int]:
        entry = self._data.get(digest.lower())
        if not entry or not entry[2]:
            return None
        try:
            return int(entry[2])
        except ValueError:
            return None

    def __len__(self) -> int:
        return len(self._data)


def _normalize_name(name: str) -> str:
    """Lower-case a title/filename and drop tags in brackets and punctuation."""
    name = re.sub(r"[\(\[][^\)\]]*[\)\]]", "", name)
    return re.sub(r"[^a-z0-9]+", " ", name.lower()).strip()


class Catalog:
    """
    Offline game catalog.

    YAML layout::

        games:
          - id: "101"
            title: Super Mario Bros.
            players: 2
            hashes: [811b027eaf99c2def7b933c5208636de7417d4f4]
            files: [Super Mario Bros. (World)]
            images: {b: https://example.org/101/box.png}
            videos: {v: https://example.org/101/video.mp4}
    """

    def __init__(self, games: Optional[List[Game]] = None,
                 hashes: Optional[Dict[str, str]] = None,
                 files: Optional[Dict[str, str]] = None):
        self.games: Dict[str, Game] = {g.id: g for g in (games or [])}
        self.hashes: Dict[str, str] = {k.lower(): v for k, v in (hashes or {}).items()}
        self.files: Dict[str, str] = dict(files or {})
        self._titles: Dict[str, str] = {
            _normalize_name(g.title): g.id for g in self.games.values() if g.title
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: str = "catalog",
                  provider_limiter: Optional[ResourceLimiter] = None) -> 'Catalog':
        """
        Build a catalog from parsed YAML.

        Args:
            data: Mapping with a ``games`` list
            source: Provenance name stored on every Game
            provider_limiter: Limiter every media locator must hold while fetching

        Raises:
            SourceError: If an entry is malformed
        """
        games: List[Game] = []
        hashes: Dict[str, str] = {}
        files: Dict[str, str] = {}

        for index, entry in enumerate((data or {}).get('games') or []):
            if not isinstance(entry, dict) or 'id' not in entry:
                raise SourceError(f"catalog entry {index} has no id")
            game_id = str(entry['id'])
            try:
                game = Game(
                    id=game_id,
                    title=str(entry.get('title', '')),
                    overview=str(entry.get('overview', '')),
                    developer=str(entry.get('developer', '')),
                    publisher=str(entry.get('publisher', '')),
                    genre=str(entry.get('genre', '')),
                    release_date=to_xml_date(entry.get('release_date')),
                    players=int(entry.get('players', 0) or 0),
                    rating=float(entry.get('rating', 0.0) or 0.0),
                    images=cls._locators(entry.get('images'), ImageType, provider_limiter),
                    thumbs=cls._locators(entry.get('thumbs'), ImageType, provider_limiter),
                    videos=cls._locators(entry.get('videos'), VideoType, provider_limiter),
                    source=str(entry.get('source', source)),
                    clone_of=str(entry.get('clone_of', '')),
                )
            except (TypeError, ValueError) as e:
                raise SourceError(f"catalog entry {game_id}: {e}") from e
            games.append(game)
            for digest in entry.get('hashes') or []:
                hashes[str(digest).lower()] = game_id
            for name in entry.get('files') or []:
                files[_normalize_name(str(name))] = game_id

        return cls(games, hashes, files)

    @staticmethod
    def _locators(raw, kind, limiter) -> Dict[Any, MediaLocator]:
        locators = {}
        for code, value in (raw or {}).items():
            media_type = kind(str(code))
            if isinstance(value, dict):
                locators[media_type] = MediaLocator(
                    url=value['url'], extension=value.get('extension'), limiter=limiter
                )
            else:
                locators[media_type] = MediaLocator(url=str(value), limiter=limiter)
        return locators

    def by_id(self, game_id: str) -> Optional[Game]:
        return self.games.get(game_id)

    def id_for_hash(self, digest: str) -> Optional[str]:
        return self.hashes.get(digest.lower())

    def id_for_name(self, name: str) -> Optional[str]:
        key = _normalize_name(name)
        return self.files.get(key) or self._titles.get(key)


def load_catalog(path: Path, source: str = "catalog",
                 provider_limiter: Optional[ResourceLimiter] = None) -> Catalog:
    """
    Load a YAML game catalog.

    Raises:
        SourceError: If the file is missing or not valid YAML
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise SourceError(f"Cannot read catalog {path}: {e}") from e
    except yaml.YAMLError as e:
        raise SourceError(f"Invalid YAML in catalog {path}: {e}") from e

    if not isinstance(data, dict):
        raise SourceError(f"Catalog {path} must contain a mapping")

    catalog = Catalog.from_dict(data, source=source, provider_limiter=provider_limiter)
    logger.info(f"Loaded {len(catalog.games)} games from {path}")
    return catalog


class LookupSource(ABC):
    """
    Base class for lookup sources.

    Subclasses implement :meth:`lookup`. When a provider limiter is set,
    every lookup holds one of its tokens.
    """

    name = "source"

    def __init__(self, limiter: Optional[ResourceLimiter] = None):
        self.limiter = limiter

    async def get_name(self, rom: ROMInfo) -> str:
        """Pretty display name for ``rom``, or '' when this source has none."""
        return ""

    async def get_game(self, rom: ROMInfo,
                       shutdown_event: Optional[asyncio.Event] = None) -> Game:
        """
        Look up ``rom``.

        Raises:
            NotFoundError: The source does not know this ROM
            SourceError: Any other lookup failure
            ScrapeCancelled: Shutdown while waiting for the provider limiter
        """
        if self.limiter is None:
            return await self.lookup(rom)
        async with self.limiter.slot(shutdown_event):
            return await self.lookup(rom)

    @abstractmethod
    async def lookup(self, rom: ROMInfo) -> Game:
        ...


class HashSource(LookupSource):
    """Identifies ROMs by the digest of their canonical bytes."""

    name = "hash"

    def __init__(self, hasher: Hasher, catalog: Catalog,
                 hash_map: Optional[HashMap] = None,
                 limiter: Optional[ResourceLimiter] = None):
        super().__init__(limiter)
        self.hasher = hasher
        self.catalog = catalog
        self.hash_map = hash_map or HashMap()

    async def hash(self, rom: ROMInfo) -> str:
        return await asyncio.to_thread(self.hasher.hash, rom.path)

    async def get_name(self, rom: ROMInfo) -> str:
        try:
            digest = await self.hash(rom)
        except HashError:
            return ""
        return self.hash_map.name(digest) or ""

    async def get_game(self, rom: ROMInfo,
                       shutdown_event: Optional[asyncio.Event] = None) -> Game:
        """
        Hash ``rom``, then look the digest up.

        Only the catalog lookup holds a provider token; hashing is local work
        and runs before the limiter is entered.
        """
        digest = await self.hash(rom)
        if self.limiter is None:
            return self.resolve(digest)
        async with self.limiter.slot(shutdown_event):
            return self.resolve(digest)

    async def lookup(self, rom: ROMInfo) -> Game:
        return self.resolve(await self.hash(rom))

    def resolve(self, digest: str) -> Game:
        game_id = self.hash_map.id(digest) or self.catalog.id_for_hash(digest)
        if game_id is None:
            raise NotFoundError(f"hash not found: {digest}")
        game = self.catalog.by_id(game_id)
        if game is None:
            raise NotFoundError(f"no game with id {game_id} for hash {digest}")
        return game


class FilenameSource(LookupSource):
    """Identifies ROMs by their filename (tags in brackets are ignored)."""

    name = "filename"

    def __init__(self, catalog: Catalog, limiter: Optional[ResourceLimiter] = None):
        super().__init__(limiter)
        self.catalog = catalog

    async def lookup(self, rom: ROMInfo) -> Game:
        game_id = self.catalog.id_for_name(rom.basename)
        if game_id is None:
            raise NotFoundError(f"no catalog entry named {rom.basename}")
        game = self.catalog.by_id(game_id)
        if game is None:
            raise NotFoundError(f"no game with id {game_id}")
        return game
