"""
Media fetcher with validation.

Downloads the artwork and videos a Game offers, validates images with
Pillow and stores them next to each other under predictable names.
"""

import asyncio
import logging
import os
from contextlib import AsyncExitStack
from io import BytesIO
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, Optional, Tuple
from urllib.parse import urlparse

import httpx
from PIL import Image

from glaneur.api.error_handler import TransientSourceError
from glaneur.api.limiter import ResourceLimiter
from glaneur.api.sources import Game, ImageType, MediaLocator, VideoType
from glaneur.scanner.rom_types import ROMInfo

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_TYPES = (ImageType.BOXART, ImageType.SCREEN, ImageType.TITLE)
DEFAULT_VIDEO_TYPES = (VideoType.VIDEO, VideoType.NORMALIZED)


def validate_image_data(
    image_data: bytes,
    min_width: int = 1,
    min_height: int = 1
) -> Tuple[bool, Optional[str]]:
    """
    Validate image data using Pillow.

    Args:
        image_data: Raw image bytes
        min_width: Minimum acceptable width in pixels
        min_height: Minimum acceptable height in pixels

    Returns:
        Tuple of (is_valid: bool, error_message: str or None)
    """
    try:
        img = Image.open(BytesIO(image_data))
        img.verify()

        # verify() invalidates the image; reopen for dimensions
        img = Image.open(BytesIO(image_data))
        width, height = img.size
        if width < min_width or height < min_height:
            return False, (
                f"Image too small: {width}x{height} "
                f"(minimum: {min_width}x{min_height})"
            )
        return True, None
    except Exception as e:
        return False, f"Invalid image: {e}"


def _write_atomic(output_path: Path, data: bytes) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = output_path.with_suffix(output_path.suffix + '.tmp')
    try:
        with open(temp_path, 'wb') as f:
            f.write(data)
        os.replace(temp_path, output_path)
    except OSError:
        if temp_path.exists():
            temp_path.unlink()
        raise


def _guess_extension(locator: MediaLocator, default: str) -> str:
    if locator.extension:
        ext = locator.extension.lower()
        return ext if ext.startswith('.') else f".{ext}"
    suffix = PurePosixPath(urlparse(locator.url).path).suffix.lower()
    return suffix or default


class MediaFetcher:
    """
    Fetches media for scraped games.

    An existing non-empty file with the target name is reused without any
    request. Downloads hold the image limiter and, when the locator carries
    one, the provider limiter.

    Example:
        fetcher = MediaFetcher(client, Path('roms/images'), './images',
                               image_limiter=ResourceLimiter(4, 'images'))
        paths = await fetcher.fetch_for_game(rom, game, shutdown_event)
        # {'image': './images/mario-image.png'}
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        media_dir: Path,
        media_xml_dir: str = "./images",
        image_limiter: Optional[ResourceLimiter] = None,
        image_types: Optional[Iterable[ImageType]] = None,
        thumb_only: bool = False,
        image_suffix: str = "-image",
        thumb_suffix: str = "-thumb",
        add_thumbnails: bool = False,
        download: bool = True,
        download_videos: bool = False,
        video_types: Optional[Iterable[VideoType]] = None,
        video_suffix: str = "-video",
        validate: bool = True,
    ):
        self.client = client
        self.media_dir = Path(media_dir)
        self.media_xml_dir = media_xml_dir.rstrip('/') or '.'
        self.image_limiter = image_limiter or ResourceLimiter(1, name='images')
        self.image_types = list(image_types or DEFAULT_IMAGE_TYPES)
        self.thumb_only = thumb_only
        self.image_suffix = image_suffix
        self.thumb_suffix = thumb_suffix
        self.add_thumbnails = add_thumbnails
        self.download = download
        self.download_videos = download_videos
        self.video_types = list(video_types or DEFAULT_VIDEO_TYPES)
        self.video_suffix = video_suffix
        self.validate = validate

    def select_image(self, game: Game) -> Optional[MediaLocator]:
        """First image in priority order; thumbnails win when thumb_only is set."""
        for image_type in self.image_types:
            if self.thumb_only and image_type in game.thumbs:
                return game.thumbs[image_type]
            if image_type in game.images:
                return game.images[image_type]
            if image_type in game.thumbs:
                return game.thumbs[image_type]
        return None

    def select_thumbnail(self, game: Game) -> Optional[MediaLocator]:
        for image_type in self.image_types:
            if image_type in game.thumbs:
                return game.thumbs[image_type]
        return None

    def select_video(self, game: Game) -> Optional[MediaLocator]:
        for video_type in self.video_types:
            if video_type in game.videos:
                return game.videos[video_type]
        return None

    async def fetch_for_game(
        self,
        rom: ROMInfo,
        game: Game,
        shutdown_event: Optional[asyncio.Event] = None
    ) -> Dict[str, str]:
        """
        Fetch the media of ``game`` for ``rom``.

        Returns:
            Gamelist paths keyed by 'image', 'thumbnail' and 'video'; keys
            without media are left out

        Raises:
            TransientSourceError: Download or validation failure
            ScrapeCancelled: Shutdown while waiting for a limiter
        """
        paths: Dict[str, str] = {}

        locator = self.select_image(game)
        if locator is not None:
            path = await self._fetch(locator, rom.basename + self.image_suffix,
                                     '.jpg', True, shutdown_event)
            if path:
                paths['image'] = path

        if self.add_thumbnails:
            locator = self.select_thumbnail(game)
            if locator is not None:
                path = await self._fetch(locator, rom.basename + self.thumb_suffix,
                                         '.jpg', True, shutdown_event)
                if path:
                    paths['thumbnail'] = path

        if self.download_videos:
            locator = self.select_video(game)
            if locator is not None:
                path = await self._fetch(locator, rom.basename + self.video_suffix,
                                         '.mp4', False, shutdown_event)
                if path:
                    paths['video'] = path

        return paths

    def _xml_path(self, target: Path) -> str:
        return f"{self.media_xml_dir}/{target.name}"

    async def _fetch(
        self,
        locator: MediaLocator,
        stem: str,
        default_ext: str,
        is_image: bool,
        shutdown_event: Optional[asyncio.Event]
    ) -> Optional[str]:
        target = self.media_dir / f"{stem}{_guess_extension(locator, default_ext)}"

        if target.exists() and target.stat().st_size > 0:
            logger.debug(f"Reusing existing media {target}")
            return self._xml_path(target)

        if not self.download:
            return None

        async with AsyncExitStack() as stack:
            await stack.enter_async_context(self.image_limiter.slot(shutdown_event))
            if locator.limiter is not None:
                await stack.enter_async_context(locator.limiter.slot(shutdown_event))

            data = await self._download(locator.url)
            if data is None:
                return None

            if is_image and self.validate:
                is_valid, error = await asyncio.to_thread(validate_image_data, data)
                if not is_valid:
                    raise TransientSourceError(f"{locator.url}: {error}")

            await asyncio.to_thread(_write_atomic, target, data)

        logger.debug(f"Saved {locator.url} to {target}")
        return self._xml_path(target)

    async def _download(self, url: str) -> Optional[bytes]:
        """
        Download media bytes.

        Returns:
            Response body, or None when the server answers 404
        """
        try:
            response = await self.client.get(url)
        except httpx.HTTPError as e:
            raise TransientSourceError(f"Download failed for {url}: {e}") from e

        if response.status_code == 404:
            logger.info(f"Media not found: {url}")
            return None
        if response.status_code != 200:
            raise TransientSourceError(f"HTTP {response.status_code} from {url}")
        return response.content
