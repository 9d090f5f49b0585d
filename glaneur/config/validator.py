"""Configuration validation."""

import logging
from pathlib import Path
from typing import Dict, Any, List

from glaneur.api.sources import ImageType, VideoType
from glaneur.scanner.formats import MagicPolicy
from glaneur.scanner.hasher import SUPPORTED_ALGORITHMS

logger = logging.getLogger(__name__)

VALID_MODES = ['new_only', 'refresh', 'overwrite']
VALID_SOURCES = ['hash', 'filename']


class ValidationError(Exception):
    """Configuration validation errors."""
    pass


def validate_config(config: Dict[str, Any]) -> None:
    """
    Validate configuration structure and values.

    Args:
        config: Configuration dictionary from loader

    Raises:
        ValidationError: If configuration is invalid
    """
    errors = []

    # Validate paths section
    errors.extend(_validate_paths(config.get('paths', {})))

    # Validate scraping section
    errors.extend(_validate_scraping(config.get('scraping', {})))

    # Validate hashing section
    errors.extend(_validate_hashing(config.get('hashing', {})))

    # Validate media section
    errors.extend(_validate_media(config.get('media', {})))

    # Validate logging section
    errors.extend(_validate_logging(config.get('logging', {})))

    if errors:
        raise ValidationError(
            "Configuration validation failed:\n  - " + "\n  - ".join(errors)
        )


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _validate_paths(section: Dict[str, Any]) -> List[str]:
    """Validate paths section."""
    errors = []

    roms = section.get('roms')
    if not roms:
        errors.append("paths.roms is required")
    else:
        path = Path(roms).expanduser()
        if not path.exists():
            errors.append(f"paths.roms directory not found: {path}")
        elif not path.is_dir():
            errors.append(f"paths.roms must be a directory: {path}")

    for key in ('gamelist', 'media', 'media_xml', 'missing'):
        value = section.get(key)
        if value is not None and not isinstance(value, str):
            errors.append(f"paths.{key} must be a string path or null")

    # Input files must exist when given
    for key in ('hash_map', 'catalog'):
        value = section.get(key)
        if value is None:
            continue
        if not isinstance(value, str):
            errors.append(f"paths.{key} must be a string path or null")
        elif not Path(value).expanduser().is_file():
            errors.append(f"paths.{key} file not found: {value}")

    return errors


def _validate_scraping(section: Dict[str, Any]) -> List[str]:
    """Validate scraping options section."""
    errors = []

    workers = section.get('workers', 1)
    if not _is_int(workers) or workers < 1:
        errors.append("scraping.workers must be a positive integer")

    retries = section.get('max_retries', 0)
    if not _is_int(retries) or retries < 0:
        errors.append("scraping.max_retries must be a non-negative integer")

    image_workers = section.get('image_workers', 0)
    if not _is_int(image_workers) or image_workers < 0:
        errors.append("scraping.image_workers must be a non-negative integer")

    mode = section.get('mode', 'new_only')
    if mode not in VALID_MODES:
        errors.append(f"scraping.mode must be one of: {', '.join(VALID_MODES)}")

    for flag in ('add_not_found', 'use_pretty_name', 'use_filename'):
        if flag in section and not isinstance(section[flag], bool):
            errors.append(f"scraping.{flag} must be a boolean")

    length = section.get('overview_length', 0)
    if not _is_int(length) or length < 0:
        errors.append("scraping.overview_length must be a non-negative integer")

    sources = section.get('sources', VALID_SOURCES)
    if not isinstance(sources, list):
        errors.append("scraping.sources must be a list")
    else:
        for source in sources:
            if source not in VALID_SOURCES:
                errors.append(f"Invalid source: {source}")
        if len(set(sources)) != len(sources):
            errors.append("scraping.sources must not contain duplicates")

    for key in ('provider_maxthreads', 'provider_threads'):
        value = section.get(key)
        if value is not None and (not _is_int(value) or value < 1):
            errors.append(f"scraping.{key} must be a positive integer or null")

    return errors


def _validate_hashing(section: Dict[str, Any]) -> List[str]:
    """Validate hashing options section."""
    errors = []

    algorithm = section.get('algorithm', 'sha1')
    if algorithm not in SUPPORTED_ALGORITHMS:
        errors.append(
            f"hashing.algorithm must be one of: {', '.join(SUPPORTED_ALGORITHMS)}"
        )

    cache_size = section.get('cache_size', 500)
    if not _is_int(cache_size) or cache_size < 1:
        errors.append("hashing.cache_size must be a positive integer")

    buffer_size = section.get('buffer_size', 1024 * 1024)
    if not _is_int(buffer_size) or buffer_size < 1:
        errors.append("hashing.buffer_size must be a positive integer")

    extra = section.get('extra_extensions', [])
    if not isinstance(extra, list):
        errors.append("hashing.extra_extensions must be a list")
    elif any(not isinstance(e, str) or not e.strip('.') for e in extra):
        errors.append("hashing.extra_extensions entries must be non-empty strings")

    policy = section.get('magic_policy', 'lenient')
    valid_policies = [p.value for p in MagicPolicy]
    if policy not in valid_policies:
        errors.append(
            f"hashing.magic_policy must be one of: {', '.join(valid_policies)}"
        )

    return errors


def _validate_media(section: Dict[str, Any]) -> List[str]:
    """Validate media options section."""
    errors = []

    for flag in ('download', 'thumb_only', 'add_thumbnails', 'download_videos'):
        if flag in section and not isinstance(section[flag], bool):
            errors.append(f"media.{flag} must be a boolean")

    # Empty list is valid - means no images, only gamelist updates
    image_types = section.get('image_types', [])
    if not isinstance(image_types, list):
        errors.append("media.image_types must be a list")
    else:
        valid_types = {t.value for t in ImageType}
        for image_type in image_types:
            if image_type not in valid_types:
                errors.append(f"Invalid image type: {image_type}")

    video_types = section.get('video_types', [])
    if not isinstance(video_types, list):
        errors.append("media.video_types must be a list")
    else:
        valid_types = {t.value for t in VideoType}
        for video_type in video_types:
            if video_type not in valid_types:
                errors.append(f"Invalid video type: {video_type}")

    for key in ('image_suffix', 'thumb_suffix', 'video_suffix'):
        if key in section and not isinstance(section[key], str):
            errors.append(f"media.{key} must be a string")

    timeout = section.get('request_timeout', 30)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        errors.append("media.request_timeout must be a positive number")

    return errors


def _validate_logging(section: Dict[str, Any]) -> List[str]:
    """Validate logging options section."""
    errors = []

    # Validate level
    level = section.get('level', 'INFO')
    valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR']
    if level not in valid_levels:
        errors.append(f"logging.level must be one of: {', '.join(valid_levels)}")

    # Validate console flag
    console = section.get('console', True)
    if not isinstance(console, bool):
        errors.append("logging.console must be a boolean")

    # Validate optional log file
    if 'file' in section and section['file'] is not None:
        if not isinstance(section['file'], str):
            errors.append("logging.file must be a string path or null")

    return errors
