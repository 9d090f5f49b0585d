"""Main ROM scanner implementation."""

import logging
import os
from pathlib import Path
from typing import Collection, Iterator, Optional, Set

from glaneur.scanner.cue_parser import CueError
from glaneur.scanner.formats import DecoderRegistry
from glaneur.scanner.rom_types import ROMInfo

logger = logging.getLogger(__name__)


class ScannerError(Exception):
    """ROM scanning errors."""
    pass


def _is_hidden(name: str) -> bool:
    return name.startswith('.') and name not in ('.', '..')


def _walk_files(rom_dir: Path) -> Iterator[Path]:
    """Yield every non-hidden file below ``rom_dir`` in a stable order."""
    def on_error(e: OSError) -> None:
        logger.error(f"Processing: {e.filename}, {e}")

    for root, dirs, files in os.walk(rom_dir, onerror=on_error):
        dirs[:] = sorted(d for d in dirs if not _is_hidden(d))
        for name in sorted(files):
            if _is_hidden(name):
                continue
            yield Path(root) / name


def iter_roms(
    rom_dir: Path,
    registry: DecoderRegistry,
    skip_paths: Optional[Collection[Path]] = None
) -> Iterator[ROMInfo]:
    """
    Walk a ROM directory lazily, yielding a descriptor for every candidate ROM.

    Multi-file sheets (.cue/.gdi) are collected first; the track files they
    reference are then excluded from the second pass so that a disc is
    scraped once, through its sheet.

    Args:
        rom_dir: ROM root directory
        registry: Decoder registry deciding which extensions are ROMs
        skip_paths: Absolute paths already present in the gamelist

    Returns:
        Iterator of ROMInfo objects in walk order, sheets first

    Raises:
        ScannerError: If ``rom_dir`` is not a directory (raised on call,
            before the walk starts)
    """
    rom_dir = Path(os.path.abspath(rom_dir))
    if not rom_dir.is_dir():
        raise ScannerError(f"ROM path is not a directory: {rom_dir}")

    skip: Set[Path] = {Path(os.path.abspath(p)) for p in (skip_paths or ())}
    return _walk_roms(rom_dir, registry, skip)


def _walk_roms(rom_dir: Path, registry: DecoderRegistry, skip: Set[Path]) -> Iterator[ROMInfo]:
    claimed: Set[Path] = set()
    found = 0

    for path in _walk_files(rom_dir):
        if path.suffix.lower() not in ('.cue', '.gdi'):
            continue
        try:
            rom = ROMInfo.from_path(path)
        except CueError as e:
            logger.error(f"Processing: {path}, {e}")
            continue
        claimed.update(rom.bins)
        claimed.add(rom.path)
        if rom.path in skip:
            logger.info(f"Skipping {rom.path}, already in gamelist.")
            continue
        found += 1
        yield rom

    for path in _walk_files(rom_dir):
        rom_path = Path(os.path.abspath(path))
        if rom_path in claimed or rom_path.suffix.lower() in ('.cue', '.gdi'):
            continue
        if not registry.is_known_extension(rom_path.suffix):
            continue
        if rom_path in skip:
            logger.info(f"Skipping {rom_path}, already in gamelist.")
            continue
        found += 1
        yield ROMInfo.from_path(rom_path)

    logger.info(f"Scan complete: {found} ROMs found in {rom_dir}")
