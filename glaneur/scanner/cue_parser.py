"""Cue sheet and GDI track list parsing."""

import shlex
from pathlib import Path
from typing import List


class CueError(Exception):
    """Cue/GDI parsing errors."""
    pass


def parse_cue(cue_path: Path) -> List[Path]:
    """
    Parse a cue sheet and return the track files it references.

    Args:
        cue_path: Path to .cue file

    Returns:
        Absolute paths of every FILE entry, in sheet order

    Raises:
        CueError: If the sheet cannot be read
    """
    cue_dir = cue_path.parent
    files = []

    try:
        with open(cue_path, 'r', encoding='utf-8', errors='ignore') as f:
            for line in f:
                line = line.strip()
                if not line.upper().startswith('FILE '):
                    continue
                # FILE "Track 01.bin" BINARY
                try:
                    parts = shlex.split(line[5:], posix=True)
                except ValueError:
                    parts = line[5:].rsplit(' ', 1)[:1]
                if not parts:
                    continue
                files.append(_resolve(cue_dir, parts[0]))
    except OSError as e:
        raise CueError(f"Failed to read cue sheet: {e}")

    return files


def parse_gdi(gdi_path: Path) -> List[Path]:
    """
    Parse a GD-ROM track list and return the track files it references.

    The first line holds the track count; each following line is
    ``number lba type sector_size filename offset``.

    Raises:
        CueError: If the file cannot be read
    """
    gdi_dir = gdi_path.parent
    files = []

    try:
        with open(gdi_path, 'r', encoding='utf-8', errors='ignore') as f:
            lines = f.read().splitlines()
    except OSError as e:
        raise CueError(f"Failed to read gdi file: {e}")

    for line in lines[1:]:
        line = line.strip()
        if not line:
            continue
        try:
            parts = shlex.split(line, posix=True)
        except ValueError:
            parts = line.split()
        if len(parts) < 5:
            continue
        files.append(_resolve(gdi_dir, parts[4]))

    return files


def _resolve(base: Path, name: str) -> Path:
    track = Path(name)
    if not track.is_absolute():
        track = base / track
    return Path(track.absolute())
