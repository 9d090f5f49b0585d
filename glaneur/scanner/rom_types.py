"""ROM type definitions and data structures."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

from glaneur.scanner.cue_parser import parse_cue, parse_gdi

MULTI_FILE_EXTENSIONS = ('.cue', '.gdi')


@dataclass(frozen=True)
class ROMInfo:
    """
    Descriptor of one ROM found by the filesystem walk.

    This is the primary data structure passed through the scraping pipeline.
    It is immutable; results carry it alongside their own state.
    """
    path: Path                      # Absolute path to ROM file
    directory: Path                 # Parent directory
    basename: str                   # Filename without extension (media names)
    extension: str                  # Lower-case extension with leading dot
    bins: Tuple[Path, ...] = ()     # Track files referenced by a .cue/.gdi
    multi_file: bool = False        # True for .cue/.gdi sheets

    @classmethod
    def from_path(cls, path) -> 'ROMInfo':
        """
        Build a descriptor, parsing track lists of multi-file formats.

        Raises:
            CueError: If a cue/gdi sheet cannot be read
        """
        path = Path(os.path.abspath(path))
        extension = path.suffix.lower()
        bins: Tuple[Path, ...] = ()
        multi_file = extension in MULTI_FILE_EXTENSIONS
        if extension == '.cue':
            bins = tuple(parse_cue(path))
        elif extension == '.gdi':
            bins = tuple(parse_gdi(path))
        return cls(
            path=path,
            directory=path.parent,
            basename=path.stem,
            extension=extension,
            bins=bins,
            multi_file=multi_file,
        )

    @property
    def filename(self) -> str:
        return self.path.name

    def get_gamelist_path(self, rom_dir: Path) -> str:
        """
        Get the path to use in the gamelist <path> element.

        Args:
            rom_dir: ROM root the gamelist paths are relative to

        Returns:
            './'-prefixed relative path, or the absolute path when the ROM
            lives outside ``rom_dir``
        """
        try:
            rel = self.path.relative_to(Path(os.path.abspath(rom_dir)))
        except ValueError:
            return str(self.path)
        return f"./{rel.as_posix()}"
