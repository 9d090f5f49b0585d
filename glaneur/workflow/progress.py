"""
Missing/failed ROM report.

Collects one row per ROM that did not make it into the gamelist (and per
track file of multi-file ROMs) and writes them as CSV.
"""

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from glaneur.api.error_handler import NotFoundError
from glaneur.api.sources import HashMap
from glaneur.scanner.errors import HashError
from glaneur.scanner.hasher import Hasher
from glaneur.scanner.rom_types import ROMInfo

logger = logging.getLogger(__name__)

MISSING_HEADER = ["Game", "Error", "Hash", "Extra"]
EXTRA_MISSING_IMAGE = "missing image"
EXTRA_HASH_WITHOUT_ID = "hash found but no ID"


@dataclass
class MissingRow:
    """One line of the missing report."""
    game: str
    error: str
    hash: str = ""
    extra: str = ""

    def as_list(self) -> List[str]:
        return [self.game, self.error, self.hash, self.extra]


class MissingReport:
    """
    Side channel for ROMs that failed or were not found.

    Rows are kept in memory and written with :meth:`write`. When a hasher
    is available each row carries the content hash of the file.
    """

    def __init__(self, hasher: Optional[Hasher] = None, hash_map: Optional[HashMap] = None):
        """
        Args:
            hasher: Used to fill the Hash column
            hash_map: Used to flag hashes known by name but without an ID
        """
        self.hasher = hasher
        self.hash_map = hash_map
        self.rows: List[MissingRow] = []

    def _hash(self, path: Path) -> str:
        if self.hasher is None:
            return ""
        try:
            return self.hasher.hash(path)
        except HashError as e:
            logger.error(f"Can't hash file {path}: {e}")
            return ""

    def add_failure(self, rom: ROMInfo, error: Optional[BaseException]) -> None:
        """Record a failed or not-found ROM, one row per file."""
        files = [rom.path]
        if rom.multi_file:
            files.extend(rom.bins)

        for path in files:
            digest = self._hash(path)
            extra = ""
            if (digest and self.hash_map is not None
                    and isinstance(error, NotFoundError)
                    and self.hash_map.name(digest)):
                extra = EXTRA_HASH_WITHOUT_ID
            self.rows.append(MissingRow(
                game=str(path),
                error=str(error) if error is not None else "",
                hash=digest,
                extra=extra,
            ))

    def add_missing_image(self, rom: ROMInfo) -> None:
        """Record a scraped ROM for which no image could be stored."""
        self.rows.append(MissingRow(
            game=rom.filename,
            error="",
            hash=self._hash(rom.path),
            extra=EXTRA_MISSING_IMAGE,
        ))

    def is_empty(self) -> bool:
        return not self.rows

    def write(self, output_path: Path) -> None:
        """
        Write the report as CSV (header row always present).

        Args:
            output_path: Path to the CSV file
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8', newline='') as f:
            writer = csv.writer(f)
            writer.writerow(MISSING_HEADER)
            for row in self.rows:
                writer.writerow(row.as_list())
        logger.info(f"Missing report written to: {output_path} ({len(self.rows)} rows)")
