"""
Result aggregation

The aggregator is the only component that touches the output gamelist
entries. Workers hand it final results; it applies the run mode and
feeds the missing report.
"""

import asyncio
import logging
from enum import Enum
from typing import Dict, List, Optional

from glaneur.gamelist.game_entry import GameEntry
from glaneur.workflow.progress import MissingReport
from glaneur.workflow.work_queue import PipelineResult

logger = logging.getLogger(__name__)


class OutputMode(Enum):
    """How results combine with an existing gamelist"""
    NEW_ONLY = "new_only"      # keep existing entries, skip known paths
    REFRESH = "refresh"        # replace known paths, keep user fields
    OVERWRITE = "overwrite"    # start from an empty list


class Aggregator:
    """
    Single consumer of pipeline results.

    Example:
        aggregator = Aggregator(read_gamelist(path), OutputMode.REFRESH, report)
        pipeline = Pipeline(sources, aggregator=aggregator)
        await pipeline.run(roms)
        write_gamelist(aggregator.entries, path)
    """

    def __init__(
        self,
        existing_entries: Optional[List[GameEntry]] = None,
        mode: OutputMode = OutputMode.NEW_ONLY,
        missing_report: Optional[MissingReport] = None
    ):
        self.mode = OutputMode(mode)
        self.missing_report = missing_report
        if self.mode is OutputMode.OVERWRITE:
            self._entries: List[GameEntry] = []
        else:
            self._entries = list(existing_entries or [])
        self._index: Dict[str, int] = {e.path: i for i, e in enumerate(self._entries)}

        self.added = 0
        self.replaced = 0
        self.skipped = 0

    @property
    def entries(self) -> List[GameEntry]:
        """Snapshot of the output entries."""
        return list(self._entries)

    async def consume(self, result: PipelineResult) -> None:
        """Apply one final result."""
        if result.entry is None:
            # a success without an entry had no renderer attached
            if not result.succeeded and self.missing_report is not None:
                await asyncio.to_thread(self.missing_report.add_failure, result.rom, result.error)
            return

        if self.missing_report is not None and result.succeeded and not result.entry.image:
            await asyncio.to_thread(self.missing_report.add_missing_image, result.rom)

        if not result.succeeded and self.missing_report is not None:
            # add_not_found entries are still reported
            await asyncio.to_thread(self.missing_report.add_failure, result.rom, result.error)

        self.add_entry(result.entry)

    def add_entry(self, entry: GameEntry) -> None:
        existing = self._index.get(entry.path)
        if existing is None:
            self._index[entry.path] = len(self._entries)
            self._entries.append(entry)
            self.added += 1
            return

        if self.mode is OutputMode.NEW_ONLY:
            logger.info(f"Skipping {entry.path}, already in gamelist.")
            self.skipped += 1
            return

        old = self._entries[existing]
        entry.favorite = old.favorite
        entry.playcount = old.playcount
        entry.lastplayed = old.lastplayed
        self._entries[existing] = entry
        self.replaced += 1
        logger.debug(f"Replaced gamelist entry {entry.path}")

    def get_stats(self) -> Dict[str, int]:
        return {
            'entries': len(self._entries),
            'added': self.added,
            'replaced': self.replaced,
            'skipped': self.skipped,
        }
