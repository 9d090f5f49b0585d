"""Workflow coordination package."""

from .aggregator import Aggregator, OutputMode
from .orchestrator import ScrapeSummary, scrape
from .pipeline import EntryRenderer, GameOptions, Pipeline, PipelineOutcome, RunStatus
from .progress import MissingReport
from .work_queue import PipelineResult, RomAttempt, RomState, WorkQueueManager

__all__ = [
    "Aggregator",
    "OutputMode",
    "ScrapeSummary",
    "scrape",
    "EntryRenderer",
    "GameOptions",
    "Pipeline",
    "PipelineOutcome",
    "RunStatus",
    "MissingReport",
    "PipelineResult",
    "RomAttempt",
    "RomState",
    "WorkQueueManager",
]
