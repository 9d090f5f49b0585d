"""Command-line interface for glaneur."""

import sys
import signal
import logging
import argparse
import asyncio
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

from glaneur import __version__
from glaneur.api.error_handler import SourceError
from glaneur.config.loader import load_config, ConfigError
from glaneur.config.validator import validate_config, ValidationError
from glaneur.scanner.rom_scanner import ScannerError
from glaneur.workflow.orchestrator import ScrapeSummary, scrape

logger = logging.getLogger(__name__)

EXIT_CANCELLED = 130


def create_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser."""
    parser = argparse.ArgumentParser(
        prog='glaneur',
        description='ROM identification & metadata scraper for EmulationStation',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Scrape using ./config.yaml
  glaneur

  # Scrape another ROM directory with 4 workers
  glaneur --rom-dir ~/roms/snes --workers 4

  # Rebuild entries that already exist, keeping favorites and play counts
  glaneur --mode refresh

  # Write a CSV report of ROMs that were not found
  glaneur --missing missing.csv
        """
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    parser.add_argument(
        '--config',
        type=Path,
        metavar='PATH',
        help='Path to config.yaml (default: ./config.yaml)'
    )

    parser.add_argument(
        '--rom-dir',
        type=Path,
        metavar='PATH',
        help='ROM directory to scrape. Overrides config.'
    )

    parser.add_argument(
        '--workers',
        type=int,
        metavar='N',
        help='Number of concurrent workers. Overrides config.'
    )

    parser.add_argument(
        '--retries',
        type=int,
        metavar='N',
        help='Retries per ROM after a transient error. Overrides config.'
    )

    parser.add_argument(
        '--mode',
        choices=['new_only', 'refresh', 'overwrite'],
        help='How to combine results with an existing gamelist. Overrides config.'
    )

    parser.add_argument(
        '--missing',
        type=Path,
        metavar='PATH',
        help='Write a CSV report of failed and missing ROMs. Overrides config.'
    )

    return parser


def _setup_logging(config: dict) -> None:
    """
    Setup logging configuration from config.

    Args:
        config: Configuration dictionary
    """
    logging_config = config.get('logging', {})

    # Get log level
    level_str = logging_config.get('level', 'INFO').upper()
    level = getattr(logging, level_str, logging.INFO)

    handlers = []

    if logging_config.get('console', True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        formatter = logging.Formatter('%(levelname)s: %(message)s')
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    # File handler (if configured)
    log_file = logging_config.get('file')
    if log_file:
        try:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(level)
            formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)
        except OSError as e:
            print(f"Error: Could not create log file '{log_file}': {e}", file=sys.stderr)
            sys.exit(1)

    if not handlers:
        handlers.append(logging.NullHandler())

    # Configure root logger
    logging.basicConfig(
        level=level,
        handlers=handlers,
        force=True  # Override any existing configuration
    )

    # httpx logs every request URL at INFO
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)

    # Suppress PIL/Pillow debug logging (verbose chunk parsing messages)
    logging.getLogger('PIL').setLevel(logging.INFO)


def _apply_overrides(config: dict, args: argparse.Namespace) -> None:
    if args.rom_dir is not None:
        config['paths']['roms'] = str(args.rom_dir)
    if args.workers is not None:
        config['scraping']['workers'] = args.workers
    if args.retries is not None:
        config['scraping']['max_retries'] = args.retries
    if args.mode is not None:
        config['scraping']['mode'] = args.mode
    if args.missing is not None:
        config['paths']['missing'] = str(args.missing)


def print_summary(summary: ScrapeSummary, console: Optional[Console] = None) -> None:
    """Print the final run summary as a table."""
    console = console or Console()

    table = Table(title=f"Scrape {summary.status.value}", show_header=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("ROMs", str(summary.total_roms))
    table.add_row("Succeeded", f"[green]{summary.succeeded}[/green]")
    table.add_row("Not found", f"[yellow]{summary.not_found}[/yellow]")
    table.add_row("Failed", f"[red]{summary.failed}[/red]")
    if summary.cancelled:
        table.add_row("Cancelled in flight", str(summary.cancelled_in_flight))
        table.add_row("Discarded", str(summary.discarded))
    table.add_row("Gamelist entries", str(summary.gamelist_entries))
    if summary.missing_path is not None:
        table.add_row("Missing report", f"{summary.missing_path} ({summary.missing_rows} rows)")

    hashes = summary.hasher_stats
    if hashes:
        table.add_row(
            "Hash cache",
            f"{hashes.get('hits', 0)} hits / {hashes.get('misses', 0)} misses"
        )

    console.print(table)


async def run_scraper(config: dict) -> int:
    """
    Run the scrape with SIGINT/SIGTERM wired to a graceful shutdown.

    Returns:
        Exit code
    """
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _signal_stop() -> None:
        if not shutdown_event.is_set():
            logger.warning("Interrupt received, finishing up (press Ctrl+C again to abort)")
            shutdown_event.set()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.remove_signal_handler(sig)
                except NotImplementedError:
                    pass

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_stop)
        except NotImplementedError:
            # Windows event loops may not support this.
            pass

    summary = await scrape(config, shutdown_event)
    print_summary(summary)

    if summary.cancelled:
        return EXIT_CANCELLED
    return 0


def main(argv: Optional[list] = None) -> int:
    """
    Main entry point for glaneur CLI.

    Args:
        argv: Command-line arguments (default: sys.argv)

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    # Load and validate configuration
    try:
        config = load_config(args.config)
        _apply_overrides(config, args)
        validate_config(config)
    except (ConfigError, ValidationError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    _setup_logging(config)

    try:
        return asyncio.run(run_scraper(config))
    except KeyboardInterrupt:
        print("\n\nScraping interrupted by user.", file=sys.stderr)
        return EXIT_CANCELLED
    except (ScannerError, SourceError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        logger.debug("Fatal error", exc_info=True)
        print(f"\nFatal error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
