"""
Command line entry point for the archiver.
"""

import asyncio
import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .crawler.scheduler import CrawlerScheduler
from .storage.index_page import write_index_page
from .utils.config import (
    Config, ConfigError, DEFAULT_HOST, default_config, load_config, set_config,
)
from .utils.logger import setup_logging


class ArchiverApp:
    """Runs one mirror of the configured profiles."""

    def __init__(self):
        self.scheduler: Optional[CrawlerScheduler] = None
        self.logger = logging.getLogger(__name__)
        self._shutdown_event: Optional[asyncio.Event] = None

    def setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            self.logger.info(f"Received signal {signum}, initiating shutdown...")
            self._shutdown_event.set()

        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, signal_handler, signum)
            except (NotImplementedError, RuntimeError):
                self.logger.debug(f"Signal handlers unavailable for {signum}")

    async def run(self, config: Config, install_signal_handlers: bool = True) -> int:
        """Crawl, then write the landing page."""
        self._shutdown_event = asyncio.Event()
        if install_signal_handlers:
            self.setup_signal_handlers()

        self.logger.info("=== OASIS ARCHIVE STARTING ===")
        self.logger.info(f"Origin: {config.origin.host}")
        self.logger.info(f"Output directory: {config.crawler.output_dir}")
        self.logger.info(f"Seed identities: {config.crawler.seed_identities}")
        self.logger.info(f"Max depth: {config.crawler.max_depth}")
        self.logger.info(f"Max concurrent requests: {config.crawler.max_concurrent_requests}")

        try:
            self.scheduler = CrawlerScheduler(config)
            await self.scheduler.initialize()

            crawl_task = asyncio.create_task(self.scheduler.run())
            shutdown_task = asyncio.create_task(self._shutdown_event.wait())

            done, pending = await asyncio.wait(
                [crawl_task, shutdown_task],
                return_when=asyncio.FIRST_COMPLETED
            )

            for task in pending:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

            if shutdown_task in done:
                self.logger.info("Shutdown requested, crawl stopped early")
            else:
                crawl_task.result()

            entries = await self.scheduler.seed_entries()
            index_path = await write_index_page(self.scheduler.context.writer, entries)
            self.logger.info(f"Index page written to {index_path}")

        except Exception as e:
            self.logger.error(f"Fatal error: {e}", exc_info=True)
            return 1

        finally:
            if self.scheduler:
                await self.scheduler.close()
            self.logger.info("=== OASIS ARCHIVE FINISHED ===")

        return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="oasis-archive",
        description="Mirror an Oasis profile and feed UI into static files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  oasis-archive -o output --seed @abc=.ed25519
  oasis-archive -o output --host http://localhost:3000 --seed @abc=.ed25519 --seed @def=.ed25519
  oasis-archive --config archive.yaml
        """
    )

    parser.add_argument('--out-dir', '-o', help='Output directory')
    parser.add_argument('--host', help=f'Origin server (default: {DEFAULT_HOST})')
    parser.add_argument(
        '--seed', action='append', dest='seeds', metavar='IDENTITY',
        help='Identity to mirror as a priority profile (repeatable)'
    )
    parser.add_argument('--max-depth', type=int, help='Maximum link depth from a seed')
    parser.add_argument('--concurrency', type=int, help='Maximum concurrent tasks')
    parser.add_argument('--config', help='Path to a YAML configuration file')
    parser.add_argument('--log-level', help='Log level (default: INFO)')
    parser.add_argument('--log-json', action='store_true', help='Emit JSON log lines')
    parser.add_argument(
        '--version', action='version', version=f'oasis-archive {__version__}'
    )
    return parser


def config_from_args(args: argparse.Namespace) -> Config:
    """Load the optional config file and apply command-line overrides."""
    config = load_config(args.config) if args.config else default_config()

    if args.out_dir:
        config.crawler.output_dir = args.out_dir
    elif not args.config:
        raise ConfigError("--out-dir is required without a configuration file")
    if args.host:
        config.origin.host = args.host
    if args.seeds:
        config.crawler.seed_identities = list(args.seeds)
    if args.max_depth is not None:
        config.crawler.max_depth = args.max_depth
    if args.concurrency is not None:
        config.crawler.max_concurrent_requests = args.concurrency
    if args.log_level:
        config.logging.level = args.log_level
    if args.log_json:
        config.logging.json = True

    return set_config(config)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.config and not Path(args.config).exists():
        print(f"Error: Configuration file '{args.config}' not found.", file=sys.stderr)
        return 1

    try:
        config = config_from_args(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging(config.logging)

    app = ArchiverApp()
    try:
        return asyncio.run(app.run(config))
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
