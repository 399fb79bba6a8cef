"""
Crawl scheduler: drains a task queue with a bounded pool of workers,
driving resolve, fetch, transform and write for every discovered reference.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .context import CrawlContext
from .fetcher import FetchCache, OriginFetcher
from .resolver import URLResolver
from .transformer import DocumentContext, DocumentKind, HtmlTransformer, TransformerRegistry
from ..storage.writer import OutputWriter
from ..utils.config import Config
from ..utils.logger import get_archive_logger


class TaskState(Enum):
    """Outcome of processing one crawl task."""
    DONE = 'done'
    SKIPPED = 'skipped'
    UNAVAILABLE = 'unavailable'


@dataclass
class CrawlTask:
    """A reference waiting to be processed; ``parent`` is the document that linked it."""
    reference: str
    depth: int
    priority: bool = False
    parent: Optional[str] = None


@dataclass
class CrawlStats:
    """Statistics for one crawl run."""
    start_time: float
    tasks_processed: int = 0
    documents_written: int = 0
    skipped: int = 0
    unavailable: int = 0
    errors: int = 0
    bytes_written: int = 0
    urls_in_queue: int = 0

    @property
    def elapsed_time(self) -> float:
        return time.time() - self.start_time

    @property
    def pages_per_minute(self) -> float:
        elapsed_minutes = self.elapsed_time / 60
        return self.documents_written / elapsed_minutes if elapsed_minutes > 0 else 0


def build_context(config: Config) -> CrawlContext:
    """Wire up the components for one crawl run."""
    cache = FetchCache(config.origin.cache_size)
    fetcher = OriginFetcher(
        base_url=config.origin.host,
        cache=cache,
        user_agent=config.origin.user_agent,
        request_timeout=config.origin.request_timeout,
        max_concurrent_requests=config.crawler.max_concurrent_requests,
        retry_attempts=config.origin.retry_attempts,
        backoff_base=config.origin.backoff_base,
        backoff_max=config.origin.backoff_max,
    )
    resolver = URLResolver(fetcher, config.resolver, config.crawler.seed_identities)
    transformers = TransformerRegistry()
    transformers.register(
        DocumentKind.HTML,
        HtmlTransformer(resolver, fetcher, config.transform, config.crawler.max_depth)
    )
    writer = OutputWriter(config.crawler.output_dir)
    return CrawlContext(config, fetcher, resolver, transformers, writer)


class CrawlerScheduler:
    """
    Coordinates a crawl run.

    Seeds one task per configured identity, then lets workers claim,
    resolve, fetch, transform and write tasks, submitting the children
    each document yields, until the queue drains.
    """

    def __init__(self, config: Config, context: Optional[CrawlContext] = None):
        self.config = config
        self.context = context
        self.logger = get_archive_logger(__name__)

        self.max_depth = config.crawler.max_depth
        self.num_workers = config.crawler.max_concurrent_requests

        self.queue: Optional[asyncio.Queue] = None
        self.workers: List[asyncio.Task] = []
        self.stats = CrawlStats(start_time=time.time())
        self.is_running = False

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def initialize(self):
        """Build the crawl context and open the origin session."""
        if self.context is None:
            self.context = build_context(self.config)
        await self.context.fetcher.start()
        self.logger.info("Crawler scheduler initialized")

    def seed_tasks(self) -> List[CrawlTask]:
        return [
            CrawlTask(reference=self.context.resolver.profile_path(identity), depth=0)
            for identity in self.config.crawler.seed_identities
        ]

    async def run(self) -> CrawlStats:
        """Crawl until no task is queued or in flight."""
        if self.is_running:
            self.logger.warning("Crawler is already running")
            return self.stats

        if self.context is None:
            await self.initialize()

        self.is_running = True
        self.stats = CrawlStats(start_time=time.time())
        self.queue = asyncio.Queue()

        for task in self.seed_tasks():
            self.submit(task)

        self.workers = [
            asyncio.create_task(self._worker(f"worker-{i}"), name=f"worker-{i}")
            for i in range(self.num_workers)
        ]
        stats_task = asyncio.create_task(self._stats_reporter())
        self.logger.info(f"Started crawling with {self.num_workers} workers")

        try:
            await self.queue.join()
        finally:
            self.is_running = False
            stats_task.cancel()
            await asyncio.gather(stats_task, return_exceptions=True)
            await self._cleanup_workers()

        self._log_final_stats()
        return self.stats

    def submit(self, task: CrawlTask) -> bool:
        """Queue a task unless its reference is already visited."""
        source = self.context.resolver.canonical(task.reference)
        if source is None or self.context.is_visited(source.key):
            return False
        self.queue.put_nowait(task)
        return True

    async def _worker(self, worker_id: str):
        """Take tasks off the queue and run each to completion."""
        logger = self.logger.bind(worker=worker_id)
        logger.debug(f"Worker {worker_id} started")
        while True:
            task = await self.queue.get()
            try:
                state = await self._process_task(task)
                self.stats.tasks_processed += 1
                if state is TaskState.SKIPPED:
                    self.stats.skipped += 1
                elif state is TaskState.UNAVAILABLE:
                    self.stats.unavailable += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.stats.errors += 1
                logger.log_reference_event(
                    logging.ERROR, task.reference,
                    f"Worker {worker_id} failed on {task.reference}: {e}",
                    exc_info=True
                )
            finally:
                self.queue.task_done()

    async def _process_task(self, task: CrawlTask) -> TaskState:
        """Run one task through claim, resolve, fetch, transform and write."""
        ctx = self.context

        source = ctx.resolver.canonical(task.reference)
        if source is None:
            return TaskState.SKIPPED

        if task.depth > self.max_depth and not task.priority:
            self.logger.debug(f"Skipping {source.key} beyond max depth ({task.depth})")
            return TaskState.SKIPPED

        if not ctx.claim(source.key):
            return TaskState.SKIPPED

        target = await ctx.resolver.resolve(source)
        result = await ctx.fetcher.fetch(target.source) if target is not None else None
        if result is None:
            origin = f"linked from {task.parent}" if task.parent else "seed"
            self.logger.log_reference_event(
                logging.INFO, source.key, f"Unavailable: {source.key} ({origin})",
                extra={'parent': task.parent, 'depth': task.depth}
            )
            return TaskState.UNAVAILABLE

        identity = ctx.resolver.identity_of(target.source)
        document = DocumentContext(
            reference=target.source,
            depth=task.depth,
            is_priority=ctx.is_priority_identity(identity),
        )
        transformer = ctx.transformers.for_extension(target.extension)
        transformed = await transformer.transform(result.body, document)

        await ctx.writer.write(target.local_path, transformed.content)
        self.stats.documents_written += 1
        self.stats.bytes_written += len(transformed.content)
        self.logger.log_document_written(
            source.key, target.local_path, len(transformed.content), task.depth
        )

        queued = 0
        for child in transformed.children:
            if self.submit(CrawlTask(
                reference=child.reference,
                depth=child.depth,
                priority=child.priority,
                parent=source.key,
            )):
                queued += 1

        self.logger.debug(f"Queued {queued} children of {source.key}")
        return TaskState.DONE

    async def seed_entries(self) -> List[Tuple[str, str]]:
        """``(identity, public_url)`` for every seed that was mirrored."""
        entries = []
        for identity in self.config.crawler.seed_identities:
            target = await self.context.resolver.resolve(self.context.resolver.profile_path(identity))
            if target is not None:
                entries.append((identity, target.public_url))
        return entries

    async def _stats_reporter(self):
        """Periodically log crawl statistics."""
        while self.is_running:
            await asyncio.sleep(self.config.crawler.stats_interval)
            self._log_current_stats()

    def _log_current_stats(self):
        self.stats.urls_in_queue = self.queue.qsize() if self.queue else 0
        self.logger.info(
            f"Crawl Progress: "
            f"Processed={self.stats.tasks_processed}, "
            f"Written={self.stats.documents_written}, "
            f"Queued={self.stats.urls_in_queue}, "
            f"Unavailable={self.stats.unavailable}, "
            f"Errors={self.stats.errors}, "
            f"Rate={self.stats.pages_per_minute:.1f} pages/min"
        )

    def _log_final_stats(self):
        self.logger.info("=== CRAWL COMPLETED ===")
        self.logger.log_crawl_stat('tasks_processed', self.stats.tasks_processed)
        self.logger.log_crawl_stat('documents_written', self.stats.documents_written)
        self.logger.log_crawl_stat('skipped', self.stats.skipped)
        self.logger.log_crawl_stat('unavailable', self.stats.unavailable)
        self.logger.log_crawl_stat('errors', self.stats.errors)
        self.logger.info(f"Total time: {self.stats.elapsed_time:.2f} seconds")
        self.logger.info(f"Data written: {self.stats.bytes_written / 1024 / 1024:.1f} MB")
        self.logger.info(f"References visited: {len(self.context.visited)}")
        self.logger.info(f"Fetcher stats: {self.context.fetcher.get_stats()}")

    async def _cleanup_workers(self):
        """Cancel and cleanup worker tasks."""
        if self.workers:
            for worker in self.workers:
                if not worker.done():
                    worker.cancel()
            await asyncio.gather(*self.workers, return_exceptions=True)
            self.workers.clear()

    async def close(self):
        """Close the origin session."""
        await self._cleanup_workers()
        if self.context is not None:
            await self.context.fetcher.close()
        self.logger.info("Crawler scheduler closed")

    def get_stats(self) -> Dict:
        """Get current crawl statistics."""
        return {
            'tasks_processed': self.stats.tasks_processed,
            'documents_written': self.stats.documents_written,
            'skipped': self.stats.skipped,
            'unavailable': self.stats.unavailable,
            'errors': self.stats.errors,
            'bytes_written': self.stats.bytes_written,
            'elapsed_time': self.stats.elapsed_time,
            'pages_per_minute': self.stats.pages_per_minute,
            'visited': len(self.context.visited) if self.context else 0,
            'is_running': self.is_running
        }
