"""
Per-run crawl state shared by the scheduler's workers.
"""

from typing import Set

from .fetcher import OriginFetcher
from .resolver import URLResolver
from .transformer import TransformerRegistry
from ..storage.writer import OutputWriter
from ..utils.config import Config


class CrawlContext:
    """
    Everything one crawl run shares across workers.

    The visited set, the fetch cache (inside the fetcher) and the
    resolver's memo are the only mutable shared structures. All workers
    run on one event loop, so a membership test followed by an insert
    with no await in between is atomic.
    """

    def __init__(self, config: Config, fetcher: OriginFetcher, resolver: URLResolver,
                 transformers: TransformerRegistry, writer: OutputWriter):
        self.config = config
        self.fetcher = fetcher
        self.resolver = resolver
        self.transformers = transformers
        self.writer = writer
        self.visited: Set[str] = set()

    def claim(self, key: str) -> bool:
        """Mark a normalized reference visited; False if it already was."""
        if key in self.visited:
            return False
        self.visited.add(key)
        return True

    def is_visited(self, key: str) -> bool:
        return key in self.visited

    def is_priority_identity(self, identity) -> bool:
        return identity is not None and identity in self.config.crawler.seed_identities
