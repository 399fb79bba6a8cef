"""
Crawl engine core components.
"""

from .urls import OriginRef
from .fetcher import OriginFetcher, FetchCache, FetchResult, FetchError, TransientFetchError
from .resolver import URLResolver, ResolvedTarget
from .transformer import (
    DocumentKind, LinkRole, ChildReference, DocumentContext, TransformResult,
    DocumentTransformer, HtmlTransformer, TransformerRegistry,
)
from .context import CrawlContext
from .scheduler import CrawlerScheduler, CrawlTask, CrawlStats, TaskState, build_context

__all__ = [
    'OriginRef',
    'OriginFetcher', 'FetchCache', 'FetchResult', 'FetchError', 'TransientFetchError',
    'URLResolver', 'ResolvedTarget',
    'DocumentKind', 'LinkRole', 'ChildReference', 'DocumentContext', 'TransformResult',
    'DocumentTransformer', 'HtmlTransformer', 'TransformerRegistry',
    'CrawlContext',
    'CrawlerScheduler', 'CrawlTask', 'CrawlStats', 'TaskState', 'build_context',
]
