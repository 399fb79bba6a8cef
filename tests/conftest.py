"""Shared fixtures: an in-process origin server and crawl configuration."""

from __future__ import annotations

from collections import Counter
from typing import Callable, Dict, Optional, Union

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from oasis_archive.crawler.fetcher import FetchCache, OriginFetcher
from oasis_archive.crawler.resolver import URLResolver
from oasis_archive.utils.config import Config

SEED = "@seed=.ed25519"
OTHER = "@other=.ed25519"
SEED_PROFILE = "/author/%40seed%3D.ed25519"
OTHER_PROFILE = "/author/%40other%3D.ed25519"

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16

Route = Union[tuple, Callable[[web.Request, int], web.Response]]


class FakeOrigin:
    """Serves canned responses keyed by raw request target and counts hits."""

    def __init__(self):
        self.routes: Dict[str, Route] = {}
        self.hits: Counter = Counter()
        self.base_url = ""

    def add(self, target: str, body: Union[str, bytes] = b"",
            content_type: Optional[str] = "text/html; charset=utf-8", status: int = 200):
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.routes[target] = (status, body, content_type)

    def add_handler(self, target: str, handler: Callable[[web.Request, int], web.Response]):
        self.routes[target] = handler

    def page(self, target: str, body_html: str):
        self.add(target, f'<html><head><meta charset="utf-8"></head><body>{body_html}</body></html>')

    async def handle(self, request: web.Request) -> web.Response:
        target = request.raw_path
        self.hits[target] += 1
        route = self.routes.get(target)
        if route is None:
            return web.Response(status=404, text="not found")
        if callable(route):
            return route(request, self.hits[target])
        status, body, content_type = route
        headers = {"Content-Type": content_type} if content_type else {}
        return web.Response(status=status, body=body, headers=headers)


@pytest_asyncio.fixture
async def origin():
    fake = FakeOrigin()
    app = web.Application()
    app.router.add_route("GET", "/{tail:.*}", fake.handle)
    server = TestServer(app)
    await server.start_server()
    fake.base_url = f"http://{server.host}:{server.port}"
    yield fake
    await server.close()


@pytest_asyncio.fixture
async def fetcher(origin):
    fetcher = OriginFetcher(
        origin.base_url,
        FetchCache(256),
        retry_attempts=2,
        backoff_base=0,
        backoff_max=0,
    )
    await fetcher.start()
    yield fetcher
    await fetcher.close()


@pytest.fixture
def make_config(tmp_path):
    def _make(origin: FakeOrigin, **crawler) -> Config:
        config = Config()
        config.origin.host = origin.base_url
        config.origin.retry_attempts = 1
        config.origin.backoff_base = 0
        config.origin.backoff_max = 0
        config.crawler.seed_identities = [SEED]
        config.crawler.output_dir = str(tmp_path / "out")
        config.crawler.max_concurrent_requests = 4
        for key, value in crawler.items():
            setattr(config.crawler, key, value)
        return config

    return _make


@pytest.fixture
def resolver_for():
    def _make(fetcher: OriginFetcher, config: Optional[Config] = None) -> URLResolver:
        config = config or Config()
        return URLResolver(fetcher, config.resolver, [SEED])

    return _make
