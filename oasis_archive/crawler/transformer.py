"""
Document transformers: rewrite fetched content for the static mirror and
report the references it contains.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from bs4 import BeautifulSoup

from .fetcher import OriginFetcher
from .resolver import URLResolver
from .urls import OriginRef
from ..utils.config import TransformConfig


class DocumentKind(Enum):
    """Content kinds the crawler distinguishes."""
    HTML = 'html'
    JSON = 'json'
    STYLESHEET = 'css'
    IMAGE = 'image'
    OTHER = 'other'

    @classmethod
    def from_extension(cls, extension: Optional[str]) -> 'DocumentKind':
        if not extension:
            return cls.OTHER
        extension = extension.lower().lstrip('.')
        if extension in ('html', 'htm', 'xhtml'):
            return cls.HTML
        if extension == 'json':
            return cls.JSON
        if extension == 'css':
            return cls.STYLESHEET
        if extension in ('png', 'jpg', 'jpeg', 'gif', 'webp', 'bmp', 'svg', 'ico'):
            return cls.IMAGE
        return cls.OTHER


class LinkRole(Enum):
    """Role of a reference inside a document."""
    HYPERLINK = 'hyperlink'
    STYLESHEET = 'stylesheet'
    IMAGE = 'image'


@dataclass(frozen=True)
class ChildReference:
    """A reference discovered in a document, to be scheduled."""
    reference: str
    role: LinkRole
    depth: int
    priority: bool = False


@dataclass
class DocumentContext:
    """What a transformer knows about the document it is rewriting."""
    reference: OriginRef
    depth: int
    is_priority: bool = False


@dataclass
class TransformResult:
    content: bytes
    children: List[ChildReference] = field(default_factory=list)


class DocumentTransformer:
    """Pass-through transformer: content unchanged, no children."""

    async def transform(self, content: bytes, document: DocumentContext) -> TransformResult:
        return TransformResult(content=content)


# (tag, attribute, role) triples whose references get rewritten
LINK_ATTRIBUTES: Tuple[Tuple[str, str, LinkRole], ...] = (
    ('link', 'href', LinkRole.STYLESHEET),
    ('img', 'src', LinkRole.IMAGE),
    ('a', 'href', LinkRole.HYPERLINK),
)


class HtmlTransformer(DocumentTransformer):
    """
    Rewrites HTML pages for offline browsing.

    Live-only chrome is stripped, interactive post controls become static
    text, and every origin reference is rewritten to its mirrored public
    URL or to the fallback route.
    """

    def __init__(self, resolver: URLResolver, fetcher: OriginFetcher,
                 config: TransformConfig, max_depth: int):
        self.resolver = resolver
        self.fetcher = fetcher
        self.config = config
        self.max_depth = max_depth
        self.pagination_params = set(config.pagination_params)
        self.logger = logging.getLogger(__name__)

    async def transform(self, content: bytes, document: DocumentContext) -> TransformResult:
        soup = BeautifulSoup(content, 'lxml')

        self._restructure_widgets(soup)
        self._strip_chrome(soup)

        planned = []
        for tag_name, attribute, role in LINK_ATTRIBUTES:
            for element in soup.find_all(tag_name, attrs={attribute: True}):
                raw = element[attribute]
                if not self.resolver.accepts(raw):
                    continue
                child = self._plan_child(element, raw, role, document)
                planned.append((element, attribute, raw, child))

        unique = {}
        for _, _, raw, child in planned:
            unique.setdefault((raw, child.depth, child.priority), child)

        keys = list(unique)
        outcomes = await asyncio.gather(
            *(self._rewrite_target(raw, unique[(raw, depth, priority)])
              for raw, depth, priority in keys)
        )
        targets = dict(zip(keys, outcomes))

        children: Dict[Tuple[str, int, bool], ChildReference] = {}
        for element, attribute, raw, child in planned:
            public_url, emitted = targets[(raw, child.depth, child.priority)]
            element[attribute] = public_url
            if emitted is not None:
                children.setdefault((emitted.reference, emitted.depth, emitted.priority), emitted)

        self.logger.debug(
            f"Transformed {document.reference.key}: {len(planned)} references, "
            f"{len(children)} children"
        )
        return TransformResult(content=str(soup).encode('utf-8'), children=list(children.values()))

    def _restructure_widgets(self, soup: BeautifulSoup):
        """Replace live post controls with their visible text."""
        for form in soup.select(self.config.widget_selector):
            label = ' '.join(form.get_text(' ', strip=True).split())
            replacement = soup.new_tag('span', attrs={'class': 'static-control'})
            if label:
                replacement.string = label
            form.replace_with(replacement)

    def _strip_chrome(self, soup: BeautifulSoup):
        for selector in self.config.remove_selectors:
            for element in soup.select(selector):
                if not element.decomposed:
                    element.decompose()

    def _plan_child(self, element, raw: str, role: LinkRole,
                    document: DocumentContext) -> ChildReference:
        """Decide depth and priority of a discovered reference."""
        if (role is LinkRole.HYPERLINK and document.is_priority
                and self._is_pagination(element, raw, document)):
            return ChildReference(reference=raw, role=role, depth=document.depth, priority=True)
        return ChildReference(reference=raw, role=role, depth=document.depth + 1)

    def _is_pagination(self, element, raw: str, document: DocumentContext) -> bool:
        """A link to another page of the same listing."""
        rel = element.get('rel') or []
        if isinstance(rel, str):
            rel = rel.split()
        if 'next' in rel:
            return True

        target = self.resolver.canonical(raw)
        current = self.resolver.canonical(document.reference)
        if target is None or current is None or target.path != current.path:
            return False
        return bool(self.pagination_params & set(target.query_params()))

    async def _rewrite_target(self, raw: str,
                              child: ChildReference) -> Tuple[str, Optional[ChildReference]]:
        """Public URL for a reference, plus the child to schedule if it is followed."""
        fallback = self.resolver.fallback_url
        if not child.priority and child.depth > self.max_depth:
            return fallback, None

        target = await self.resolver.resolve(raw)
        if target is None:
            return fallback, None

        if await self.fetcher.fetch(target.source) is None:
            return fallback, None

        emitted = ChildReference(
            reference=target.source.key,
            role=child.role,
            depth=child.depth,
            priority=child.priority,
        )
        return target.public_url, emitted


class TransformerRegistry:
    """Transformers keyed by document kind, pass-through by default."""

    def __init__(self, transformers: Optional[Dict[DocumentKind, DocumentTransformer]] = None,
                 default: Optional[DocumentTransformer] = None):
        self._transformers = dict(transformers or {})
        self.default = default or DocumentTransformer()

    def register(self, kind: DocumentKind, transformer: DocumentTransformer):
        self._transformers[kind] = transformer

    def for_kind(self, kind: DocumentKind) -> DocumentTransformer:
        return self._transformers.get(kind, self.default)

    def for_extension(self, extension: Optional[str]) -> DocumentTransformer:
        return self.for_kind(DocumentKind.from_extension(extension))
