"""
Maps origin references to stable local files and public URLs.
"""

import asyncio
import json
import logging
import mimetypes
from dataclasses import dataclass, replace
from typing import Dict, Optional
from urllib.parse import quote, unquote

from .fetcher import FetchResult, OriginFetcher
from .urls import OriginRef
from ..utils.config import ResolverConfig


# Content types that say nothing about the payload
UNDECLARED_TYPES = {'application/octet-stream', 'binary/octet-stream', 'application/unknown'}

# Preferred extensions where mimetypes offers several
PREFERRED_EXTENSIONS = {
    'text/html': 'html',
    'application/json': 'json',
    'text/css': 'css',
    'text/javascript': 'js',
    'application/javascript': 'js',
    'text/plain': 'txt',
    'image/jpeg': 'jpg',
    'image/png': 'png',
    'image/gif': 'gif',
    'image/webp': 'webp',
    'image/svg+xml': 'svg',
}


@dataclass(frozen=True)
class ResolvedTarget:
    """
    Where a reference lands in the mirror.

    ``public_url`` keeps the origin's percent-encoding; ``local_path`` is the
    decoded form, the file a static server looks up for that URL.
    """
    public_url: str
    extension: Optional[str]
    local_path: str
    source: OriginRef


def extension_for_content_type(content_type: Optional[str]) -> Optional[str]:
    """Map a declared content type to a file extension, if it is known."""
    if not content_type:
        return None
    mime_type = content_type.split(';', 1)[0].strip().lower()
    if not mime_type or mime_type in UNDECLARED_TYPES:
        return None
    if mime_type in PREFERRED_EXTENSIONS:
        return PREFERRED_EXTENSIONS[mime_type]
    guessed = mimetypes.guess_extension(mime_type)
    return guessed.lstrip('.') if guessed else None


def sniff_extension(body: bytes) -> Optional[str]:
    """Guess an extension from the leading bytes of a payload."""
    header = body[:16]
    if header.startswith(b"\x89PNG\r\n\x1a\n"):
        return "png"
    if header.startswith(b"\xff\xd8\xff"):
        return "jpg"
    if header.startswith(b"GIF8"):
        return "gif"
    if header.startswith(b"RIFF") and body[8:12] == b"WEBP":
        return "webp"
    if header.startswith(b"BM"):
        return "bmp"
    if header.startswith(b"%PDF"):
        return "pdf"

    stripped = body[:512].lstrip().lower()
    if stripped.startswith(b"<svg") or (stripped.startswith(b"<?xml") and b"<svg" in stripped):
        return "svg"
    if stripped.startswith(b"<!doctype html") or stripped.startswith(b"<html"):
        return "html"
    if stripped[:1] in (b"{", b"["):
        try:
            json.loads(body.decode('utf-8'))
            return "json"
        except (UnicodeDecodeError, ValueError):
            return None
    return None


def extension_for_response(result: FetchResult) -> Optional[str]:
    return extension_for_content_type(result.content_type) or sniff_extension(result.body)


class URLResolver:
    """
    Resolves origin references to ``ResolvedTarget`` values.

    Results are memoized for the lifetime of the resolver, one per
    normalized reference, so repeated resolution never re-derives or
    re-fetches.
    """

    def __init__(self, fetcher: OriginFetcher, config: ResolverConfig,
                 seed_identities=()):
        self.fetcher = fetcher
        self.config = config
        self.seed_identities = list(seed_identities)
        self.logger = logging.getLogger(__name__)

        self._excluded = set(config.excluded_paths)
        self._memo: Dict[str, asyncio.Task] = {}

    @property
    def fallback_url(self) -> str:
        return self.config.fallback_route

    def profile_path(self, identity: str) -> str:
        """Canonical profile path of an identity."""
        return self.config.profile_prefix + quote(identity, safe='')

    def identity_of(self, ref: OriginRef) -> Optional[str]:
        """Subject identity of a document, from its path."""
        for prefix in self.config.identity_prefixes:
            if ref.has_prefix(prefix):
                segment = ref.path[len(prefix):].lstrip('/').split('/', 1)[0]
                if segment:
                    return unquote(segment)
        return None

    def accepts(self, raw: Optional[str]) -> bool:
        """True for origin-relative references that are not denylisted."""
        ref = OriginRef.parse(raw)
        return ref is not None and ref.path not in self._excluded

    def canonical(self, raw) -> Optional[OriginRef]:
        """Parse, drop the fragment and apply identity aliasing."""
        ref = raw if isinstance(raw, OriginRef) else OriginRef.parse(raw)
        if ref is None or ref.path in self._excluded:
            return None

        ref = ref.without_fragment().normalized()
        if self.seed_identities and ref.has_prefix(self.config.default_profile_prefix):
            ref = ref.replace_prefix(
                self.config.default_profile_prefix,
                self.profile_path(self.seed_identities[0])
            )
        return ref

    async def resolve(self, raw) -> Optional[ResolvedTarget]:
        """
        Resolve a raw reference.

        Returns None for external or denylisted references, and for
        references whose lookup fetch found them unavailable.
        """
        parsed = raw if isinstance(raw, OriginRef) else OriginRef.parse(raw)
        source = self.canonical(parsed)
        if source is None:
            return None

        task = self._memo.get(source.key)
        if task is None:
            task = asyncio.ensure_future(self._derive(source))
            self._memo[source.key] = task

        target = await asyncio.shield(task)
        if target is None or not parsed.fragment:
            return target
        return replace(target, public_url=f"{target.public_url}#{parsed.fragment}")

    async def _derive(self, source: OriginRef) -> Optional[ResolvedTarget]:
        ref = source
        extension = None
        matched_rule = False

        for rule in self.config.prefix_rules:
            if ref.has_prefix(rule.prefix):
                extension = rule.extension
                if rule.rewrite_to:
                    ref = ref.replace_prefix(rule.prefix, rule.rewrite_to)
                matched_rule = True
                break

        if not matched_rule:
            result = await self.fetcher.fetch(source)
            if result is None:
                self.logger.debug(f"Cannot resolve unavailable reference {source.key}")
                return None
            extension = extension_for_response(result)

        path = self._file_path(ref)
        if extension and not path.endswith('.' + extension):
            path = f"{path}.{extension}"

        target = ResolvedTarget(
            public_url=path,
            extension=extension,
            local_path=unquote(path).lstrip('/'),
            source=source,
        )
        self.logger.debug(f"Resolved {source.key} -> {target.public_url}")
        return target

    def _file_path(self, ref: OriginRef) -> str:
        """Fold the query into the path so distinct queries get distinct files."""
        path = ref.path
        if ref.query:
            if not path.endswith('/'):
                path += '/'
            path += ref.query.replace('/', '%2F').replace('?', '%3F')
        elif path.endswith('/'):
            path += self.config.index_name
        return path

    def resolved_count(self) -> int:
        return len(self._memo)
