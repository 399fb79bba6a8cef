"""
Origin-relative references as structured values.
"""

import posixpath
from dataclasses import dataclass, replace
from typing import Dict, List, Optional
from urllib.parse import parse_qs


@dataclass(frozen=True)
class OriginRef:
    """A reference to a resource on the origin: path, query and fragment."""
    path: str
    query: str = ''
    fragment: str = ''

    @classmethod
    def parse(cls, raw: Optional[str]) -> Optional['OriginRef']:
        """
        Parse a raw reference as found in a document.

        Returns None for anything that is not origin-relative, including
        external and protocol-relative URLs.
        """
        if not isinstance(raw, str):
            return None

        raw = raw.strip()
        if not raw.startswith('/') or raw.startswith('//'):
            return None

        rest, _, fragment = raw.partition('#')
        path, _, query = rest.partition('?')
        return cls(path=path, query=query, fragment=fragment)

    @property
    def request_target(self) -> str:
        """Path plus query string, as sent on the wire."""
        if self.query:
            return f"{self.path}?{self.query}"
        return self.path

    @property
    def key(self) -> str:
        """Normalized identity: fragment never takes part."""
        return self.request_target

    def without_fragment(self) -> 'OriginRef':
        if not self.fragment:
            return self
        return replace(self, fragment='')

    def with_path(self, path: str) -> 'OriginRef':
        return replace(self, path=path)

    def has_prefix(self, prefix: str) -> bool:
        """Match ``prefix`` against the path on a whole-segment boundary."""
        if prefix.endswith('/'):
            return self.path.startswith(prefix)
        return self.path == prefix or self.path.startswith(prefix + '/')

    def replace_prefix(self, old: str, new: str) -> 'OriginRef':
        if not self.has_prefix(old):
            return self
        return self.with_path(new + self.path[len(old):])

    def normalized(self) -> 'OriginRef':
        """Collapse dot segments and duplicate slashes, keeping a trailing slash."""
        path = posixpath.normpath(self.path) if self.path else '/'
        if path.startswith('//'):
            path = '/' + path.lstrip('/')
        if self.path.endswith('/') and not path.endswith('/'):
            path += '/'
        return self.with_path(path)

    def query_params(self) -> Dict[str, List[str]]:
        return parse_qs(self.query, keep_blank_values=True)

    def __str__(self) -> str:
        if self.fragment:
            return f"{self.request_target}#{self.fragment}"
        return self.request_target
