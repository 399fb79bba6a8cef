"""
Storage layer for the mirrored file tree.
"""

from .writer import OutputWriter, OutputPathError
from .index_page import render_index_page, write_index_page

__all__ = ['OutputWriter', 'OutputPathError', 'render_index_page', 'write_index_page']
