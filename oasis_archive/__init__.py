"""
Oasis Archive

Mirrors a Scuttlebutt web client (Oasis) profile and feed UI into a static,
offline-browsable file tree.
"""

__version__ = "1.0.0"
__description__ = "Static mirror of an Oasis profile and feed UI"
