"""
Output writer: persists mirrored resources under the output root.
"""

import asyncio
import logging
from pathlib import Path
from typing import Dict, Union


class OutputPathError(Exception):
    """Raised when a local path would land outside the output root."""
    pass


class OutputWriter:
    """Writes files below a root directory, creating parents as needed."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self.logger = logging.getLogger(__name__)
        self.stats = {
            'files_written': 0,
            'bytes_written': 0,
            'write_errors': 0
        }

    def path_for(self, local_path: str) -> Path:
        """Absolute destination for a mirror-relative path."""
        root = self.root.resolve()
        destination = (root / local_path.lstrip('/')).resolve()
        if destination == root or root not in destination.parents:
            raise OutputPathError(f"Refusing to write outside {root}: {local_path!r}")
        return destination

    async def write(self, local_path: str, data: bytes) -> Path:
        """
        Write ``data`` to ``local_path``, overwriting any existing file.

        The filesystem work runs in a worker thread so other crawl tasks
        keep fetching while the file is written.

        Args:
            local_path: Path relative to the output root
            data: Bytes to persist

        Returns:
            The written file path
        """
        try:
            destination = self.path_for(local_path)
            await asyncio.to_thread(self._write_file, destination, data)
        except (OSError, OutputPathError):
            self.stats['write_errors'] += 1
            raise

        self.stats['files_written'] += 1
        self.stats['bytes_written'] += len(data)
        self.logger.debug(f"Wrote {len(data)} bytes to {destination}")
        return destination

    @staticmethod
    def _write_file(destination: Path, data: bytes):
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(data)

    def get_stats(self) -> Dict[str, int]:
        return self.stats.copy()
