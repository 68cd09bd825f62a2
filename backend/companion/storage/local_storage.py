"""
Local Filesystem Storage Implementation.
This implementation stores all data on the server's local filesystem.
"""

import logging
import aiofiles
from pathlib import Path
from typing import Optional, List

from .interface import StorageInterface
from ..core.exceptions import StorageError

logger = logging.getLogger(__name__)


class LocalStorage(StorageInterface):
    """
    Local filesystem storage implementation.
    Stores all data in a base directory on the server.
    """

    def __init__(self, base_dir: str = "./data"):
        """
        Initialize local storage with a base directory.

        Args:
            base_dir: Base directory for all stored files
        """
        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _get_full_path(self, path: str) -> Path:
        """Convert relative path to full absolute path within base directory."""
        full_path = (self.base_dir / path).resolve()

        # Security check: ensure path is within base_dir
        if full_path != self.base_dir and self.base_dir not in full_path.parents:
            raise ValueError(f"Invalid path: {path} - path traversal detected")

        return full_path

    async def save(self, path: str, content: bytes | str) -> None:
        """Save content to local filesystem."""
        full_path = self._get_full_path(path)
        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, str):
                async with aiofiles.open(full_path, 'w', encoding='utf-8') as f:
                    await f.write(content)
            else:
                async with aiofiles.open(full_path, 'wb') as f:
                    await f.write(content)
        except OSError as e:
            logger.error(f"Error saving file {path}: {e}", exc_info=True)
            raise StorageError(f"Failed to save {path}: {e}", path=path) from e

    async def load(self, path: str) -> Optional[bytes]:
        """Load content from local filesystem."""
        full_path = self._get_full_path(path)
        if not full_path.exists():
            return None
        try:
            async with aiofiles.open(full_path, 'rb') as f:
                return await f.read()
        except OSError as e:
            logger.error(f"Error loading file {path}: {e}", exc_info=True)
            raise StorageError(f"Failed to load {path}: {e}", path=path) from e

    async def exists(self, path: str) -> bool:
        """Check if file exists."""
        return self._get_full_path(path).exists()

    async def append(self, path: str, content: str) -> None:
        """Append content to existing file."""
        full_path = self._get_full_path(path)
        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(full_path, 'a', encoding='utf-8') as f:
                await f.write(content)
        except OSError as e:
            logger.error(f"Error appending to file {path}: {e}", exc_info=True)
            raise StorageError(f"Failed to append to {path}: {e}", path=path) from e

    async def list(self, path: str, pattern: str = "*") -> List[str]:
        """List files in directory."""
        full_path = self._get_full_path(path)
        if not full_path.exists():
            return []
        try:
            files = [p for p in full_path.glob(pattern) if p.is_file()]
        except OSError as e:
            raise StorageError(f"Failed to list {path}: {e}", path=path) from e

        # Convert to relative paths
        return sorted(str(p.relative_to(self.base_dir)) for p in files)
