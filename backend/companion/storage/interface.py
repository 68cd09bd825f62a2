"""
Storage Interface - Abstract base class for all storage implementations.
The chat log only relies on this contract, so a different backend can be
swapped in without touching the message store.
"""

from abc import ABC, abstractmethod
from typing import Optional, List


class StorageInterface(ABC):
    """
    Abstract storage interface for the companion's durable data.

    Implementations raise StorageError on I/O failure instead of returning a
    sentinel; a lost write is a correctness problem the caller must see.
    """

    @abstractmethod
    async def save(self, path: str, content: bytes | str) -> None:
        """
        Write content to the specified path, replacing any existing file.

        Args:
            path: Relative path (e.g., "chats/sessions/<id>.json")
            content: Content to save (bytes or str)

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def load(self, path: str) -> Optional[bytes]:
        """
        Load content from the specified path.

        Args:
            path: Relative path to load from

        Returns:
            Optional[bytes]: File content, or None if the file doesn't exist

        Raises:
            StorageError: If the file exists but can't be read
        """
        pass

    @abstractmethod
    async def exists(self, path: str) -> bool:
        """Check if a file exists at the specified path."""
        pass

    @abstractmethod
    async def append(self, path: str, content: str) -> None:
        """
        Append content to a file, creating it if needed.

        Raises:
            StorageError: If the append fails
        """
        pass

    @abstractmethod
    async def list(self, path: str, pattern: str = "*") -> List[str]:
        """
        List files directly under a directory.

        Args:
            path: Directory path to list
            pattern: Glob pattern to filter files (e.g., "*.json")

        Returns:
            List[str]: Sorted relative file paths (empty if the directory is missing)
        """
        pass
