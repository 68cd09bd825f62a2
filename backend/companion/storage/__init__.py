"""Storage module - provides interface and implementations for data persistence."""

from .interface import StorageInterface
from .local_storage import LocalStorage
from .message_store import MessageStore

__all__ = ['StorageInterface', 'LocalStorage', 'MessageStore']
