from ticketing.storage.base import StorageAdapter
from ticketing.storage.factory import create_storage, get_storage

__all__ = ["StorageAdapter", "create_storage", "get_storage"]
