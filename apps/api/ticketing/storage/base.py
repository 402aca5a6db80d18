from __future__ import annotations

from abc import ABC, abstractmethod


class StorageAdapter(ABC):
    """Object store for ticket assets that must be reachable from outside the API."""

    @abstractmethod
    def put_bytes(self, key: str, data: bytes, content_type: str) -> None:
        """Store data under key, replacing any previous object."""

    @abstractmethod
    def read_bytes(self, key: str) -> bytes:
        """Return the object stored under key."""

    @abstractmethod
    def public_url(self, key: str) -> str:
        """Return an https URL that email clients can fetch the object from."""
