from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from ticketing.core.config import settings
from ticketing.storage.base import StorageAdapter
from ticketing.storage.local import LocalStorageAdapter


def create_storage(backend: str | None = None) -> StorageAdapter:
    selected = (backend or settings.storage_backend).strip().lower()
    if selected == "local":
        return LocalStorageAdapter(Path(settings.storage_root), settings.media_base_url)
    if selected == "s3":
        if not settings.s3_bucket:
            raise ValueError("S3_BUCKET is required for the s3 storage backend")
        from ticketing.storage.s3 import S3StorageAdapter

        return S3StorageAdapter(
            bucket=settings.s3_bucket,
            region=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url,
        )
    raise ValueError(f"unsupported storage backend: {selected}")


@lru_cache(maxsize=1)
def get_storage() -> StorageAdapter:
    return create_storage()
