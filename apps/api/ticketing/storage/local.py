from __future__ import annotations

from pathlib import Path, PurePosixPath

from ticketing.storage.base import StorageAdapter


class LocalStorageAdapter(StorageAdapter):
    """Filesystem store served under MEDIA_BASE_URL; used in development and tests."""

    def __init__(self, root: Path, base_url: str) -> None:
        self._root = root.resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._base_url = base_url.rstrip("/")

    @staticmethod
    def _clean_key(key: str) -> PurePosixPath:
        path_key = PurePosixPath(key.strip().lstrip("/"))
        if not path_key.parts or ".." in path_key.parts:
            raise ValueError(f"invalid storage key: {key!r}")
        return path_key

    def _path(self, key: str) -> Path:
        return self._root.joinpath(*self._clean_key(key).parts)

    def put_bytes(self, key: str, data: bytes, content_type: str) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        # Write then rename so a concurrent reader never sees half a PNG.
        tmp = path.with_suffix(path.suffix + ".part")
        tmp.write_bytes(data)
        tmp.replace(path)

    def read_bytes(self, key: str) -> bytes:
        return self._path(key).read_bytes()

    def public_url(self, key: str) -> str:
        return f"{self._base_url}/{self._clean_key(key)}"
