from __future__ import annotations

import boto3

from ticketing.storage.base import StorageAdapter

# QR images never change for a given ticket number once written.
QR_CACHE_CONTROL = "public, max-age=31536000, immutable"


class S3StorageAdapter(StorageAdapter):
    def __init__(
        self,
        bucket: str,
        region: str,
        endpoint_url: str | None = None,
        client=None,
    ) -> None:
        self._bucket = bucket
        self._region = region
        self._endpoint_url = endpoint_url.rstrip("/") if endpoint_url else None
        # endpoint_url points at MinIO in local development.
        self._client = client or boto3.client(
            "s3",
            region_name=region,
            endpoint_url=self._endpoint_url,
        )

    def put_bytes(self, key: str, data: bytes, content_type: str) -> None:
        self._client.put_object(
            Bucket=self._bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
            CacheControl=QR_CACHE_CONTROL,
        )

    def read_bytes(self, key: str) -> bytes:
        response = self._client.get_object(Bucket=self._bucket, Key=key)
        return response["Body"].read()

    def public_url(self, key: str) -> str:
        if self._endpoint_url:
            return f"{self._endpoint_url}/{self._bucket}/{key}"
        return f"https://{self._bucket}.s3.{self._region}.amazonaws.com/{key}"
