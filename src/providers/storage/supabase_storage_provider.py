"""Supabase Storage adapter for signed reads of book objects.

Talks to the Storage REST API directly over httpx:

    POST {url}/storage/v1/object/sign/{bucket}/{path}   {"expiresIn": ttl}
      -> {"signedURL": "/object/sign/{bucket}/{path}?token=..."}

The returned ``signedURL`` is relative to ``/storage/v1``.  Both the sign
call and the download go through the shared :class:`RetryClient`.
"""

from __future__ import annotations

from urllib.parse import quote

import structlog

from src.interfaces.object_storage_provider import IObjectStorageProvider
from src.utils.errors import (
    ConfigurationError,
    NetworkError,
    NotFoundError,
    RequestTimeoutError,
    StorageError,
)
from src.utils.retry import TIMEOUT_STATUS, RetryClient

logger = structlog.get_logger(logger_name=__name__)

_PROVIDER = "supabase-storage"


class SupabaseStorageProvider(IObjectStorageProvider):
    """Signed-URL access to one Supabase Storage bucket."""

    def __init__(
        self,
        retry_client: RetryClient,
        base_url: str,
        service_key: str,
        bucket: str = "Books",
    ) -> None:
        self._retry = retry_client
        self._base_url = base_url.rstrip("/")
        self._service_key = service_key
        self._bucket = bucket

    def get_provider_name(self) -> str:
        return _PROVIDER

    async def create_signed_url(self, path: str, ttl_seconds: int = 60) -> str:
        if not self._base_url or not self._service_key:
            raise ConfigurationError(
                message="SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set",
                provider_name=_PROVIDER,
            )
        sign_url = (
            f"{self._base_url}/storage/v1/object/sign/"
            f"{quote(self._bucket)}/{quote(path)}"
        )
        result = await self._retry.request(
            "POST",
            sign_url,
            json_body={"expiresIn": ttl_seconds},
            headers={
                "Authorization": f"Bearer {self._service_key}",
                "apikey": self._service_key,
                "Content-Type": "application/json",
            },
        )
        # Storage answers a missing object with 400 {"statusCode": "404"} on
        # some versions and a plain 404 on others.
        if result.status == 404 or (
            isinstance(result.data, dict) and str(result.data.get("statusCode")) == "404"
        ):
            raise NotFoundError(
                message=f"Object not found: {self._bucket}/{path}",
                provider_name=_PROVIDER,
            )
        if not result.ok:
            raise _failure_error(
                result.status, f"Failed to create signed URL for path \"{path}\": {result.raw}"
            )

        signed = result.data.get("signedURL") if isinstance(result.data, dict) else None
        if not signed:
            raise StorageError(
                message=f"Failed to create signed URL for path \"{path}\": missing signedURL",
                provider_name=_PROVIDER,
                status=result.status,
            )
        if signed.startswith("http"):
            return signed
        return f"{self._base_url}/storage/v1{signed}"

    async def download(self, url: str, timeout_s: float = 120.0) -> bytes:
        status, body = await self._retry.fetch_bytes(url, timeout_s=timeout_s)
        if not 200 <= status < 300:
            raise _failure_error(status, f"Download failed with status {status}")
        logger.info("object_downloaded", bytes=len(body))
        return body


def _failure_error(status: int, message: str) -> StorageError | NetworkError | RequestTimeoutError:
    if status == 0:
        return NetworkError(message=message, provider_name=_PROVIDER)
    if status == TIMEOUT_STATUS:
        return RequestTimeoutError(message=message, provider_name=_PROVIDER)
    return StorageError(message=message, provider_name=_PROVIDER, status=status)
