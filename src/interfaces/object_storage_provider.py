"""Abstract base class for object storage (book PDFs and cover images)."""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementation: SupabaseStorageProvider (src/providers/storage/)
class IObjectStorageProvider(ABC):
    """Contract for short-lived signed reads from the document bucket."""

    @abstractmethod
    async def create_signed_url(self, path: str, ttl_seconds: int = 60) -> str:
        """Return a signed, time-limited URL for the object at *path*.

        Raises
        ------
        src.utils.errors.NotFoundError
            If the object does not exist.
        src.utils.errors.StorageError
            If the storage service rejects the request.
        """

    @abstractmethod
    async def download(self, url: str, timeout_s: float = 120.0) -> bytes:
        """Fetch the bytes behind a signed URL.

        Raises
        ------
        src.utils.errors.ExternalServiceError
            ``StorageError`` for a non-success response, ``NetworkError`` or
            ``RequestTimeoutError`` once retries are exhausted.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this storage backend."""
