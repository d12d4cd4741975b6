"""Document loader: signed URLs and raw bytes for a book's stored objects.

Objects live in the ``Books`` bucket under the book id:

    {book_id}/{book_id}.pdf   the document
    {book_id}/cover.jpg       the cover image
"""

from __future__ import annotations

import asyncio

import structlog

from src.interfaces.object_storage_provider import IObjectStorageProvider
from src.utils.errors import StoryShelfError, ValidationError

logger = structlog.get_logger(logger_name=__name__)

SIGNED_URL_TTL_SECONDS = 60
DOWNLOAD_TIMEOUT_SECONDS = 120.0


def document_path(book_id: str) -> str:
    return f"{book_id}/{book_id}.pdf"


def cover_path(book_id: str) -> str:
    return f"{book_id}/cover.jpg"


class DocumentLoader:
    """Resolves storage paths for a book and fetches the document bytes."""

    def __init__(
        self,
        storage: IObjectStorageProvider,
        signed_url_ttl_seconds: int = SIGNED_URL_TTL_SECONDS,
        download_timeout_seconds: float = DOWNLOAD_TIMEOUT_SECONDS,
    ) -> None:
        self._storage = storage
        self._ttl = signed_url_ttl_seconds
        self._download_timeout = download_timeout_seconds

    @property
    def signed_url_ttl(self) -> int:
        return self._ttl

    async def get_document_url(self, book_id: str) -> str:
        _require_id(book_id)
        return await self._storage.create_signed_url(document_path(book_id), self._ttl)

    async def get_cover_url(self, book_id: str) -> str:
        _require_id(book_id)
        return await self._storage.create_signed_url(cover_path(book_id), self._ttl)

    async def get_media_urls(self, book_id: str) -> tuple[str, str | None]:
        """Return ``(pdf_url, cover_url)``; a missing cover yields ``None``.

        A failure signing the PDF propagates.
        """
        _require_id(book_id)
        pdf_result, cover_result = await asyncio.gather(
            self.get_document_url(book_id),
            self.get_cover_url(book_id),
            return_exceptions=True,
        )
        if isinstance(pdf_result, BaseException):
            raise pdf_result
        if isinstance(cover_result, StoryShelfError):
            logger.info("cover_url_unavailable", book_id=book_id, error=str(cover_result))
            cover_result = None
        elif isinstance(cover_result, BaseException):
            raise cover_result
        return pdf_result, cover_result

    async def load_document(self, book_id: str) -> bytes:
        """Sign the document path and download its bytes.

        Raises
        ------
        ValidationError
            If the downloaded document is empty.
        """
        url = await self.get_document_url(book_id)
        data = await self._storage.download(url, timeout_s=self._download_timeout)
        if not data:
            raise ValidationError(message=f"Document for book {book_id} is empty")
        logger.info("document_loaded", book_id=book_id, bytes=len(data))
        return data


def _require_id(book_id: str) -> None:
    if not book_id or not book_id.strip():
        raise ValidationError(message="book_id must be non-empty")
