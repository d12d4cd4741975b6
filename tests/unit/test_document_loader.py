"""Unit tests for storage path resolution and document loading."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.services.ingestion.document_loader import DocumentLoader, cover_path, document_path
from src.utils.errors import NotFoundError, StorageError, ValidationError


class TestPaths:
    def test_document_path(self) -> None:
        assert document_path("b1") == "b1/b1.pdf"

    def test_cover_path(self) -> None:
        assert cover_path("b1") == "b1/cover.jpg"


class TestDocumentLoader:
    @pytest.mark.asyncio
    async def test_load_document_signs_then_downloads(self, mock_object_storage) -> None:  # noqa: ANN001
        loader = DocumentLoader(mock_object_storage, signed_url_ttl_seconds=60, download_timeout_seconds=90)

        data = await loader.load_document("b1")

        assert data == b"%PDF-1.4 fake"
        mock_object_storage.create_signed_url.assert_awaited_once_with("b1/b1.pdf", 60)
        mock_object_storage.download.assert_awaited_once_with(
            "https://storage.test/signed/b1/b1.pdf?ttl=60", timeout_s=90
        )

    @pytest.mark.asyncio
    async def test_empty_document_rejected(self, mock_object_storage) -> None:  # noqa: ANN001
        mock_object_storage.download = AsyncMock(return_value=b"")

        with pytest.raises(ValidationError, match="empty"):
            await DocumentLoader(mock_object_storage).load_document("b1")

    @pytest.mark.asyncio
    async def test_blank_id_rejected(self, mock_object_storage) -> None:  # noqa: ANN001
        with pytest.raises(ValidationError):
            await DocumentLoader(mock_object_storage).get_document_url("")
        mock_object_storage.create_signed_url.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_media_urls(self, mock_object_storage) -> None:  # noqa: ANN001
        pdf_url, cover_url = await DocumentLoader(mock_object_storage).get_media_urls("b1")

        assert pdf_url.endswith("b1/b1.pdf?ttl=60")
        assert cover_url.endswith("b1/cover.jpg?ttl=60")

    @pytest.mark.asyncio
    async def test_missing_cover_is_none(self, mock_object_storage) -> None:  # noqa: ANN001
        async def sign(path: str, ttl: int) -> str:
            if path.endswith("cover.jpg"):
                raise NotFoundError(message="no cover")
            return f"https://storage.test/{path}"

        mock_object_storage.create_signed_url = AsyncMock(side_effect=sign)

        pdf_url, cover_url = await DocumentLoader(mock_object_storage).get_media_urls("b1")

        assert pdf_url == "https://storage.test/b1/b1.pdf"
        assert cover_url is None

    @pytest.mark.asyncio
    async def test_pdf_signing_failure_propagates(self, mock_object_storage) -> None:  # noqa: ANN001
        mock_object_storage.create_signed_url = AsyncMock(
            side_effect=StorageError(message="storage down", status=503)
        )

        with pytest.raises(StorageError):
            await DocumentLoader(mock_object_storage).get_media_urls("b1")
