"""Book ingestion stages.

    document_loader.py    signed URLs and PDF bytes from object storage
    text_extractor.py     PyMuPDF page text with chapter detection
    chunker.py            token-bounded, overlapping, page-tagged chunks
    embedding_service.py  batched, bounded-concurrency embedding + write-back
    persona_extractor.py  character profiles from the first chunks

The stages are sequenced by src/pipeline/book_processor.py.
"""

from src.services.ingestion.chunker import PageChunker, estimate_tokens
from src.services.ingestion.document_loader import DocumentLoader
from src.services.ingestion.embedding_service import EmbeddingService
from src.services.ingestion.persona_extractor import PersonaExtractor, parse_personas
from src.services.ingestion.text_extractor import TextExtractor

__all__ = [
    "DocumentLoader",
    "EmbeddingService",
    "PageChunker",
    "PersonaExtractor",
    "TextExtractor",
    "estimate_tokens",
    "parse_personas",
]
