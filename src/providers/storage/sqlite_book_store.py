"""SQLite-backed book, chunk, and character store.

# ─── ARCHITECTURE ROLE ───────────────────────────────────────────────
#
# Layer: Providers (concrete adapter implementing IBookStore).
# Database: ``data/storyshelf.db`` with three tables:
#
#   books        : catalogue rows plus the three processing-status columns
#   book_chunks  : UNIQUE(book_id, chunk_index); embedding stored as JSON
#   characters   : UNIQUE(book_id, name); upserted on re-extraction
#
# Child rows reference books(id) ON DELETE CASCADE.  Every operation opens
# its own aiosqlite connection; WAL mode keeps readers unblocked while the
# ingestion job writes.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path

import aiosqlite
import structlog

from src.interfaces.book_store import IBookStore
from src.models.book import (
    Book,
    BookCategory,
    Character,
    ChunkRef,
    Persona,
    StoredChunk,
    TextChunk,
)
from src.models.pipeline import ProcessingStatus
from src.utils.errors import ConflictError, NotFoundError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/storyshelf.db")

# ── Schema DDL ────────────────────────────────────────────────────────

_CREATE_BOOKS_TABLE = """\
CREATE TABLE IF NOT EXISTS books (
    id                   TEXT PRIMARY KEY,
    title                TEXT NOT NULL,
    author               TEXT,
    description          TEXT,
    category             TEXT NOT NULL,
    age_group            TEXT,
    processing_status    TEXT NOT NULL DEFAULT 'uploaded',
    processing_progress  TEXT,
    error_message        TEXT,
    created_at           TEXT NOT NULL
);
"""

_CREATE_CHUNKS_TABLE = """\
CREATE TABLE IF NOT EXISTS book_chunks (
    id              TEXT PRIMARY KEY,
    book_id         TEXT NOT NULL REFERENCES books(id) ON DELETE CASCADE,
    chunk_index     INTEGER NOT NULL,
    content         TEXT NOT NULL,
    token_count     INTEGER NOT NULL,
    start_page      INTEGER NOT NULL,
    end_page        INTEGER NOT NULL,
    chapter_number  INTEGER,
    embedding       TEXT,
    UNIQUE(book_id, chunk_index)
);
"""

_CREATE_CHARACTERS_TABLE = """\
CREATE TABLE IF NOT EXISTS characters (
    id                 TEXT PRIMARY KEY,
    book_id            TEXT NOT NULL REFERENCES books(id) ON DELETE CASCADE,
    name               TEXT NOT NULL,
    short_description  TEXT NOT NULL DEFAULT '',
    persona            TEXT NOT NULL DEFAULT '',
    example_phrases    TEXT NOT NULL DEFAULT '[]',
    UNIQUE(book_id, name)
);
"""

_CREATE_INDICES = [
    "CREATE INDEX IF NOT EXISTS idx_chunks_book ON book_chunks(book_id);",
    "CREATE INDEX IF NOT EXISTS idx_characters_book ON characters(book_id);",
]

# ── DML ───────────────────────────────────────────────────────────────

_BOOK_COLUMNS = (
    "id, title, author, description, category, age_group, "
    "processing_status, processing_progress, error_message, created_at"
)

_INSERT_BOOK = f"INSERT INTO books ({_BOOK_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);"

_SELECT_BOOK = f"SELECT {_BOOK_COLUMNS} FROM books WHERE id = ?;"

_SELECT_BOOKS = f"SELECT {_BOOK_COLUMNS} FROM books ORDER BY created_at DESC;"

_UPDATE_STATUS = """\
UPDATE books
SET processing_status = ?, processing_progress = ?, error_message = ?
WHERE id = ?;
"""

_INSERT_CHUNK = """\
INSERT INTO book_chunks
    (id, book_id, chunk_index, content, token_count, start_page, end_page, chapter_number)
VALUES (?, ?, ?, ?, ?, ?, ?, ?);
"""

_UPDATE_EMBEDDING = "UPDATE book_chunks SET embedding = ? WHERE id = ?;"

_SELECT_CHUNKS = """\
SELECT id, book_id, chunk_index, content, token_count, start_page, end_page,
       chapter_number, embedding
FROM book_chunks WHERE book_id = ? ORDER BY chunk_index;
"""

_DELETE_CHUNKS = "DELETE FROM book_chunks WHERE book_id = ?;"

_UPSERT_CHARACTER = """\
INSERT INTO characters (id, book_id, name, short_description, persona, example_phrases)
VALUES (?, ?, ?, ?, ?, ?)
ON CONFLICT(book_id, name)
DO UPDATE SET short_description = excluded.short_description,
              persona = excluded.persona,
              example_phrases = excluded.example_phrases;
"""

_CHARACTER_COLUMNS = "id, book_id, name, short_description, persona, example_phrases"

_SELECT_CHARACTER_BY_NAME = (
    f"SELECT {_CHARACTER_COLUMNS} FROM characters WHERE book_id = ? AND name = ?;"
)

_SELECT_CHARACTER = f"SELECT {_CHARACTER_COLUMNS} FROM characters WHERE book_id = ? AND id = ?;"

_SELECT_CHARACTERS = f"SELECT {_CHARACTER_COLUMNS} FROM characters WHERE book_id = ? ORDER BY name;"


class SQLiteBookStore(IBookStore):
    """SQLite persistence for books, chunks, and characters."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        """Create tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute("PRAGMA journal_mode=WAL;")
            await db.execute(_CREATE_BOOKS_TABLE)
            await db.execute(_CREATE_CHUNKS_TABLE)
            await db.execute(_CREATE_CHARACTERS_TABLE)
            for idx_sql in _CREATE_INDICES:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("book_db_initialized", path=str(self._db_path))

    def get_provider_name(self) -> str:
        return "sqlite_books"

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(str(self._db_path))

    # ── Books ──────────────────────────────────────────────────────────

    async def create_book(self, book: Book) -> Book:
        async with self._connect() as db:
            try:
                await db.execute(
                    _INSERT_BOOK,
                    (
                        book.id,
                        book.title,
                        book.author,
                        book.description,
                        book.category.value,
                        book.age_group,
                        book.processing_status.value,
                        book.processing_progress,
                        book.error_message,
                        book.created_at.isoformat(),
                    ),
                )
                await db.commit()
            except sqlite3.IntegrityError as exc:
                raise ConflictError(
                    message=f"Book {book.id} already exists",
                    provider_name=self.get_provider_name(),
                ) from exc
        logger.info("book_created", book_id=book.id, category=book.category.value)
        return book

    async def get_book(self, book_id: str) -> Book | None:
        async with self._connect() as db:
            cursor = await db.execute(_SELECT_BOOK, (book_id,))
            row = await cursor.fetchone()
        return _row_to_book(row) if row else None

    async def list_books(self) -> list[Book]:
        async with self._connect() as db:
            cursor = await db.execute(_SELECT_BOOKS)
            rows = await cursor.fetchall()
        return [_row_to_book(r) for r in rows]

    async def update_book_status(
        self,
        book_id: str,
        status: ProcessingStatus,
        progress: str | None = None,
        error_message: str | None = None,
    ) -> None:
        async with self._connect() as db:
            cursor = await db.execute(
                _UPDATE_STATUS, (status.value, progress, error_message, book_id)
            )
            await db.commit()
            if cursor.rowcount == 0:
                raise NotFoundError(
                    message=f"Book {book_id} not found",
                    provider_name=self.get_provider_name(),
                )

    # ── Chunks ─────────────────────────────────────────────────────────

    async def insert_chunks(self, book_id: str, chunks: Sequence[TextChunk]) -> list[ChunkRef]:
        """Insert every chunk in one transaction; all-or-nothing."""
        refs = [ChunkRef(id=str(uuid.uuid4()), chunk_index=c.chunk_index) for c in chunks]
        if not refs:
            return []
        rows = [
            (
                ref.id,
                book_id,
                c.chunk_index,
                c.content,
                c.token_count,
                c.start_page,
                c.end_page,
                c.chapter_number,
            )
            for ref, c in zip(refs, chunks, strict=True)
        ]
        async with self._connect() as db:
            await db.execute("PRAGMA foreign_keys=ON;")
            try:
                await db.executemany(_INSERT_CHUNK, rows)
                await db.commit()
            except sqlite3.IntegrityError as exc:
                await db.rollback()
                raise ConflictError(
                    message=f"Chunks for book {book_id} conflict with existing rows: {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc
        logger.info("chunks_inserted", book_id=book_id, count=len(refs))
        return refs

    async def update_chunk_embeddings(self, embeddings: dict[str, list[float]]) -> int:
        if not embeddings:
            return 0
        async with self._connect() as db:
            updated = 0
            for chunk_id, vector in embeddings.items():
                cursor = await db.execute(_UPDATE_EMBEDDING, (json.dumps(vector), chunk_id))
                updated += cursor.rowcount
            await db.commit()
        return updated

    async def list_chunks(self, book_id: str) -> list[StoredChunk]:
        async with self._connect() as db:
            cursor = await db.execute(_SELECT_CHUNKS, (book_id,))
            rows = await cursor.fetchall()
        return [
            StoredChunk(
                id=r[0],
                book_id=r[1],
                chunk_index=r[2],
                content=r[3],
                token_count=r[4],
                start_page=r[5],
                end_page=r[6],
                chapter_number=r[7],
                embedding=json.loads(r[8]) if r[8] else None,
            )
            for r in rows
        ]

    async def delete_chunks(self, book_id: str) -> int:
        async with self._connect() as db:
            cursor = await db.execute(_DELETE_CHUNKS, (book_id,))
            await db.commit()
            deleted = cursor.rowcount
        logger.info("chunks_deleted", book_id=book_id, count=deleted)
        return deleted

    # ── Characters ─────────────────────────────────────────────────────

    async def upsert_character(self, book_id: str, persona: Persona) -> Character:
        async with self._connect() as db:
            await db.execute("PRAGMA foreign_keys=ON;")
            try:
                await db.execute(
                    _UPSERT_CHARACTER,
                    (
                        str(uuid.uuid4()),
                        book_id,
                        persona.name,
                        persona.short_description,
                        persona.persona,
                        json.dumps(persona.example_phrases),
                    ),
                )
                await db.commit()
            except sqlite3.IntegrityError as exc:
                raise NotFoundError(
                    message=f"Book {book_id} not found",
                    provider_name=self.get_provider_name(),
                ) from exc
            cursor = await db.execute(_SELECT_CHARACTER_BY_NAME, (book_id, persona.name))
            row = await cursor.fetchone()
        return _row_to_character(row)

    async def get_character(self, book_id: str, character_id: str) -> Character | None:
        async with self._connect() as db:
            cursor = await db.execute(_SELECT_CHARACTER, (book_id, character_id))
            row = await cursor.fetchone()
        return _row_to_character(row) if row else None

    async def list_characters(self, book_id: str) -> list[Character]:
        async with self._connect() as db:
            cursor = await db.execute(_SELECT_CHARACTERS, (book_id,))
            rows = await cursor.fetchall()
        return [_row_to_character(r) for r in rows]


# ── Row mappers ───────────────────────────────────────────────────────


def _row_to_book(row: Sequence) -> Book:
    return Book(
        id=row[0],
        title=row[1],
        author=row[2],
        description=row[3],
        category=BookCategory(row[4]),
        age_group=row[5],
        processing_status=ProcessingStatus(row[6]),
        processing_progress=row[7],
        error_message=row[8],
        created_at=datetime.fromisoformat(row[9]),
    )


def _row_to_character(row: Sequence) -> Character:
    return Character(
        id=row[0],
        book_id=row[1],
        name=row[2],
        short_description=row[3],
        persona=row[4],
        example_phrases=json.loads(row[5]) if row[5] else [],
    )
