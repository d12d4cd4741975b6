"""Storage providers.

    SQLiteBookStore         : books, chunks, and characters (aiosqlite)
    SupabaseStorageProvider : signed URLs and downloads for book PDFs
"""

from src.providers.storage.sqlite_book_store import SQLiteBookStore
from src.providers.storage.supabase_storage_provider import SupabaseStorageProvider

__all__ = ["SQLiteBookStore", "SupabaseStorageProvider"]
