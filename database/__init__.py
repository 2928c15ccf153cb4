"""
Database Layer for ContextVault

SQLite-based entry storage with FTS5 full-text search and stored embeddings.

Usage:
    from database import EntryRepository

    repo = EntryRepository()
    repo.save({'user_id': 'u1', 'title': 'Flask errors', 'content': '...'})
    hits = repo.find_lexical_matches("python flask error", scope='u1', limit=10)
"""

from .repository import CandidateStore, EmbeddingRepository, EntryRepository

__all__ = [
    'CandidateStore',
    'EmbeddingRepository',
    'EntryRepository',
]
