"""
SQLite Entry Repository for ContextVault

Reference CandidateStore backed by SQLite:
- Full-text search via FTS5 (bm25 relevance)
- Embeddings stored as JSON next to each entry, with checksum and model
- Per-user scoping

The ranking core only sees the CandidateStore / EmbeddingRepository
protocols below; any storage engine that honours them can replace this.

Usage:
    from database.repository import EntryRepository

    repo = EntryRepository('data/contextvault.db')
    repo.save({'id': 'e1', 'user_id': 'u1', 'title': 'Ethics of ML', 'content': '...'})
    hits = repo.find_lexical_matches("machine learning ethics", scope='u1')
"""

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

from search.embeddings import generate_preview, prepare_entry_text
from search.models import EmbeddingSource, LexicalHit, SearchableItem

logger = logging.getLogger(__name__)


# =============================================================================
# Collaborator Protocols
# =============================================================================

class CandidateStore(Protocol):
    """What the search service needs from storage to rank."""

    def find_lexical_matches(
        self,
        query: str,
        scope: str,
        limit: int = 20,
        filters: Optional[Dict[str, Any]] = None
    ) -> List[LexicalHit]:
        ...

    def list_vectors(
        self,
        scope: str,
        filters: Optional[Dict[str, Any]] = None
    ) -> List[SearchableItem]:
        ...


class EmbeddingRepository(Protocol):
    """What the search service needs from storage to (re)generate embeddings."""

    def list_embedding_sources(
        self,
        scope: str,
        entry_ids: Optional[Sequence[str]] = None
    ) -> List[EmbeddingSource]:
        ...

    def save_embedding(
        self,
        entry_id: str,
        vector: Sequence[float],
        checksum: str,
        model: str
    ) -> bool:
        ...


# =============================================================================
# Schema
# =============================================================================

SCHEMA = '''
CREATE TABLE IF NOT EXISTS entries (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT,
    content TEXT NOT NULL,
    tags TEXT,  -- JSON array
    source TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,

    -- Embedding
    embedding TEXT,  -- JSON array of floats
    embedding_checksum TEXT,
    embedding_model TEXT,
    embedding_dimension INTEGER,
    embedding_generated_at TEXT
);

CREATE VIRTUAL TABLE IF NOT EXISTS entries_fts USING fts5(
    title,
    content,
    tags,
    content=entries,
    content_rowid=rowid,
    tokenize='porter unicode61'
);

CREATE TRIGGER IF NOT EXISTS entries_ai AFTER INSERT ON entries BEGIN
    INSERT INTO entries_fts(rowid, title, content, tags)
    VALUES (NEW.rowid, NEW.title, NEW.content, NEW.tags);
END;

CREATE TRIGGER IF NOT EXISTS entries_ad AFTER DELETE ON entries BEGIN
    INSERT INTO entries_fts(entries_fts, rowid, title, content, tags)
    VALUES ('delete', OLD.rowid, OLD.title, OLD.content, OLD.tags);
END;

CREATE TRIGGER IF NOT EXISTS entries_au AFTER UPDATE OF title, content, tags ON entries BEGIN
    INSERT INTO entries_fts(entries_fts, rowid, title, content, tags)
    VALUES ('delete', OLD.rowid, OLD.title, OLD.content, OLD.tags);
    INSERT INTO entries_fts(rowid, title, content, tags)
    VALUES (NEW.rowid, NEW.title, NEW.content, NEW.tags);
END;

CREATE INDEX IF NOT EXISTS idx_entries_user ON entries(user_id);
CREATE INDEX IF NOT EXISTS idx_entries_source ON entries(source);
'''

ENTRY_COLUMNS = ('id', 'user_id', 'title', 'content', 'tags', 'source', 'created_at')


def build_fts_query(query: str) -> Optional[str]:
    """
    Build an FTS5 query from free text.

    Each term is stripped of FTS syntax characters and the terms are OR-ed
    for recall. Returns None when nothing searchable is left.
    """
    escaped = []
    for term in query.strip().split():
        clean = ''.join(c for c in term if c.isalnum() or c in '_')
        if clean:
            escaped.append(f'"{clean}"')

    if not escaped:
        return None

    return ' OR '.join(escaped)


class EntryRepository:
    """
    Repository for entry storage, full-text search and embedding state.
    """

    def __init__(self, db_path: str = None):
        """
        Initialize the repository.

        Args:
            db_path: Path to SQLite database. Defaults to data/contextvault.db
        """
        if db_path is None:
            db_path = Path(__file__).parent.parent / 'data' / 'contextvault.db'

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_db()

    def _init_db(self):
        """Initialize the database schema."""
        with self._connection() as conn:
            conn.executescript(SCHEMA)

    @contextmanager
    def _connection(self):
        """Get a database connection with proper cleanup."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # =========================================================================
    # CRUD Operations
    # =========================================================================

    def save(self, entry: Dict[str, Any]) -> str:
        """
        Insert or update an entry's content.

        Embedding columns are left untouched on update; a content change is
        detected later through the checksum.

        Args:
            entry: Dict with 'user_id' and 'content', optionally 'id',
                   'title', 'tags', 'source', 'created_at'

        Returns:
            The entry id
        """
        if not entry.get('user_id'):
            raise ValueError('entry requires user_id')
        if not entry.get('content'):
            raise ValueError('entry requires content')

        data = {key: entry.get(key) for key in ENTRY_COLUMNS}
        data['id'] = data['id'] or str(uuid.uuid4())
        data['created_at'] = data['created_at'] or datetime.now().isoformat()
        if data['tags'] is not None and not isinstance(data['tags'], str):
            data['tags'] = json.dumps(list(data['tags']))

        with self._connection() as conn:
            conn.execute('''
                INSERT INTO entries (id, user_id, title, content, tags, source, created_at, updated_at)
                VALUES (:id, :user_id, :title, :content, :tags, :source, :created_at, :updated_at)
                ON CONFLICT(id) DO UPDATE SET
                    title = excluded.title,
                    content = excluded.content,
                    tags = excluded.tags,
                    source = excluded.source,
                    updated_at = excluded.updated_at
            ''', {**data, 'updated_at': datetime.now().isoformat()})

        return data['id']

    def get(self, entry_id: str, scope: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Get an entry by id, optionally restricted to a user scope."""
        sql = 'SELECT * FROM entries WHERE id = ?'
        params: List[Any] = [entry_id]
        if scope is not None:
            sql += ' AND user_id = ?'
            params.append(scope)

        with self._connection() as conn:
            row = conn.execute(sql, params).fetchone()

        return self._row_to_dict(row) if row else None

    def delete(self, entry_id: str) -> bool:
        """Delete an entry."""
        with self._connection() as conn:
            cursor = conn.execute('DELETE FROM entries WHERE id = ?', (entry_id,))
            return cursor.rowcount > 0

    def count(self, scope: str) -> int:
        """Number of entries in a scope."""
        with self._connection() as conn:
            row = conn.execute('SELECT COUNT(*) FROM entries WHERE user_id = ?', (scope,)).fetchone()
            return row[0]

    # =========================================================================
    # CandidateStore
    # =========================================================================

    def find_lexical_matches(
        self,
        query: str,
        scope: str,
        limit: int = 20,
        filters: Optional[Dict[str, Any]] = None
    ) -> List[LexicalHit]:
        """
        Full-text search within a scope, best match first.

        Scores are bm25 relevance divided by the best relevance among the
        returned rows, so the top hit scores 1.0 and every score is in [0, 1].

        Args:
            query: Free-text query
            scope: User id
            limit: Maximum hits
            filters: Optional 'source' (str) and 'tags' (list, any match)
        """
        fts_query = build_fts_query(query or '')
        if fts_query is None:
            return []

        where, params = self._filter_clause(filters)

        sql = f'''
            SELECT e.id, e.title, e.content, e.tags, e.source, e.created_at,
                   bm25(entries_fts) AS rank
            FROM entries_fts
            JOIN entries e ON entries_fts.rowid = e.rowid
            WHERE entries_fts MATCH ? AND e.user_id = ? {where}
            ORDER BY rank, e.id
            LIMIT ?
        '''

        with self._connection() as conn:
            rows = conn.execute(sql, [fts_query, scope, *params, limit]).fetchall()

        # bm25() is lower for better matches; scale so the best hit scores 1.0
        relevances = [max(-row['rank'], 0.0) for row in rows]
        best = max(relevances, default=0.0)

        hits = []
        for row, relevance in zip(rows, relevances):
            hits.append(LexicalHit(
                id=row['id'],
                score=relevance / best if best > 0 else 0.0,
                metadata=self._display_metadata(row),
            ))
        return hits

    def list_vectors(
        self,
        scope: str,
        filters: Optional[Dict[str, Any]] = None,
        only_embedded: bool = False
    ) -> List[SearchableItem]:
        """
        All entries in a scope with their stored embeddings (vector may be None).
        """
        where, params = self._filter_clause(filters)
        if only_embedded:
            where += ' AND e.embedding IS NOT NULL'

        sql = f'''
            SELECT e.id, e.title, e.content, e.tags, e.source, e.created_at,
                   e.embedding, e.embedding_checksum
            FROM entries e
            WHERE e.user_id = ? {where}
            ORDER BY e.created_at, e.id
        '''

        with self._connection() as conn:
            rows = conn.execute(sql, [scope, *params]).fetchall()

        return [
            SearchableItem(
                id=row['id'],
                vector=json.loads(row['embedding']) if row['embedding'] else None,
                vector_checksum=row['embedding_checksum'],
                display_metadata=self._display_metadata(row),
            )
            for row in rows
        ]

    # =========================================================================
    # EmbeddingRepository
    # =========================================================================

    def list_embedding_sources(
        self,
        scope: str,
        entry_ids: Optional[Sequence[str]] = None
    ) -> List[EmbeddingSource]:
        """Text to embed and recorded embedding state for entries in a scope."""
        sql = '''
            SELECT id, title, content, tags, embedding_checksum,
                   embedding IS NOT NULL AS has_vector
            FROM entries
            WHERE user_id = ?
        '''
        params: List[Any] = [scope]

        if entry_ids is not None:
            if not entry_ids:
                return []
            sql += f" AND id IN ({', '.join('?' for _ in entry_ids)})"
            params.extend(entry_ids)

        sql += ' ORDER BY created_at, id'

        with self._connection() as conn:
            rows = conn.execute(sql, params).fetchall()

        return [
            EmbeddingSource(
                entry_id=row['id'],
                text=prepare_entry_text(row['title'], row['content'], self._parse_tags(row['tags'])),
                recorded_checksum=row['embedding_checksum'],
                has_vector=bool(row['has_vector']),
            )
            for row in rows
        ]

    def save_embedding(
        self,
        entry_id: str,
        vector: Sequence[float],
        checksum: str,
        model: str
    ) -> bool:
        """Persist an embedding and the checksum of the text it came from."""
        values = [float(v) for v in vector]

        with self._connection() as conn:
            cursor = conn.execute('''
                UPDATE entries
                SET embedding = ?, embedding_checksum = ?, embedding_model = ?,
                    embedding_dimension = ?, embedding_generated_at = ?
                WHERE id = ?
            ''', (json.dumps(values), checksum, model, len(values),
                  datetime.now().isoformat(), entry_id))
            return cursor.rowcount > 0

    def clear_embedding(self, entry_id: str) -> bool:
        """Remove an entry's stored embedding."""
        with self._connection() as conn:
            cursor = conn.execute('''
                UPDATE entries
                SET embedding = NULL, embedding_checksum = NULL, embedding_model = NULL,
                    embedding_dimension = NULL, embedding_generated_at = NULL
                WHERE id = ?
            ''', (entry_id,))
            return cursor.rowcount > 0

    # =========================================================================
    # Statistics
    # =========================================================================

    def embedding_stats(self, scope: str) -> Dict[str, Any]:
        """How many entries in a scope have embeddings."""
        with self._connection() as conn:
            row = conn.execute('''
                SELECT COUNT(*) AS total,
                       SUM(CASE WHEN embedding IS NOT NULL THEN 1 ELSE 0 END) AS embedded
                FROM entries
                WHERE user_id = ?
            ''', (scope,)).fetchone()

        total = row['total'] or 0
        embedded = row['embedded'] or 0

        return {
            'total_entries': total,
            'with_embeddings': embedded,
            'without_embeddings': total - embedded,
            'vector_search_enabled': embedded > 0,
        }

    def popular_tags(self, scope: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Most common tags in a scope."""
        counts: Dict[str, int] = {}
        with self._connection() as conn:
            rows = conn.execute('SELECT tags FROM entries WHERE user_id = ?', (scope,)).fetchall()

        for row in rows:
            for tag in self._parse_tags(row['tags']):
                counts[tag] = counts.get(tag, 0) + 1

        ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [{'tag': tag, 'count': count} for tag, count in ordered[:limit]]

    # =========================================================================
    # Helpers
    # =========================================================================

    def _filter_clause(self, filters: Optional[Dict[str, Any]]):
        filters = filters or {}
        parts = []
        params: List[Any] = []

        if filters.get('source'):
            parts.append('e.source = ?')
            params.append(filters['source'])

        if filters.get('tags'):
            tag_parts = []
            for tag in filters['tags']:
                tag_parts.append('e.tags LIKE ?')
                params.append(f'%{json.dumps(tag)}%')
            parts.append(f"({' OR '.join(tag_parts)})")

        clause = ''.join(f' AND {p}' for p in parts)
        return clause, params

    def _display_metadata(self, row: sqlite3.Row) -> Dict[str, Any]:
        return {
            'title': row['title'] or 'Untitled',
            'preview': generate_preview(row['content']),
            'tags': self._parse_tags(row['tags']),
            'source': row['source'],
            'created_at': row['created_at'],
        }

    def _parse_tags(self, tags_str: Optional[str]) -> List[str]:
        """Parse tags from JSON string."""
        if not tags_str:
            return []

        try:
            tags = json.loads(tags_str)
        except json.JSONDecodeError:
            logger.warning(f"Ignoring malformed tags value: {tags_str[:50]}")
            return []

        return tags if isinstance(tags, list) else []

    def _row_to_dict(self, row: sqlite3.Row) -> Dict[str, Any]:
        data = dict(row)
        data['tags'] = self._parse_tags(data.get('tags'))
        if data.get('embedding'):
            data['embedding'] = json.loads(data['embedding'])
        return data
