"""
Tests for the SQLite entry repository.

Uses a temporary database per test.
"""

from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from database.repository import EntryRepository, build_fts_query
from search.embeddings import prepare_entry_text
from search.lifecycle import compute_checksum
from tests.fixtures.sample_data import OTHER_USER_ID, SAMPLE_VECTORS, USER_ID, seed_repository


@pytest.fixture
def repo(tmp_path):
    return EntryRepository(tmp_path / 'test.db')


@pytest.fixture
def seeded(repo):
    return seed_repository(repo)


class TestFtsQuery:
    """Tests for build_fts_query."""

    def test_terms_are_or_ed(self):
        assert build_fts_query('machine learning') == '"machine" OR "learning"'

    def test_strips_syntax(self):
        assert build_fts_query('ethics* AND "ml"') == '"ethics" OR "AND" OR "ml"'

    def test_nothing_searchable(self):
        assert build_fts_query('  ** ') is None
        assert build_fts_query('') is None


class TestCrud:
    """Tests for save/get/delete/count."""

    def test_save_and_get(self, repo):
        entry_id = repo.save({
            'user_id': USER_ID,
            'title': 'Hello',
            'content': 'World',
            'tags': ['greeting'],
        })

        entry = repo.get(entry_id)
        assert entry['title'] == 'Hello'
        assert entry['tags'] == ['greeting']
        assert entry['embedding'] is None

    def test_get_respects_scope(self, seeded):
        assert seeded.get('E1', scope=USER_ID) is not None
        assert seeded.get('E1', scope=OTHER_USER_ID) is None

    def test_update_keeps_embedding(self, seeded):
        seeded.save({'id': 'E1', 'user_id': USER_ID, 'title': 'New title', 'content': 'New content'})

        entry = seeded.get('E1')
        assert entry['title'] == 'New title'
        assert entry['embedding'] == SAMPLE_VECTORS['E1']

    def test_requires_content(self, repo):
        with pytest.raises(ValueError):
            repo.save({'user_id': USER_ID, 'title': 'No content'})

    def test_requires_user(self, repo):
        with pytest.raises(ValueError):
            repo.save({'content': 'Orphan'})

    def test_delete(self, seeded):
        assert seeded.delete('E4') is True
        assert seeded.get('E4') is None
        assert seeded.delete('E4') is False

    def test_count(self, seeded):
        assert seeded.count(USER_ID) == 4
        assert seeded.count(OTHER_USER_ID) == 1


class TestLexicalMatches:
    """Tests for find_lexical_matches."""

    def test_finds_matching_entries(self, seeded):
        hits = seeded.find_lexical_matches('machine learning ethics', scope=USER_ID)
        ids = [h.id for h in hits]

        assert 'E1' in ids
        assert 'E3' not in ids

    def test_scoped_to_user(self, seeded):
        hits = seeded.find_lexical_matches('machine learning ethics', scope=USER_ID)
        assert 'X1' not in [h.id for h in hits]

    def test_scores_normalized_and_ordered(self, seeded):
        hits = seeded.find_lexical_matches('ethics', scope=USER_ID)

        assert hits
        assert hits[0].score == 1.0
        assert all(0 <= h.score <= 1 for h in hits)
        scores = [h.score for h in hits]
        assert scores == sorted(scores, reverse=True)

    def test_metadata(self, seeded):
        hits = seeded.find_lexical_matches('sourdough', scope=USER_ID)

        assert hits[0].id == 'E4'
        assert hits[0].metadata['title'] == 'Sourdough schedule'
        assert hits[0].metadata['tags'] == ['cooking']
        assert hits[0].metadata['preview'].startswith('Feed the starter')

    def test_limit(self, seeded):
        assert len(seeded.find_lexical_matches('ethics', scope=USER_ID, limit=1)) == 1

    def test_source_filter(self, seeded):
        hits = seeded.find_lexical_matches('hooks ethics', scope=USER_ID, filters={'source': 'bookmarks'})
        assert [h.id for h in hits] == ['E3']

    def test_tag_filter(self, seeded):
        hits = seeded.find_lexical_matches('ethics', scope=USER_ID, filters={'tags': ['checklist']})
        assert [h.id for h in hits] == ['E2']

    def test_empty_query(self, seeded):
        assert seeded.find_lexical_matches('   ', scope=USER_ID) == []

    def test_index_follows_updates(self, seeded):
        seeded.save({'id': 'E4', 'user_id': USER_ID, 'title': 'Bread', 'content': 'Rye loaf notes'})

        assert seeded.find_lexical_matches('sourdough', scope=USER_ID) == []
        assert [h.id for h in seeded.find_lexical_matches('rye', scope=USER_ID)] == ['E4']


class TestVectors:
    """Tests for list_vectors and embedding storage."""

    def test_list_vectors(self, seeded):
        items = {item.id: item for item in seeded.list_vectors(USER_ID)}

        assert set(items) == {'E1', 'E2', 'E3', 'E4'}
        assert items['E1'].vector == SAMPLE_VECTORS['E1']
        assert items['E1'].vector_checksum is not None
        assert items['E1'].display_metadata['title'].startswith('Machine learning')

    def test_list_vectors_without_embeddings(self, repo):
        seed_repository(repo, with_vectors=False)

        items = repo.list_vectors(USER_ID)
        assert all(item.vector is None for item in items)
        assert repo.list_vectors(USER_ID, only_embedded=True) == []

    def test_save_embedding_unknown_entry(self, repo):
        assert repo.save_embedding('nope', [0.1], 'abc', 'model') is False

    def test_clear_embedding(self, seeded):
        assert seeded.clear_embedding('E1')
        assert seeded.get('E1')['embedding'] is None

    def test_embedding_sources(self, seeded):
        sources = {s.entry_id: s for s in seeded.list_embedding_sources(USER_ID)}

        e1 = sources['E1']
        assert e1.has_vector is True
        assert e1.recorded_checksum == compute_checksum(e1.text)
        assert e1.text.startswith('Machine learning ethics reading notes')

    def test_embedding_sources_by_id(self, seeded):
        sources = seeded.list_embedding_sources(USER_ID, entry_ids=['E2', 'X1'])
        assert [s.entry_id for s in sources] == ['E2']
        assert seeded.list_embedding_sources(USER_ID, entry_ids=[]) == []

    def test_embedding_stats(self, seeded):
        seeded.clear_embedding('E4')

        stats = seeded.embedding_stats(USER_ID)

        assert stats == {
            'total_entries': 4,
            'with_embeddings': 3,
            'without_embeddings': 1,
            'vector_search_enabled': True,
        }

    def test_embedding_stats_empty_scope(self, repo):
        assert repo.embedding_stats('nobody')['vector_search_enabled'] is False

    def test_popular_tags(self, seeded):
        tags = seeded.popular_tags(USER_ID, limit=2)
        assert tags[0] == {'tag': 'ethics', 'count': 2}

    def test_text_matches_prepare_entry_text(self, seeded):
        entry = seeded.get('E3')
        source = seeded.list_embedding_sources(USER_ID, ['E3'])[0]

        assert source.text == prepare_entry_text(entry['title'], entry['content'], entry['tags'])
