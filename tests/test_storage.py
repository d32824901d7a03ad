"""
Tests for the SQLite graph store: uniqueness, connection upserts, lookups and
error translation.
"""

import pytest

from podgraph.storage import Database, GraphStore
from podgraph.utils.errors import StoreUnavailableError, TransientStoreError


class TestEntities:
    def test_create_entity(self, graph):
        entity, created = graph.create_entity("Apple Inc.", "Company", "Maker of the iPhone")

        assert created is True
        assert entity.normalized_name == "apple"
        assert entity.name == "Apple Inc."
        assert graph.get_entity(entity.id) == entity

    def test_same_normalized_name_and_type_converges(self, graph):
        first, _ = graph.create_entity("Apple", "Company")
        second, created = graph.create_entity("Apple Inc.", "Company")

        assert created is False
        assert second.id == first.id
        assert graph.count_entities() == 1

    def test_same_name_different_type_is_distinct(self, graph):
        graph.create_entity("Apple", "Company")
        graph.create_entity("Apple", "Topic")
        assert graph.count_entities() == 2
        assert graph.count_entities("Topic") == 1

    def test_update_keeps_normalized_name(self, graph):
        entity, _ = graph.create_entity("Apple", "Company")
        graph.update_entity(entity.id, name="Apple Inc.", description="Consumer electronics")

        updated = graph.get_entity(entity.id)
        assert updated.name == "Apple Inc."
        assert updated.description == "Consumer electronics"
        assert updated.normalized_name == "apple"

    def test_find_exact_is_case_insensitive(self, graph):
        graph.create_entity("NVIDIA", "Company")
        assert graph.find_exact("nvidia", "Company")[0].name == "NVIDIA"
        assert graph.find_exact("nvidia", "Person") == []

    def test_find_fuzzy_orders_by_score(self, graph):
        graph.create_entity("Goldman Sachs", "Company")
        graph.create_entity("Gold Fields", "Company")

        hits = graph.find_fuzzy("goldmann sachs", "Company", threshold=0.3)
        assert hits[0][0].name == "Goldman Sachs"
        assert hits[0][1] == pytest.approx(13 / 16)
        assert all(score > 0.3 for _, score in hits)

    def test_find_containing_both_directions(self, graph):
        graph.create_entity("Berkshire Hathaway", "Company")
        assert graph.find_containing("berkshire")[0].name == "Berkshire Hathaway"
        assert graph.find_containing("Berkshire Hathaway Energy")[0].name == "Berkshire Hathaway"

    def test_similarity_sql_function(self, db):
        row = db.query_one("SELECT similarity('word', 'two words') AS s")
        assert row["s"] == pytest.approx(4 / 11)


class TestMentions:
    def test_mention_is_recorded_once(self, graph):
        entity, _ = graph.create_entity("Apple", "Company")
        assert graph.upsert_mention("ep-1", entity.id) is True
        assert graph.upsert_mention("ep-1", entity.id) is False
        graph.upsert_mention("ep-2", entity.id)
        assert [m.episode_id for m in graph.mentions_of(entity.id)] == ["ep-1", "ep-2"]

    def test_common_episode(self, graph):
        a, _ = graph.create_entity("Apple", "Company")
        b, _ = graph.create_entity("Tim Cook", "Person")
        graph.upsert_mention("ep-1", a.id)
        graph.upsert_mention("ep-2", a.id)
        graph.upsert_mention("ep-2", b.id)

        assert graph.common_episode(a.id, b.id) == "ep-2"
        c, _ = graph.create_entity("Microsoft", "Company")
        assert graph.common_episode(a.id, c.id) is None


class TestConnections:
    @pytest.fixture
    def pair(self, graph):
        a, _ = graph.create_entity("Tim Cook", "Person")
        b, _ = graph.create_entity("Apple", "Company")
        return a, b

    def test_strength_increments(self, graph, pair):
        a, b = pair
        first, created = graph.upsert_connection("ep-1", a.id, b.id, "CEO", 0.9)
        second, created_again = graph.upsert_connection("ep-1", a.id, b.id, "CEO", 0.9)

        assert created is True and first.strength == 1
        assert created_again is False and second.strength == 2
        assert second.id == first.id

    def test_other_episode_is_a_new_connection(self, graph, pair):
        a, b = pair
        graph.upsert_connection("ep-1", a.id, b.id)
        _, created = graph.upsert_connection("ep-2", a.id, b.id)
        assert created is True
        assert graph.connection_stats()["connections"] == 2

    def test_description_replacement(self, graph, pair):
        a, b = pair
        graph.upsert_connection("ep-1", a.id, b.id, "CEO")
        graph.upsert_connection("ep-1", a.id, b.id, "Chief executive of Apple")
        assert graph.get_connection("ep-1", a.id, b.id).description == "Chief executive of Apple"

        graph.upsert_connection("ep-1", a.id, b.id, "")
        assert graph.get_connection("ep-1", a.id, b.id).description == "Chief executive of Apple"

    def test_description_kept_when_replacement_disabled(self, graph, pair):
        a, b = pair
        graph.upsert_connection("ep-1", a.id, b.id, "CEO")
        graph.upsert_connection("ep-1", a.id, b.id, "Something else", replace_description=False)
        assert graph.get_connection("ep-1", a.id, b.id).description == "CEO"

    def test_confidence_keeps_maximum(self, graph, pair):
        a, b = pair
        graph.upsert_connection("ep-1", a.id, b.id, confidence=0.9)
        graph.upsert_connection("ep-1", a.id, b.id, confidence=0.6)
        assert graph.get_connection("ep-1", a.id, b.id).confidence == pytest.approx(0.9)

    def test_self_loop_rejected(self, graph, pair):
        a, _ = pair
        with pytest.raises(ValueError):
            graph.upsert_connection("ep-1", a.id, a.id)

    def test_connection_stats(self, graph, pair):
        a, b = pair
        graph.upsert_connection("ep-1", a.id, b.id)
        graph.upsert_connection("ep-1", a.id, b.id)
        graph.upsert_connection("ep-2", a.id, b.id)

        stats = graph.connection_stats()
        assert stats == {"connections": 2, "totalStrength": 3, "averageStrength": 1.5, "maxStrength": 2}
        assert graph.connection_exists_between(a.id, b.id)
        assert not graph.connection_exists_between(b.id, a.id)


class TestErrorTranslation:
    def test_sql_error_is_transient(self, db):
        with pytest.raises(TransientStoreError):
            db.query("SELECT * FROM missing_table")

    def test_closed_database_is_unavailable(self, tmp_path):
        database = Database(tmp_path / "closed.db")
        database.init_schema()
        database.close()
        with pytest.raises(StoreUnavailableError):
            GraphStore(database).count_entities()

    def test_unopenable_path_is_unavailable(self, tmp_path):
        with pytest.raises(StoreUnavailableError):
            Database(tmp_path).init_schema()
