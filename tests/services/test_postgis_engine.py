"""PostGIS engine tests against a mocked session"""

from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from oz_locator.engines import InMemoryZoneEngine, PostGISZoneEngine, create_engine_for
from oz_locator.engines.postgis import INSERT_SQL, LOCATE_SQL, PRUNE_SQL, STATS_SQL, PostGISZones
from oz_locator.errors import CacheUnavailableError
from oz_locator.services.zone_cache import CacheSnapshot
from oz_locator.services.zone_service import ZoneService
from tests.zone_fixtures import UNIT_SQUARE, collection, polygon_feature, sample_collection, square


def make_snapshot(preprocessor, count):
    features = [polygon_feature([square(float(i * 2), 0.0, 1.0)], GEOID=f"z-{i}") for i in range(count)]
    dataset = preprocessor.process_collection(collection(*features))
    return CacheSnapshot.from_dataset(dataset, timedelta(hours=24), datetime(2026, 1, 1))


def postgis_session(stored_count=0, available=True, located=None):
    session = MagicMock()

    def execute(statement, params=None):
        sql = str(statement)
        result = MagicMock()
        if "pg_extension" in sql:
            result.scalar.return_value = available
        elif statement is LOCATE_SQL:
            result.one.return_value = located or SimpleNamespace(geoid=None, candidate_count=0)
        elif "SELECT COUNT(*)" in sql:
            result.scalar.return_value = stored_count
        return result

    session.execute.side_effect = execute
    return session


def calls_of(session, statement):
    return [c for c in session.execute.call_args_list if c.args[0] is statement]


class TestPostGISZoneEngine:
    """Extension check, hash-keyed storage and lookups"""

    def test_availability_checked_once(self):
        session = postgis_session()
        engine = PostGISZoneEngine(session_factory=lambda: session)

        assert engine.is_available() is True
        assert engine.is_available() is True
        assert session.execute.call_count == 1

    def test_missing_extension_raises(self, preprocessor):
        engine = PostGISZoneEngine(session_factory=lambda: postgis_session(available=False))

        with pytest.raises(CacheUnavailableError):
            engine.load(make_snapshot(preprocessor, 1))

    def test_load_stores_in_batches(self, preprocessor):
        session = postgis_session(stored_count=0)
        engine = PostGISZoneEngine(session_factory=lambda: session, batch_size=2, simplify_tolerance=0.001)
        snapshot = make_snapshot(preprocessor, 5)

        zones = engine.load(snapshot)

        inserts = calls_of(session, INSERT_SQL)
        assert [len(c.args[1]) for c in inserts] == [2, 2, 1]
        first_row = inserts[0].args[1][0]
        assert first_row["feature_index"] == 0
        assert first_row["geoid"] == "z-0"
        assert first_row["dataset_hash"] == snapshot.data_hash
        assert first_row["tolerance"] == 0.001
        assert inserts[2].args[1][0]["feature_index"] == 4
        session.commit.assert_called_once()
        assert zones.engine_name == "postgis"

    def test_load_skipped_when_generation_complete(self, preprocessor):
        snapshot = make_snapshot(preprocessor, 3)
        session = postgis_session(stored_count=3)
        engine = PostGISZoneEngine(session_factory=lambda: session)

        engine.load(snapshot)

        assert not calls_of(session, INSERT_SQL)

    def test_load_keeps_served_generation(self, preprocessor):
        session = postgis_session()
        engine = PostGISZoneEngine(session_factory=lambda: session)
        engine.active_hash = "served-hash"
        snapshot = make_snapshot(preprocessor, 2)

        engine.load(snapshot)

        (prune,) = calls_of(session, PRUNE_SQL)
        assert prune.args[1] == {"dataset_hash": snapshot.data_hash, "active_hash": "served-hash"}
        # Loading alone does not switch the served generation
        assert engine.active_hash == "served-hash"

    def test_activate_switches_served_generation(self, preprocessor):
        engine = PostGISZoneEngine(session_factory=lambda: postgis_session())
        snapshot = make_snapshot(preprocessor, 1)

        engine.load(snapshot).activate()

        assert engine.active_hash == snapshot.data_hash

    def test_storage_failure_rolls_back(self, preprocessor):
        session = postgis_session()
        engine = PostGISZoneEngine(session_factory=lambda: session)
        engine._available = True
        session.execute.side_effect = OperationalError("DELETE", {}, Exception("lost connection"))

        with pytest.raises(CacheUnavailableError):
            engine.load(make_snapshot(preprocessor, 1))
        session.rollback.assert_called_once()

    @pytest.mark.asyncio
    async def test_locate_filters_on_snapshot_hash(self, preprocessor):
        session = postgis_session(located=SimpleNamespace(geoid="z-1", candidate_count=2))
        engine = PostGISZoneEngine(session_factory=lambda: session)
        engine._available = True
        snapshot = make_snapshot(preprocessor, 1)

        match = await PostGISZones(snapshot, engine).locate(0.5, 2.5)

        (call,) = calls_of(session, LOCATE_SQL)
        assert call.args[1] == {"lat": 0.5, "lon": 2.5, "dataset_hash": snapshot.data_hash}
        assert match.zone_id == "z-1"
        assert match.candidates == 2

    def test_optimization_stats(self):
        session = MagicMock()
        session.execute.return_value.one.return_value = SimpleNamespace(
            total_zones=10, avg_original_vertices=200.0, avg_simplified_vertices=50.0
        )
        engine = PostGISZoneEngine(session_factory=lambda: session)
        engine._available = True

        stats = engine.get_optimization_stats("abc")

        assert session.execute.call_args.args == (STATS_SQL, {"dataset_hash": "abc"})
        assert stats == {
            "total_zones": 10,
            "avg_original_vertices": 200.0,
            "avg_simplified_vertices": 50.0,
            "compression_ratio": 75.0,
        }

    def test_benchmark(self):
        session = MagicMock()
        session.execute.return_value.one.return_value = SimpleNamespace(geoid=None, candidate_count=0)
        engine = PostGISZoneEngine(session_factory=lambda: session)
        engine._available = True

        result = engine.benchmark([(40.0, -74.0), (34.0, -118.0)], "abc")

        assert result["total_queries"] == 2
        assert result["success_rate"] == 100.0


class TestPostGISRefresh:
    """Zone service refreshes on top of the PostGIS engine"""

    @pytest.mark.asyncio
    async def test_failed_snapshot_write_keeps_serving_prior_rows(self, store, source, preprocessor, clock):
        session = postgis_session(located=SimpleNamespace(geoid="test-1", candidate_count=1))
        engine = PostGISZoneEngine(session_factory=lambda: session)
        service = ZoneService(store, source, preprocessor, engine, clock=clock)

        dataset = preprocessor.process_collection(sample_collection())
        prior = CacheSnapshot.from_dataset(dataset, timedelta(hours=24), clock() - timedelta(hours=25))
        store.write(prior)
        await service.initialize()
        await service._refresh_task

        # The stale snapshot's refresh brings new data but the snapshot row cannot be written
        clock.advance(hours=48)
        source.data = collection(polygon_feature([UNIT_SQUARE], GEOID="newer"))

        def broken_write(snapshot):
            raise CacheUnavailableError("database down")

        store.write = broken_write
        await service.resolve_point(0.5, 0.5)
        with pytest.raises(CacheUnavailableError):
            await service._refresh_task

        session.execute.reset_mock()
        result = await service.resolve_point(0.5, 0.5)

        (call,) = calls_of(session, LOCATE_SQL)
        assert call.args[1]["dataset_hash"] == prior.data_hash
        assert engine.active_hash == prior.data_hash
        assert result.metadata.data_hash == prior.data_hash


class TestEngineSelection:
    """Engine chosen by configuration name"""

    def test_memory(self):
        assert isinstance(create_engine_for("memory"), InMemoryZoneEngine)

    def test_postgis(self):
        assert isinstance(create_engine_for("POSTGIS"), PostGISZoneEngine)

    def test_unknown(self):
        with pytest.raises(ValueError):
            create_engine_for("quadtree")


class TestInMemoryZoneEngine:
    """Exact containment on top of the bbox filter"""

    @pytest.mark.asyncio
    async def test_self_intersecting_polygon_is_repaired(self, preprocessor):
        bowtie = [[0.0, 0.0], [1.0, 1.0], [1.0, 0.0], [0.0, 1.0], [0.0, 0.0]]
        dataset = preprocessor.process_collection(collection(
            polygon_feature([bowtie], GEOID="bowtie"),
            polygon_feature([UNIT_SQUARE], GEOID="square"),
        ))
        zones = InMemoryZoneEngine().load(CacheSnapshot.from_dataset(dataset, timedelta(hours=24)))

        match = await zones.locate(0.5, 0.1)

        assert match.zone_id == "bowtie"
