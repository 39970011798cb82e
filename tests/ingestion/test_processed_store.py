"""Processed artifact store tests"""

import json
from datetime import datetime, timedelta

import pytest

from oz_locator.ingestion.processed_store import METADATA_FILENAME, PROCESSED_FILENAME, ProcessedArtifactStore
from tests.zone_fixtures import sample_collection

NOW = datetime(2026, 1, 1, 12, 0, 0)


@pytest.fixture
def artifacts(tmp_path):
    return ProcessedArtifactStore(str(tmp_path), max_age_hours=24)


@pytest.fixture
def dataset(preprocessor):
    return preprocessor.process_collection(sample_collection())


class TestProcessedArtifactStore:
    """Optimized GeoJSON plus metadata on disk"""

    def test_save_writes_both_files(self, artifacts, dataset, tmp_path):
        metadata = artifacts.save(dataset, "https://data.test/oz.geojson", now=NOW)

        assert (tmp_path / PROCESSED_FILENAME).exists()
        on_disk = json.loads((tmp_path / METADATA_FILENAME).read_text())
        assert on_disk == metadata
        assert metadata["data_hash"] == dataset.data_hash
        assert metadata["stats"]["feature_count"] == 3
        assert len(metadata["spatial_index"]) == 3

    def test_load_round_trip(self, artifacts, dataset):
        artifacts.save(dataset, "https://data.test/oz.geojson", now=NOW)

        loaded = artifacts.load()

        assert loaded.data_hash == dataset.data_hash
        assert loaded.features == dataset.features
        assert loaded.index_entries == dataset.index_entries
        assert loaded.stats.skipped_count == dataset.stats.skipped_count

    def test_digest_mismatch_treated_as_absent(self, artifacts, dataset, tmp_path):
        artifacts.save(dataset, "https://data.test/oz.geojson", now=NOW)
        path = tmp_path / PROCESSED_FILENAME
        path.write_text(path.read_text().replace("test-1", "tampered"))

        assert artifacts.load() is None

    def test_check_existing_respects_max_age(self, artifacts, dataset):
        assert artifacts.check_existing(NOW) is None

        artifacts.save(dataset, "https://data.test/oz.geojson", now=NOW)

        assert artifacts.check_existing(NOW + timedelta(hours=23)) is not None
        assert artifacts.check_existing(NOW + timedelta(hours=25)) is None

    def test_unreadable_metadata(self, artifacts, dataset, tmp_path):
        artifacts.save(dataset, "https://data.test/oz.geojson", now=NOW)
        (tmp_path / METADATA_FILENAME).write_text("{not json")

        assert artifacts.load_metadata() is None
        assert artifacts.load() is None

    def test_zero_max_age_never_fresh(self, dataset, tmp_path):
        artifacts = ProcessedArtifactStore(str(tmp_path), max_age_hours=0)
        artifacts.save(dataset, "https://data.test/oz.geojson", now=NOW)

        assert artifacts.max_age == timedelta(0)
        assert artifacts.check_existing(NOW) is None
