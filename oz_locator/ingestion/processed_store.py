"""On-disk artifacts of a preprocessed zone dataset with digest verification"""

import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

from oz_locator.config import settings
from oz_locator.geometry.preprocess import PreprocessStats, ProcessedDataset, canonical_json, compute_data_hash
from oz_locator.geometry.types import GeoFeature
from oz_locator.utils import utcnow

logger = structlog.get_logger()

PROCESSED_FILENAME = "opportunity-zones-optimized.json"
METADATA_FILENAME = "opportunity-zones-metadata.json"


class ProcessedArtifactStore:
    """
    Stores the optimized FeatureCollection next to a metadata file.

    The metadata carries the content hash of the collection, which is checked
    on load; a mismatched or unreadable artifact is treated as absent.
    """

    def __init__(self, directory: Optional[str] = None, max_age_hours: Optional[int] = None):
        self.directory = Path(directory or settings.processed_data_dir)
        self.max_age = timedelta(
            hours=max_age_hours if max_age_hours is not None else settings.processed_max_age_hours
        )

    @property
    def processed_path(self) -> Path:
        return self.directory / PROCESSED_FILENAME

    @property
    def metadata_path(self) -> Path:
        return self.directory / METADATA_FILENAME

    def save(self, dataset: ProcessedDataset, source_url: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Write both artifacts and return the metadata"""
        now = now or utcnow()
        self.directory.mkdir(parents=True, exist_ok=True)

        metadata = {
            "version": now.isoformat(),
            "data_hash": dataset.data_hash,
            "stats": dataset.stats.to_dict(),
            "spatial_index": [entry.to_record() for entry in dataset.index_entries],
            "source_url": source_url,
            "processed_at": now.isoformat(),
        }

        self.processed_path.write_bytes(canonical_json(dataset.feature_collection()))
        self.metadata_path.write_text(json.dumps(metadata, indent=2), encoding="utf-8")

        logger.info(
            "Saved processed zone artifacts",
            directory=str(self.directory),
            feature_count=len(dataset.features),
            data_hash=dataset.data_hash,
        )
        return metadata

    def load_metadata(self) -> Optional[Dict[str, Any]]:
        if not self.metadata_path.exists():
            return None
        try:
            return json.loads(self.metadata_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Failed to read processed metadata", path=str(self.metadata_path), error=str(e))
            return None

    def age(self, metadata: Dict[str, Any], now: Optional[datetime] = None) -> timedelta:
        return (now or utcnow()) - datetime.fromisoformat(metadata["processed_at"])

    def check_existing(self, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        """Metadata of existing artifacts younger than the max age, else None"""
        if not self.processed_path.exists():
            logger.info("No processed zone data found", directory=str(self.directory))
            return None

        metadata = self.load_metadata()
        if metadata is None:
            return None

        age = self.age(metadata, now)
        hours_old = round(age.total_seconds() / 3600, 1)
        if age < self.max_age:
            logger.info("Found existing processed zone data", hours_old=hours_old, data_hash=metadata.get("data_hash"))
            return metadata

        logger.info("Existing processed zone data is stale", hours_old=hours_old)
        return None

    def load(self) -> Optional[ProcessedDataset]:
        """Load the processed dataset, verifying its digest against the metadata"""
        metadata = self.load_metadata()
        if metadata is None or not self.processed_path.exists():
            return None

        try:
            collection = json.loads(self.processed_path.read_bytes().decode("utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Failed to read processed zone data", path=str(self.processed_path), error=str(e))
            return None

        actual = compute_data_hash(collection)
        if actual != metadata.get("data_hash"):
            logger.warning(
                "Processed zone data digest mismatch",
                expected=metadata.get("data_hash"),
                actual=actual,
            )
            return None

        features = [GeoFeature.from_geojson(feature) for feature in collection.get("features", [])]
        stats = PreprocessStats(**{
            key: value for key, value in metadata.get("stats", {}).items()
            if key != "compression_ratio"
        })
        return ProcessedDataset.from_features(features, stats)
