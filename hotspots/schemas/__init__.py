"""Pydantic schemas for tagging payloads, features and clustering runs."""

from hotspots.schemas.clustering import ClusteringConfig, RunResult
from hotspots.schemas.features import (
    BatchFeatureResult,
    FeatureGenerationResult,
    FeatureVector,
    QualityMetrics,
    StoredFeatures,
)
from hotspots.schemas.tagging import EnhancedTags

__all__ = [
    "ClusteringConfig",
    "RunResult",
    "BatchFeatureResult",
    "FeatureGenerationResult",
    "FeatureVector",
    "QualityMetrics",
    "StoredFeatures",
    "EnhancedTags",
]
