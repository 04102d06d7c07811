"""Clustering run configuration and result schemas."""

from typing import Any, Literal
from uuid import UUID

from pydantic import Field, ValidationError

from hotspots.core.config import Settings, get_settings
from hotspots.core.errors import ConfigurationError
from hotspots.schemas.common import BaseSchema, FrozenSchema

DistanceMetric = Literal["euclidean", "cosine"]

CLUSTERING_METHOD = "hdbscan"


class ClusteringConfig(FrozenSchema):
    """Parameters for one density clustering run.

    Invalid values raise ``ConfigurationError`` from the constructor and
    from ``build`` alike.
    """

    min_cluster_size: int = Field(default=3, ge=2)
    min_samples: int = Field(default=2, ge=2)
    metric: DistanceMetric = "euclidean"
    # Fixed neighbourhood radius; when None it is derived per point
    epsilon_override: float | None = Field(default=None, gt=0.0)
    epsilon_multiplier: float = Field(default=1.5, gt=0.0)
    outlier_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    max_expected_distance: float = Field(default=2.0, gt=0.0)

    def __init__(self, **values: Any):
        try:
            super().__init__(**values)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
                for err in e.errors()
            )
            raise ConfigurationError(f"Invalid clustering configuration: {problems}") from e

    @classmethod
    def build(cls, **values: Any) -> "ClusteringConfig":
        """Validate parameters, raising ConfigurationError on bad input."""
        return cls(**values)

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **overrides: Any) -> "ClusteringConfig":
        """Build from application settings, with optional per-run overrides."""
        settings = settings or get_settings()
        values: dict[str, Any] = {
            "min_cluster_size": settings.clustering_min_cluster_size,
            "min_samples": settings.clustering_min_samples,
            "metric": settings.clustering_metric,
            "epsilon_multiplier": settings.clustering_epsilon_multiplier,
            "outlier_threshold": settings.clustering_outlier_threshold,
            "max_expected_distance": settings.clustering_max_expected_distance,
        }
        values.update(overrides)
        return cls.build(**values)


class RunResult(BaseSchema):
    """Structured outcome of a clustering run.

    Always returned by the trigger, including on failure.
    """

    success: bool
    signals_processed: int = 0
    signals_skipped: int = 0
    clusters_found: int = 0
    hotspots_created: int = 0
    hotspots_updated: int = 0
    outliers_flagged: int = 0
    duration_ms: int = 0
    insufficient_data: bool = False
    error: str | None = None
    error_code: str | None = None
    retryable: bool = False
    hotspot_ids: list[UUID] = Field(default_factory=list)
