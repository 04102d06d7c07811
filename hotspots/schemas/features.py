"""Feature vector schemas.

A signal's clustering features are a fixed 89-dimension vector split into
three weighted blocks:

    domain     [0, 60)   root cause, department, phase, urgency, business context
    semantic   [60, 85)  reduced embedding, terminology density, text patterns
    executive  [85, 89)  business impact, actionability, priority, attention
"""

from datetime import datetime
from uuid import UUID

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator

# =============================================================================
# Vector layout
# =============================================================================

DOMAIN_DIMENSIONS = 60
SEMANTIC_DIMENSIONS = 25
EXECUTIVE_DIMENSIONS = 4
TOTAL_DIMENSIONS = DOMAIN_DIMENSIONS + SEMANTIC_DIMENSIONS + EXECUTIVE_DIMENSIONS

DOMAIN_WEIGHT = 0.6
SEMANTIC_WEIGHT = 0.3
EXECUTIVE_WEIGHT = 0.1

DOMAIN_SLICE = slice(0, DOMAIN_DIMENSIONS)
SEMANTIC_SLICE = slice(DOMAIN_DIMENSIONS, DOMAIN_DIMENSIONS + SEMANTIC_DIMENSIONS)
EXECUTIVE_SLICE = slice(DOMAIN_DIMENSIONS + SEMANTIC_DIMENSIONS, TOTAL_DIMENSIONS)

FEATURE_MODEL_VERSION = "multi-dimensional-v1"


class FeatureVector(BaseModel):
    """Weighted clustering features for one signal."""

    model_config = ConfigDict(frozen=True)

    values: tuple[float, ...]
    version: int = Field(default=1, ge=1)
    model_version: str = FEATURE_MODEL_VERSION
    embedding_source: str = "precomputed"
    generated_at: datetime | None = None

    @field_validator("values")
    @classmethod
    def validate_values(cls, v: tuple[float, ...]) -> tuple[float, ...]:
        """Reject vectors of the wrong length or with non-finite entries."""
        if len(v) != TOTAL_DIMENSIONS:
            raise ValueError(
                f"Feature vector must have {TOTAL_DIMENSIONS} dimensions, got {len(v)}"
            )
        if not all(np.isfinite(v)):
            raise ValueError("Feature vector contains non-finite values")
        return v

    @property
    def domain(self) -> tuple[float, ...]:
        return self.values[DOMAIN_SLICE]

    @property
    def semantic(self) -> tuple[float, ...]:
        return self.values[SEMANTIC_SLICE]

    @property
    def executive(self) -> tuple[float, ...]:
        return self.values[EXECUTIVE_SLICE]

    def as_array(self) -> np.ndarray:
        return np.asarray(self.values, dtype=np.float64)


class QualityMetrics(BaseModel):
    """How much trust to place in a feature vector, independent of clustering."""

    overall_confidence: float = Field(ge=0.0, le=1.0)
    domain_relevance: float = Field(ge=0.0, le=1.0)
    semantic_quality: float = Field(ge=0.0, le=1.0)
    executive_alignment: float = Field(ge=0.0, le=1.0)


class StoredFeatures(BaseModel):
    """Shape of ``Signal.clustering_features``."""

    features: FeatureVector
    quality_metrics: QualityMetrics
    warnings: list[str] = Field(default_factory=list)


class FeatureGenerationResult(BaseModel):
    """Result of generating (or loading cached) features for one signal."""

    signal_id: UUID | None = None
    features: FeatureVector
    quality_metrics: QualityMetrics
    warnings: list[str] = Field(default_factory=list)
    cached: bool = False


class BatchFeatureResult(BaseModel):
    """Outcome of a batch feature generation request."""

    results: list[FeatureGenerationResult] = Field(default_factory=list)
    # signal id -> error code
    failures: dict[str, str] = Field(default_factory=dict)

    @property
    def succeeded(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> int:
        return len(self.failures)
