"""Builders for signals, tagging payloads and stored feature vectors."""

from datetime import datetime, timezone
from typing import Any

from hotspots.schemas.features import (
    FEATURE_MODEL_VERSION,
    TOTAL_DIMENSIONS,
    FeatureVector,
    QualityMetrics,
    StoredFeatures,
)

BASE_TIME = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


def make_tags(
    root_cause: str = "COMMUNICATION",
    confidence: float = 0.85,
    department_priority: str = "PROJECT_MGMT",
    urgency: str = "HIGH",
    entities: list[dict[str, Any]] | None = None,
    **business_context: Any,
) -> dict[str, Any]:
    """Enriched tagging payload as stored on a signal."""
    return {
        "root_cause": {
            "primary": root_cause,
            "confidence": confidence,
            "alternatives": [{"cause": "PROCESS", "confidence": 0.4}],
        },
        "business_context": {
            "project_phase": "CONSTRUCTION",
            "department_priority": department_priority,
            "urgency": urgency,
            "client_tier": "ENTERPRISE",
            "impact": "SIGNIFICANT",
            "estimated_cost": "MEDIUM",
            **business_context,
        },
        "issue_type": {
            "primary": "COORDINATION",
            "confidence": 0.7,
            "hierarchy": ["PROCESS", "COORDINATION"],
        },
        "extracted_entities": entities or [],
        "diagnostics": {
            "total_keywords_found": 4,
            "strong_matches": 2,
            "weak_matches": 1,
            "rule_match_count": 3,
            "processing_time_ms": 120.0,
        },
    }


def make_vector(x: float, y: float) -> dict[str, Any]:
    """Stored features whose only non-zero coordinates are the first two."""
    values = [0.0] * TOTAL_DIMENSIONS
    values[0] = x
    values[1] = y
    stored = StoredFeatures(
        features=FeatureVector(values=tuple(values), model_version=FEATURE_MODEL_VERSION),
        quality_metrics=QualityMetrics(
            overall_confidence=0.8,
            domain_relevance=0.8,
            semantic_quality=0.5,
            executive_alignment=0.6,
        ),
    )
    return stored.model_dump(mode="json")
