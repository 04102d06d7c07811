"""Celery tasks for hotspot clustering and feature generation."""

import logging
from datetime import UTC, datetime
from uuid import UUID

from hotspots.core.celery import celery_app

logger = logging.getLogger(__name__)

RETRY_COUNTDOWN_SECONDS = 60
MAX_RETRIES = 3


@celery_app.task(
    bind=True,
    name="hotspots.workers.clustering.cluster_hotspots",
    max_retries=MAX_RETRIES,
)
def cluster_hotspots(self, config_overrides: dict | None = None) -> dict:
    """
    Cluster recent signals into hotspots.

    Runs every few minutes via Celery Beat and can be queued on demand with
    per-run overrides (e.g. ``{"min_cluster_size": 4}``). Retryable failures
    (lock held, timeout, write conflict) are retried with a fixed countdown;
    once retries run out the failed result is returned like any other.

    Returns:
        RunResult as a JSON-safe dict
    """
    from hotspots.services.clustering_pipeline import run_clustering

    logger.info("Starting hotspot clustering run")
    result = run_clustering(config_overrides)

    if not result.success and result.retryable:
        if self.request.retries >= self.max_retries:
            logger.error(
                f"Clustering run failed with {result.error_code} after "
                f"{self.request.retries} retries; giving up"
            )
        else:
            logger.warning(
                f"Clustering run failed with retryable error {result.error_code}; "
                f"retry {self.request.retries + 1}/{self.max_retries}"
            )
            raise self.retry(countdown=RETRY_COUNTDOWN_SECONDS)

    payload = result.model_dump(mode="json")
    payload["timestamp"] = datetime.now(UTC).isoformat()
    return payload


@celery_app.task(
    bind=True,
    name="hotspots.workers.clustering.generate_signal_features",
    max_retries=MAX_RETRIES,
)
def generate_signal_features(self, signal_id: str, force_regenerate: bool = False) -> dict:
    """
    Generate (or load cached) clustering features for one signal.

    Args:
        signal_id: UUID of the signal
        force_regenerate: Ignore the cached vector and bump the version

    Returns:
        dict with status, version and quality score, or the error code
    """
    from hotspots.core.errors import HotspotsError
    from hotspots.services.signal_features import generate_features

    try:
        result = generate_features(UUID(signal_id), force_regenerate=force_regenerate)
    except HotspotsError as e:
        if e.retryable and self.request.retries < self.max_retries:
            logger.warning(f"Retrying feature generation for {signal_id}: {e}")
            raise self.retry(exc=e, countdown=RETRY_COUNTDOWN_SECONDS)
        logger.error(f"Feature generation failed for {signal_id}: {e}")
        return {
            "status": "failed",
            "signal_id": signal_id,
            "error": str(e),
            "error_code": e.code,
        }

    return {
        "status": "completed",
        "signal_id": signal_id,
        "cached": result.cached,
        "version": result.features.version,
        "quality_score": result.quality_metrics.overall_confidence,
        "warnings": result.warnings,
    }
