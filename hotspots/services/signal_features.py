"""Manual feature generation for stored signals.

Features are written once per version: a cached vector is returned as-is
unless regeneration is forced, and every write bumps ``features_version``
with a compare-and-set so two concurrent regenerations cannot both win.
"""

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from pydantic import ValidationError

from hotspots.core.database import get_sync_session
from hotspots.core.errors import HotspotsError, SignalNotFound
from hotspots.schemas.features import (
    BatchFeatureResult,
    FeatureGenerationResult,
    StoredFeatures,
)
from hotspots.schemas.tagging import EnhancedTags
from hotspots.services.clustering_pipeline import SessionFactory
from hotspots.services.feature_engineering import (
    FeatureEngineeringEngine,
    FeatureRequest,
    get_feature_engine,
)
from hotspots.services.repositories import SqlAlchemySignalRepository

logger = logging.getLogger(__name__)


class SignalFeatureService:
    """Generates, caches and versions feature vectors on signals."""

    def __init__(
        self,
        session_factory: SessionFactory = get_sync_session,
        engine: FeatureEngineeringEngine | None = None,
        now: Callable[[], datetime] | None = None,
    ):
        self.session_factory = session_factory
        self.engine = engine or get_feature_engine()
        self.now = now or (lambda: datetime.now(timezone.utc))

    @staticmethod
    def _cached(signal_id: UUID, raw: dict[str, Any] | None) -> FeatureGenerationResult | None:
        if not raw:
            return None
        try:
            stored = StoredFeatures.model_validate(raw)
        except ValidationError:
            logger.warning(f"Stored features for signal {signal_id} are unreadable; regenerating")
            return None
        return FeatureGenerationResult(
            signal_id=signal_id,
            features=stored.features,
            quality_metrics=stored.quality_metrics,
            warnings=stored.warnings,
            cached=True,
        )

    def generate_features(
        self,
        signal_id: UUID,
        enriched_tags: EnhancedTags | dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
        force_regenerate: bool = False,
    ) -> FeatureGenerationResult:
        """Return the signal's features, generating and storing them if needed.

        Raises:
            SignalNotFound: unknown signal id
            MissingPrerequisite: no usable tags or text
            PersistenceConflict: a concurrent regeneration won the race
        """
        with self.session_factory() as session:
            repo = SqlAlchemySignalRepository(session)
            signal = repo.get(signal_id)
            if signal is None:
                raise SignalNotFound(signal_id)

            if not force_regenerate:
                cached = self._cached(signal.id, signal.clustering_features)
                if cached is not None:
                    logger.debug(f"Using cached features v{signal.features_version} for {signal_id}")
                    return cached

            expected_version = signal.features_version
            request = FeatureRequest.from_signal(signal, tags=enriched_tags, metadata=metadata)
            result = self.engine.generate(
                request,
                version=expected_version + 1,
                generated_at=self.now(),
            )
            repo.store_features(
                signal,
                StoredFeatures(
                    features=result.features,
                    quality_metrics=result.quality_metrics,
                    warnings=result.warnings,
                ),
                expected_version=expected_version,
            )

        logger.info(
            f"Generated features v{result.features.version} for signal {signal_id} "
            f"(confidence {result.quality_metrics.overall_confidence:.2f})"
        )
        return result

    def batch_generate_features(
        self,
        signal_ids: Iterable[UUID],
        force_regenerate: bool = False,
    ) -> BatchFeatureResult:
        """Generate features for many signals; failures are reported, not raised."""
        batch = BatchFeatureResult()
        for signal_id in signal_ids:
            try:
                batch.results.append(
                    self.generate_features(signal_id, force_regenerate=force_regenerate)
                )
            except HotspotsError as e:
                logger.warning(f"Feature generation failed for signal {signal_id}: {e}")
                batch.failures[str(signal_id)] = e.code

        logger.info(
            f"Batch feature generation: {batch.succeeded} succeeded, {batch.failed} failed"
        )
        return batch


# Singleton instance for easy import
_signal_feature_service: SignalFeatureService | None = None


def get_signal_feature_service() -> SignalFeatureService:
    """Get the singleton SignalFeatureService instance."""
    global _signal_feature_service
    if _signal_feature_service is None:
        _signal_feature_service = SignalFeatureService()
    return _signal_feature_service


def generate_features(
    signal_id: UUID,
    enriched_tags: EnhancedTags | dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
    force_regenerate: bool = False,
) -> FeatureGenerationResult:
    return get_signal_feature_service().generate_features(
        signal_id,
        enriched_tags=enriched_tags,
        metadata=metadata,
        force_regenerate=force_regenerate,
    )


def batch_generate_features(
    signal_ids: Iterable[UUID],
    force_regenerate: bool = False,
) -> BatchFeatureResult:
    return get_signal_feature_service().batch_generate_features(
        signal_ids,
        force_regenerate=force_regenerate,
    )
