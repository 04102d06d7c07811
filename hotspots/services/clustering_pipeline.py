"""Clustering pipeline: signals in, ranked hotspots out.

One run, in order:

1. Take the single-flight Redis lock (held lock -> PersistenceConflict).
2. Load the most recent tagged signals and their existing hotspot memberships.
3. Prepare a feature vector per signal; any failure skips that signal only.
4. Stop with ``insufficient_data`` if fewer than min_cluster_size remain.
5. Cluster, rank and plan reconciliation entirely in memory.
6. Check the wall-clock budget; nothing has been written yet.
7. Persist each cluster's create-or-update in its own transaction.

The trigger always returns a ``RunResult``; errors are reported in it with
their code and retryable flag rather than raised.
"""

import logging
import time
from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

import numpy as np
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hotspots.core.config import settings
from hotspots.core.database import get_sync_session
from hotspots.core.errors import (
    ComputationFailure,
    ConfigurationError,
    HotspotsError,
    InsufficientData,
    PersistenceConflict,
    RunTimeout,
)
from hotspots.core.redis import get_clustering_lock
from hotspots.schemas.clustering import ClusteringConfig, RunResult
from hotspots.schemas.features import StoredFeatures
from hotspots.schemas.tagging import EnhancedTags
from hotspots.services.density_clustering import ClusteringOutcome, DensityClusterer
from hotspots.services.feature_engineering import (
    FeatureEngineeringEngine,
    FeatureRequest,
    get_feature_engine,
    validate_enhanced_tags,
)
from hotspots.services.hotspot_ranking import MemberProfile
from hotspots.services.reconciliation import (
    HotspotReconciler,
    ReconciliationAction,
    ReconciliationStep,
)
from hotspots.services.repositories import (
    HotspotOverlap,
    SqlAlchemyHotspotRepository,
    SqlAlchemyHotspotSignalRepository,
    SqlAlchemySignalRepository,
)
from hotspots.services.run_events import RunEventCollector

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractContextManager[Session]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PreparedSignal:
    """A signal that made it into the clustering input."""

    signal_id: UUID
    vector: np.ndarray
    profile: MemberProfile
    from_cache: bool


@dataclass
class RunStats:
    """Counters accumulated during a run, reported even on failure."""

    signals_processed: int = 0
    signals_skipped: int = 0
    clusters_found: int = 0
    hotspots_created: int = 0
    hotspots_updated: int = 0
    outliers_flagged: int = 0
    hotspot_ids: list[UUID] = field(default_factory=list)


class ClusteringPipeline:
    """Runs one clustering pass with injectable collaborators."""

    def __init__(
        self,
        config: ClusteringConfig | None = None,
        *,
        session_factory: SessionFactory = get_sync_session,
        lock_factory: Callable[[], Any] = get_clustering_lock,
        feature_engine: FeatureEngineeringEngine | None = None,
        reconciler: HotspotReconciler | None = None,
        events: RunEventCollector | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utcnow,
        timeout_seconds: float | None = None,
        max_signals: int | None = None,
    ):
        self.config = config or ClusteringConfig.from_settings()
        self.session_factory = session_factory
        self.lock_factory = lock_factory
        self.feature_engine = feature_engine or get_feature_engine()
        self.reconciler = reconciler or HotspotReconciler()
        self.events = events or RunEventCollector()
        self.clock = clock
        self.now = now
        self.timeout_seconds = (
            timeout_seconds
            if timeout_seconds is not None
            else settings.clustering_run_timeout_seconds
        )
        self.max_signals = max_signals or settings.clustering_max_signals

    # =========================================================================
    # Entry point
    # =========================================================================

    def run(self) -> RunResult:
        started = self.clock()
        stats = RunStats()
        self.events.emit(
            "run_started",
            min_cluster_size=self.config.min_cluster_size,
            min_samples=self.config.min_samples,
            metric=self.config.metric,
        )

        try:
            lock = self.lock_factory()
            acquired = lock.acquire()
        except Exception as e:
            return self._failure(e, started, stats)

        if not acquired:
            self.events.emit("lock_unavailable", level=logging.WARNING)
            return self._failure(
                PersistenceConflict("Another clustering run is in progress"),
                started,
                stats,
            )

        try:
            return self._run_locked(started, stats)
        except InsufficientData as e:
            self.events.emit("insufficient_data", available=e.available, required=e.required)
            return RunResult(
                success=True,
                signals_processed=stats.signals_processed,
                signals_skipped=stats.signals_skipped,
                insufficient_data=True,
                duration_ms=self._elapsed_ms(started),
            )
        except Exception as e:
            return self._failure(e, started, stats)
        finally:
            lock.release()

    # =========================================================================
    # Steps
    # =========================================================================

    def _run_locked(self, started: float, stats: RunStats) -> RunResult:
        signals, overlaps = self._load()
        self.events.emit("signals_loaded", count=len(signals), existing_hotspots=len(overlaps))

        prepared = self._prepare(signals, stats)
        if len(prepared) < self.config.min_cluster_size:
            raise InsufficientData(len(prepared), self.config.min_cluster_size)

        outcome = self._cluster(prepared)
        stats.clusters_found = len(outcome.clusters)
        stats.outliers_flagged = outcome.outliers_flagged
        self.events.emit(
            "clusters_found",
            clusters=len(outcome.clusters),
            noise=len(outcome.noise),
            outliers=outcome.outliers_flagged,
        )

        steps = self._plan(prepared, outcome, overlaps)
        self._check_deadline(started)
        self._persist(steps, stats)

        result = RunResult(
            success=True,
            signals_processed=stats.signals_processed,
            signals_skipped=stats.signals_skipped,
            clusters_found=stats.clusters_found,
            hotspots_created=stats.hotspots_created,
            hotspots_updated=stats.hotspots_updated,
            outliers_flagged=stats.outliers_flagged,
            hotspot_ids=stats.hotspot_ids,
            duration_ms=self._elapsed_ms(started),
        )
        self.events.emit(
            "run_completed",
            created=result.hotspots_created,
            updated=result.hotspots_updated,
            duration_ms=result.duration_ms,
        )
        return result

    def _load(self) -> tuple[list[Any], list[HotspotOverlap]]:
        with self.session_factory() as session:
            signals = SqlAlchemySignalRepository(session).list_for_clustering(self.max_signals)
            overlaps = SqlAlchemyHotspotRepository(session).find_overlapping(
                [s.id for s in signals]
            )
        return signals, overlaps

    def _cached_vector(self, signal: Any) -> np.ndarray | None:
        """Stored vector if present and produced by the current engine."""
        if not signal.clustering_features:
            return None
        try:
            stored = StoredFeatures.model_validate(signal.clustering_features)
        except ValidationError:
            logger.warning(f"Ignoring malformed stored features on signal {signal.id}")
            return None
        if stored.features.model_version != self.feature_engine.MODEL_VERSION:
            return None
        return stored.features.as_array()

    def _prepare_one(self, signal: Any) -> PreparedSignal:
        tags: EnhancedTags | None
        try:
            tags = validate_enhanced_tags(signal.enhanced_tags, signal.id)
        except HotspotsError:
            tags = None

        profile = MemberProfile(
            signal_id=signal.id,
            severity=signal.severity,
            department_name=signal.department_name,
            tags=tags,
        )

        vector = self._cached_vector(signal)
        if vector is not None:
            return PreparedSignal(signal.id, vector, profile, from_cache=True)

        # Computed for this run only; persisting is the feature service's job
        request = FeatureRequest.from_signal(signal, tags=tags)
        result = self.feature_engine.generate(request)
        return PreparedSignal(signal.id, result.features.as_array(), profile, from_cache=False)

    def _prepare(self, signals: list[Any], stats: RunStats) -> list[PreparedSignal]:
        prepared: list[PreparedSignal] = []
        for signal in signals:
            try:
                prepared.append(self._prepare_one(signal))
            except HotspotsError as e:
                self._skip(signal, e, stats)
            except Exception as e:
                logger.warning(f"Feature preparation raised for signal {signal.id}", exc_info=e)
                failure = ComputationFailure(f"Feature preparation failed: {e}")
                self._skip(signal, failure, stats)
        stats.signals_processed = len(prepared)
        return prepared

    def _skip(self, signal: Any, error: HotspotsError, stats: RunStats) -> None:
        stats.signals_skipped += 1
        logger.warning(f"Skipping signal {signal.id}: {error}")
        self.events.emit(
            "signal_skipped",
            level=logging.WARNING,
            signal_id=str(signal.id),
            code=error.code,
        )

    def _cluster(self, prepared: list[PreparedSignal]) -> ClusteringOutcome:
        vectors = np.vstack([p.vector for p in prepared])
        try:
            return DensityClusterer(self.config).fit(vectors)
        except HotspotsError:
            raise
        except (ValueError, ArithmeticError, MemoryError) as e:
            raise ComputationFailure(f"Clustering failed: {e}") from e

    def _plan(
        self,
        prepared: list[PreparedSignal],
        outcome: ClusteringOutcome,
        overlaps: list[HotspotOverlap],
    ) -> list[ReconciliationStep]:
        drafts = []
        for cluster in outcome.clusters:
            profiles = [prepared[i].profile for i in cluster.members]
            drafts.append(self.reconciler.draft(cluster, profiles, self.config))

        steps = self.reconciler.plan(drafts, overlaps)
        self.events.emit(
            "reconciliation_planned",
            creates=sum(1 for s in steps if s.action == ReconciliationAction.CREATE),
            updates=sum(1 for s in steps if s.action == ReconciliationAction.UPDATE),
        )
        return steps

    def _check_deadline(self, started: float) -> None:
        elapsed = self.clock() - started
        if elapsed > self.timeout_seconds:
            raise RunTimeout(elapsed, self.timeout_seconds)

    def _persist(self, steps: list[ReconciliationStep], stats: RunStats) -> None:
        now = self.now()
        for step in steps:
            try:
                with self.session_factory() as session:
                    applied = self.reconciler.apply(
                        step,
                        SqlAlchemyHotspotRepository(session),
                        SqlAlchemyHotspotSignalRepository(session),
                        now,
                    )
            except IntegrityError as e:
                raise PersistenceConflict(
                    f"Concurrent write while persisting hotspot: {e.orig}"
                ) from e

            stats.hotspot_ids.append(applied.hotspot_id)
            if applied.action == ReconciliationAction.CREATE:
                stats.hotspots_created += 1
                event = "hotspot_created"
            else:
                stats.hotspots_updated += 1
                event = "hotspot_updated"
            self.events.emit(
                event,
                hotspot_id=str(applied.hotspot_id),
                members=applied.edges_written,
                outliers=step.draft.outlier_count,
                removed=applied.edges_removed,
                rank_score=round(step.draft.rank_score, 4),
            )

    # =========================================================================
    # Results
    # =========================================================================

    def _elapsed_ms(self, started: float) -> int:
        return int((self.clock() - started) * 1000)

    def _failure(self, error: Exception, started: float, stats: RunStats) -> RunResult:
        if isinstance(error, HotspotsError):
            code = error.code
            retryable = error.retryable
            logger.error(f"Clustering run failed ({code}): {error}")
        else:
            code = "unexpected_error"
            retryable = False
            logger.error(f"Clustering run failed unexpectedly: {error}", exc_info=error)

        self.events.emit("run_failed", level=logging.ERROR, code=code, retryable=retryable)
        return RunResult(
            success=False,
            signals_processed=stats.signals_processed,
            signals_skipped=stats.signals_skipped,
            clusters_found=stats.clusters_found,
            hotspots_created=stats.hotspots_created,
            hotspots_updated=stats.hotspots_updated,
            outliers_flagged=stats.outliers_flagged,
            hotspot_ids=stats.hotspot_ids,
            duration_ms=self._elapsed_ms(started),
            error=str(error),
            error_code=code,
            retryable=retryable,
        )


def run_clustering(
    config: ClusteringConfig | dict[str, Any] | None = None,
    **kwargs: Any,
) -> RunResult:
    """Run one clustering pass and return its structured result.

    ``config`` may be a ClusteringConfig, a dict of overrides applied on top
    of the settings defaults, or None for the defaults. Remaining keyword
    arguments go to ClusteringPipeline.
    """
    try:
        if config is None:
            config = ClusteringConfig.from_settings()
        elif isinstance(config, dict):
            config = ClusteringConfig.from_settings(**config)
    except ConfigurationError as e:
        logger.error(f"Clustering not started: {e}")
        return RunResult(
            success=False,
            error=str(e),
            error_code=e.code,
            retryable=e.retryable,
        )

    return ClusteringPipeline(config, **kwargs).run()
