"""Typed repositories for signals, hotspots and membership edges.

The pipeline depends on the Protocols; the SQLAlchemy implementations work
on a caller-owned ``Session`` and never commit. Transaction boundaries
belong to the caller (one transaction per cluster in the pipeline).
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from hotspots.core.errors import ConfigurationError, HotspotsError, PersistenceConflict
from hotspots.models.hotspot import Hotspot, HotspotSignal
from hotspots.models.signal import Signal
from hotspots.schemas.features import StoredFeatures

logger = logging.getLogger(__name__)


# =============================================================================
# Hotspot status transitions
# =============================================================================

VALID_HOTSPOT_STATUSES = frozenset(["OPEN", "APPROVED", "RESOLVED", "ARCHIVED"])

# Key: current status, Value: set of allowed next statuses
HOTSPOT_STATUS_TRANSITIONS: dict[str, set[str]] = {
    "OPEN": {"APPROVED", "RESOLVED", "ARCHIVED"},
    "APPROVED": {"RESOLVED", "ARCHIVED", "OPEN"},
    "RESOLVED": {"OPEN", "ARCHIVED"},
    "ARCHIVED": set(),  # Terminal state
}


class InvalidStatusTransition(HotspotsError, ValueError):
    """Raised when a hotspot status change is not allowed."""

    code = "invalid_status_transition"

    def __init__(self, current_status: str, new_status: str):
        self.current_status = current_status
        self.new_status = new_status
        super().__init__(f"Invalid hotspot transition: '{current_status}' -> '{new_status}'")


class HotspotNotFound(HotspotsError, LookupError):
    """Raised when a hotspot id does not exist."""

    code = "hotspot_not_found"

    def __init__(self, hotspot_id: UUID):
        self.hotspot_id = hotspot_id
        super().__init__(f"Hotspot not found: {hotspot_id}")


def is_valid_status_transition(current_status: str, new_status: str) -> bool:
    """Check if a hotspot status transition is valid."""
    if current_status not in HOTSPOT_STATUS_TRANSITIONS:
        return False
    return new_status in HOTSPOT_STATUS_TRANSITIONS[current_status]


# =============================================================================
# Value types
# =============================================================================


@dataclass
class HotspotOverlap:
    """An existing hotspot and which of the loaded signals it already holds."""

    hotspot_id: UUID
    created_at: datetime
    status: str
    member_ids: set[UUID] = field(default_factory=set)


# =============================================================================
# Protocols
# =============================================================================


class SignalRepository(Protocol):
    def get(self, signal_id: UUID) -> Signal | None: ...

    def list_for_clustering(self, limit: int) -> list[Signal]: ...

    def store_features(
        self,
        signal: Signal,
        stored: StoredFeatures,
        expected_version: int,
    ) -> int: ...


class HotspotRepository(Protocol):
    def get(self, hotspot_id: UUID) -> Hotspot | None: ...

    def find_overlapping(self, signal_ids: Iterable[UUID]) -> list[HotspotOverlap]: ...

    def create(self, **fields: Any) -> Hotspot: ...

    def update(self, hotspot_id: UUID, **fields: Any) -> Hotspot: ...

    def transition_status(self, hotspot_id: UUID, new_status: str) -> Hotspot: ...


class HotspotSignalRepository(Protocol):
    def upsert(
        self,
        hotspot_id: UUID,
        signal_id: UUID,
        membership_strength: float,
        is_outlier: bool,
    ) -> None: ...

    def remove_except(self, hotspot_id: UUID, keep_signal_ids: Iterable[UUID]) -> int: ...

    def list_for_hotspot(self, hotspot_id: UUID) -> list[HotspotSignal]: ...


# =============================================================================
# SQLAlchemy implementations
# =============================================================================


class SqlAlchemySignalRepository:
    """Signal reads and versioned feature writes."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, signal_id: UUID) -> Signal | None:
        return self.session.get(Signal, signal_id)

    def list_for_clustering(self, limit: int) -> list[Signal]:
        """The ``limit`` most recent tagged signals, returned oldest first.

        Ordering is by (received_at, id) so repeated runs over the same data
        see the same input order.
        """
        latest = (
            select(Signal)
            .where(Signal.ai_processed.is_(True))
            .order_by(Signal.received_at.desc(), Signal.id.desc())
            .limit(limit)
        )
        signals = list(self.session.execute(latest).scalars().all())
        signals.reverse()
        return signals

    def store_features(
        self,
        signal: Signal,
        stored: StoredFeatures,
        expected_version: int,
    ) -> int:
        """Write features with a compare-and-set on ``features_version``.

        Returns the new version. Raises PersistenceConflict if another writer
        bumped the version first.
        """
        new_version = expected_version + 1
        payload = stored.model_copy(
            update={"features": stored.features.model_copy(update={"version": new_version})}
        )
        result = self.session.execute(
            update(Signal)
            .where(Signal.id == signal.id, Signal.features_version == expected_version)
            .values(
                clustering_features=payload.model_dump(mode="json"),
                features_version=new_version,
                features_generated_at=payload.features.generated_at or datetime.now(timezone.utc),
                features_quality_score=payload.quality_metrics.overall_confidence,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise PersistenceConflict(
                f"Signal {signal.id} features changed concurrently "
                f"(expected version {expected_version})"
            )
        self.session.expire(signal)
        logger.debug(f"Stored features v{new_version} for signal {signal.id}")
        return new_version


class SqlAlchemyHotspotRepository:
    """Hotspot reads, writes and status transitions."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, hotspot_id: UUID) -> Hotspot | None:
        return self.session.get(Hotspot, hotspot_id)

    def _require(self, hotspot_id: UUID) -> Hotspot:
        hotspot = self.get(hotspot_id)
        if hotspot is None:
            raise HotspotNotFound(hotspot_id)
        return hotspot

    def find_overlapping(self, signal_ids: Iterable[UUID]) -> list[HotspotOverlap]:
        """Hotspots of any status holding at least one of the given signals."""
        ids = list(signal_ids)
        if not ids:
            return []

        rows = self.session.execute(
            select(
                Hotspot.id,
                Hotspot.created_at,
                Hotspot.status,
                HotspotSignal.signal_id,
            )
            .join(HotspotSignal, HotspotSignal.hotspot_id == Hotspot.id)
            .where(HotspotSignal.signal_id.in_(ids))
            .order_by(Hotspot.created_at, Hotspot.id)
        ).all()

        overlaps: dict[UUID, HotspotOverlap] = {}
        for hotspot_id, created_at, status, signal_id in rows:
            overlap = overlaps.setdefault(
                hotspot_id,
                HotspotOverlap(hotspot_id=hotspot_id, created_at=created_at, status=status),
            )
            overlap.member_ids.add(signal_id)
        return list(overlaps.values())

    def create(self, **fields: Any) -> Hotspot:
        hotspot = Hotspot(**fields)
        self.session.add(hotspot)
        self.session.flush()
        return hotspot

    def update(self, hotspot_id: UUID, **fields: Any) -> Hotspot:
        hotspot = self._require(hotspot_id)
        for name, value in fields.items():
            setattr(hotspot, name, value)
        self.session.flush()
        return hotspot

    def transition_status(self, hotspot_id: UUID, new_status: str) -> Hotspot:
        """Move a hotspot to a new status, validating the transition."""
        hotspot = self._require(hotspot_id)
        if new_status not in VALID_HOTSPOT_STATUSES:
            raise InvalidStatusTransition(hotspot.status, new_status)
        if not is_valid_status_transition(hotspot.status, new_status):
            raise InvalidStatusTransition(hotspot.status, new_status)

        old_status = hotspot.status
        hotspot.status = new_status
        self.session.flush()
        logger.info(f"Hotspot {hotspot_id} status: {old_status} -> {new_status}")
        return hotspot


class SqlAlchemyHotspotSignalRepository:
    """Membership edges keyed by (hotspot_id, signal_id)."""

    _INSERTS = {
        "postgresql": pg_insert,
        "sqlite": sqlite_insert,
    }

    def __init__(self, session: Session):
        self.session = session

    def upsert(
        self,
        hotspot_id: UUID,
        signal_id: UUID,
        membership_strength: float,
        is_outlier: bool,
    ) -> None:
        """Insert an edge or refresh its strength and outlier flag."""
        dialect = self.session.get_bind().dialect.name
        insert = self._INSERTS.get(dialect)
        if insert is None:
            raise ConfigurationError(f"Edge upsert is not supported on {dialect}")

        stmt = insert(HotspotSignal).values(
            hotspot_id=hotspot_id,
            signal_id=signal_id,
            membership_strength=membership_strength,
            is_outlier=is_outlier,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["hotspot_id", "signal_id"],
            set_={
                "membership_strength": membership_strength,
                "is_outlier": is_outlier,
                "updated_at": func.now(),
            },
        )
        self.session.execute(stmt)

    def remove_except(self, hotspot_id: UUID, keep_signal_ids: Iterable[UUID]) -> int:
        """Delete edges of signals that are no longer members. Returns rows removed."""
        keep = list(keep_signal_ids)
        stmt = delete(HotspotSignal).where(HotspotSignal.hotspot_id == hotspot_id)
        if keep:
            stmt = stmt.where(HotspotSignal.signal_id.not_in(keep))
        result = self.session.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount or 0

    def list_for_hotspot(self, hotspot_id: UUID) -> list[HotspotSignal]:
        return list(
            self.session.execute(
                select(HotspotSignal)
                .where(HotspotSignal.hotspot_id == hotspot_id)
                .order_by(HotspotSignal.signal_id)
            )
            .scalars()
            .all()
        )
