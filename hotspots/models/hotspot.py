"""Hotspot and HotspotSignal models."""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hotspots.models.base import BaseModel, JSONType

if TYPE_CHECKING:
    from hotspots.models.signal import Signal


class Hotspot(BaseModel):
    """Persisted, ranked cluster of related signals.

    Created when a cluster matches no existing hotspot and updated when a
    later cluster overlaps its members. Clustering never deletes a hotspot;
    resolution is a status transition.
    """

    __tablename__ = "hotspots"

    title: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )
    summary: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    # Valid values: 'OPEN', 'APPROVED', 'RESOLVED', 'ARCHIVED'
    status: Mapped[str] = mapped_column(
        String(20),
        server_default="OPEN",
        default="OPEN",
        nullable=False,
        index=True,
    )
    rank_score: Mapped[float] = mapped_column(
        Float,
        nullable=False,
    )
    confidence: Mapped[float] = mapped_column(
        Float,
        nullable=False,
    )
    clustering_method: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    similarity_threshold: Mapped[float] = mapped_column(
        Float,
        nullable=False,
    )
    # [{"type": "CLIENT", "name": "Acme", "count": 3}, ...]
    linked_entities: Mapped[list[dict[str, Any]] | None] = mapped_column(
        JSONType,
        nullable=True,
    )
    member_count: Mapped[int] = mapped_column(
        Integer,
        server_default="0",
        default=0,
        nullable=False,
    )
    last_clustered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Relationships
    signal_links: Mapped[list["HotspotSignal"]] = relationship(
        "HotspotSignal",
        back_populates="hotspot",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Hotspot {self.id} status={self.status} rank={self.rank_score:.3f}>"


class HotspotSignal(BaseModel):
    """Membership edge between one signal and one hotspot."""

    __tablename__ = "hotspot_signals"
    __table_args__ = (
        UniqueConstraint("hotspot_id", "signal_id", name="uq_hotspot_signal"),
    )

    hotspot_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("hotspots.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    signal_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("signals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    membership_strength: Mapped[float] = mapped_column(
        Float,
        nullable=False,
    )
    is_outlier: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
    )

    # Relationships
    hotspot: Mapped["Hotspot"] = relationship(
        "Hotspot",
        back_populates="signal_links",
    )
    signal: Mapped["Signal"] = relationship(
        "Signal",
        back_populates="hotspot_links",
    )

    def __repr__(self) -> str:
        return (
            f"<HotspotSignal hotspot={self.hotspot_id} signal={self.signal_id} "
            f"strength={self.membership_strength:.2f}>"
        )
