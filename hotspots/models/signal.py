"""Signal model."""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import Boolean, DateTime, Float, Integer, String, Text, Uuid, false, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hotspots.models.base import BaseModel, JSONType

if TYPE_CHECKING:
    from hotspots.models.hotspot import HotspotSignal


class Signal(BaseModel):
    """A single reported operational issue, the atomic clustering input.

    Immutable once received except for the derived fields attached by the
    tagging and feature-engineering stages.
    """

    __tablename__ = "signals"

    title: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )
    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    # Valid values: 'LOW', 'MEDIUM', 'HIGH', 'CRITICAL'
    severity: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
    )
    severity_score: Mapped[float | None] = mapped_column(
        Float,
        nullable=True,
    )

    # Organizational references (owned by external services)
    department_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        index=True,
    )
    team_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
    )
    category_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
    )
    department_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    ai_processed: Mapped[bool] = mapped_column(
        Boolean,
        server_default=false(),
        default=False,
        nullable=False,
    )
    # Enriched tagging payload written by the tagging stage
    enhanced_tags: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType,
        nullable=True,
    )
    # Precomputed text embedding, if the embedding stage has run
    embedding: Mapped[list[float] | None] = mapped_column(
        JSONType,
        nullable=True,
    )

    # Feature vector (serialized FeatureVector), versioned
    clustering_features: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType,
        nullable=True,
    )
    features_version: Mapped[int] = mapped_column(
        Integer,
        server_default="0",
        default=0,
        nullable=False,
    )
    features_generated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    features_quality_score: Mapped[float | None] = mapped_column(
        Float,
        nullable=True,
    )

    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    # Relationships
    hotspot_links: Mapped[list["HotspotSignal"]] = relationship(
        "HotspotSignal",
        back_populates="signal",
    )

    @property
    def text(self) -> str:
        """Title and description joined, as fed to feature engineering."""
        parts = [p.strip() for p in (self.title, self.description) if p and p.strip()]
        return ". ".join(parts)

    def __repr__(self) -> str:
        return f"<Signal {self.id} severity={self.severity}>"
