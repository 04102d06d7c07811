"""Hotspot ranking and presentation.

Rank score formula (all terms in [0, 1]):

    rank = 0.4 x avg_severity / 4 + 0.3 x min(count / 10, 1) + 0.3 x confidence

Severity is LOW=1 .. CRITICAL=4, averaged only over members that carry one.
Also builds the linked-entity summary and a deterministic title and summary
from the dominant root cause and department.
"""

import logging
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from hotspots.schemas.tagging import EnhancedTags
from hotspots.services.feature_engineering import SEVERITY_LEVELS

logger = logging.getLogger(__name__)


@dataclass
class MemberProfile:
    """What the ranker needs to know about one cluster member."""

    signal_id: UUID
    severity: str | None = None
    department_name: str | None = None
    tags: EnhancedTags | None = None


@dataclass
class HotspotAssessment:
    """Ranked, presentable view of one cluster."""

    rank_score: float
    average_severity: float
    title: str
    summary: str
    linked_entities: list[dict[str, Any]] = field(default_factory=list)


class HotspotRanker:
    """Transparent scoring for executive prioritisation."""

    SEVERITY_WEIGHT = 0.4
    SIZE_WEIGHT = 0.3
    CONFIDENCE_WEIGHT = 0.3

    # Member count at which the size term saturates
    SIZE_SATURATION = 10
    MAX_SEVERITY = 4

    def average_severity(self, severities: Sequence[str | None]) -> float:
        """Mean severity level over members that have one, 0 when none do."""
        levels = [
            SEVERITY_LEVELS[s.upper()]
            for s in severities
            if s and s.upper() in SEVERITY_LEVELS
        ]
        if not levels:
            return 0.0
        return sum(levels) / len(levels)

    def rank_score(
        self,
        severities: Sequence[str | None],
        member_count: int,
        confidence: float,
    ) -> float:
        avg_severity = self.average_severity(severities)
        score = (
            self.SEVERITY_WEIGHT * (avg_severity / self.MAX_SEVERITY)
            + self.SIZE_WEIGHT * min(member_count / self.SIZE_SATURATION, 1.0)
            + self.CONFIDENCE_WEIGHT * confidence
        )
        return max(0.0, min(1.0, score))

    def linked_entities(self, members: Sequence[MemberProfile]) -> list[dict[str, Any]]:
        """Entities mentioned by more than one member signal.

        Each signal counts at most once per entity. Sorted by count
        descending, then type, then name.
        """
        counts: Counter[tuple[str, str]] = Counter()
        display: dict[tuple[str, str], str] = {}

        for member in members:
            if member.tags is None:
                continue
            seen: set[tuple[str, str]] = set()
            for entity in member.tags.extracted_entities:
                key = (entity.type, entity.key)
                if key in seen:
                    continue
                seen.add(key)
                counts[key] += 1
                display.setdefault(key, (entity.normalized or entity.value).strip())

        linked = [
            {"type": entity_type, "name": display[(entity_type, name_key)], "count": count}
            for (entity_type, name_key), count in counts.items()
            if count > 1
        ]
        linked.sort(key=lambda e: (-e["count"], e["type"], e["name"]))
        return linked

    @staticmethod
    def _dominant(values: Sequence[str]) -> str | None:
        if not values:
            return None
        counts = Counter(values)
        # Most common, ties broken alphabetically
        return min(counts, key=lambda v: (-counts[v], v))

    def dominant_root_cause(self, members: Sequence[MemberProfile]) -> str | None:
        return self._dominant([m.tags.root_cause.primary for m in members if m.tags])

    def dominant_department(self, members: Sequence[MemberProfile]) -> str | None:
        labels: list[str] = []
        for member in members:
            if member.department_name:
                labels.append(member.department_name)
            elif member.tags and member.tags.business_context.department:
                labels.append(member.tags.business_context.department)
            elif member.tags and member.tags.business_context.department_priority != "UNKNOWN":
                labels.append(
                    member.tags.business_context.department_priority.replace("_", " ").title()
                )
        return self._dominant(labels)

    def title(self, members: Sequence[MemberProfile]) -> str:
        root_cause = self.dominant_root_cause(members)
        department = self.dominant_department(members)
        subject = f"{root_cause.title()} issues" if root_cause else "Recurring issues"
        if department:
            subject = f"{subject} in {department}"
        return f"{subject} ({len(members)} signals)"

    def summary(self, members: Sequence[MemberProfile], confidence: float) -> str:
        root_cause = self.dominant_root_cause(members)
        department = self.dominant_department(members)
        parts = [f"{len(members)} related signals grouped by similarity"]
        if root_cause:
            share = sum(1 for m in members if m.tags and m.tags.root_cause.primary == root_cause)
            parts.append(f"{share} attributed to {root_cause.lower()} root causes")
        if department:
            parts.append(f"mostly reported by {department}")
        return "; ".join(parts) + f". Cluster confidence {confidence:.2f}."

    def assess(self, members: Sequence[MemberProfile], confidence: float) -> HotspotAssessment:
        severities = [m.severity for m in members]
        return HotspotAssessment(
            rank_score=self.rank_score(severities, len(members), confidence),
            average_severity=self.average_severity(severities),
            title=self.title(members),
            summary=self.summary(members, confidence),
            linked_entities=self.linked_entities(members),
        )


# Singleton instance for easy import
_hotspot_ranker: HotspotRanker | None = None


def get_hotspot_ranker() -> HotspotRanker:
    """Get the singleton HotspotRanker instance."""
    global _hotspot_ranker
    if _hotspot_ranker is None:
        _hotspot_ranker = HotspotRanker()
    return _hotspot_ranker
