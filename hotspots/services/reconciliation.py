"""Reconciliation of freshly computed clusters with persisted hotspots.

Matching is by shared signal ids only. Each cluster either updates the
unclaimed existing hotspot it overlaps most, or creates a new one. Status is
never touched here; transitions go through the hotspot repository.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from hotspots.schemas.clustering import CLUSTERING_METHOD, ClusteringConfig
from hotspots.services.density_clustering import DensityCluster
from hotspots.services.hotspot_ranking import HotspotRanker, MemberProfile, get_hotspot_ranker
from hotspots.services.repositories import (
    HotspotOverlap,
    HotspotRepository,
    HotspotSignalRepository,
)

logger = logging.getLogger(__name__)


class ReconciliationAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"


@dataclass
class MemberDraft:
    signal_id: UUID
    membership_strength: float
    is_outlier: bool


@dataclass
class HotspotDraft:
    """Everything needed to persist one cluster as a hotspot."""

    title: str
    summary: str
    rank_score: float
    confidence: float
    similarity_threshold: float
    linked_entities: list[dict[str, Any]]
    members: list[MemberDraft]
    clustering_method: str = CLUSTERING_METHOD

    @property
    def member_ids(self) -> set[UUID]:
        return {m.signal_id for m in self.members}

    @property
    def outlier_count(self) -> int:
        return sum(1 for m in self.members if m.is_outlier)


@dataclass
class ReconciliationStep:
    """Planned write for one cluster."""

    action: ReconciliationAction
    draft: HotspotDraft
    hotspot_id: UUID | None = None
    shared_members: int = 0


@dataclass
class AppliedStep:
    hotspot_id: UUID
    action: ReconciliationAction
    edges_written: int
    edges_removed: int = 0


class HotspotReconciler:
    """Plans and applies create-or-update decisions for clusters."""

    def __init__(self, ranker: HotspotRanker | None = None):
        self.ranker = ranker or get_hotspot_ranker()

    def draft(
        self,
        cluster: DensityCluster,
        profiles: Sequence[MemberProfile],
        config: ClusteringConfig,
    ) -> HotspotDraft:
        """Turn a cluster and its members' profiles into a hotspot draft.

        ``profiles`` is in the same order as ``cluster.members``.
        """
        if len(profiles) != cluster.size:
            raise ValueError(
                f"Cluster {cluster.id} has {cluster.size} members but {len(profiles)} profiles"
            )
        assessment = self.ranker.assess(profiles, cluster.confidence)
        members = [
            MemberDraft(
                signal_id=profile.signal_id,
                membership_strength=strength,
                is_outlier=strength < config.outlier_threshold,
            )
            for profile, strength in zip(profiles, cluster.strengths, strict=True)
        ]
        return HotspotDraft(
            title=assessment.title,
            summary=assessment.summary,
            rank_score=assessment.rank_score,
            confidence=cluster.confidence,
            similarity_threshold=cluster.threshold,
            linked_entities=assessment.linked_entities,
            members=members,
        )

    def plan(
        self,
        drafts: Sequence[HotspotDraft],
        overlaps: Sequence[HotspotOverlap],
    ) -> list[ReconciliationStep]:
        """Decide CREATE or UPDATE for each draft, in draft order.

        A draft updates the hotspot sharing the most members with it (ties:
        oldest first, then lowest id) unless an earlier draft in this run has
        already claimed that hotspot.
        """
        claimed: set[UUID] = set()
        steps: list[ReconciliationStep] = []

        for draft in drafts:
            member_ids = draft.member_ids
            candidates = [
                (len(overlap.member_ids & member_ids), overlap)
                for overlap in overlaps
                if overlap.hotspot_id not in claimed and overlap.member_ids & member_ids
            ]
            if not candidates:
                steps.append(ReconciliationStep(action=ReconciliationAction.CREATE, draft=draft))
                continue

            shared, best = min(
                candidates,
                key=lambda c: (-c[0], c[1].created_at, str(c[1].hotspot_id)),
            )
            claimed.add(best.hotspot_id)
            steps.append(
                ReconciliationStep(
                    action=ReconciliationAction.UPDATE,
                    draft=draft,
                    hotspot_id=best.hotspot_id,
                    shared_members=shared,
                )
            )
        return steps

    def apply(
        self,
        step: ReconciliationStep,
        hotspots: HotspotRepository,
        edges: HotspotSignalRepository,
        now: datetime,
    ) -> AppliedStep:
        """Write one planned step. The caller owns the transaction."""
        draft = step.draft
        removed = 0

        if step.action == ReconciliationAction.CREATE:
            hotspot = hotspots.create(
                title=draft.title,
                summary=draft.summary,
                rank_score=draft.rank_score,
                confidence=draft.confidence,
                clustering_method=draft.clustering_method,
                similarity_threshold=draft.similarity_threshold,
                linked_entities=draft.linked_entities,
                member_count=len(draft.members),
                last_clustered_at=now,
                created_at=now,
            )
            hotspot_id = hotspot.id
        else:
            hotspot_id = step.hotspot_id
            hotspots.update(
                hotspot_id,
                rank_score=draft.rank_score,
                confidence=draft.confidence,
                clustering_method=draft.clustering_method,
                similarity_threshold=draft.similarity_threshold,
                linked_entities=draft.linked_entities,
                member_count=len(draft.members),
                last_clustered_at=now,
            )
            removed = edges.remove_except(hotspot_id, draft.member_ids)
            if removed:
                logger.info(f"Hotspot {hotspot_id}: removed {removed} superseded edges")

        for member in draft.members:
            edges.upsert(
                hotspot_id=hotspot_id,
                signal_id=member.signal_id,
                membership_strength=member.membership_strength,
                is_outlier=member.is_outlier,
            )

        return AppliedStep(
            hotspot_id=hotspot_id,
            action=step.action,
            edges_written=len(draft.members),
            edges_removed=removed,
        )
