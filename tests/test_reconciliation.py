"""Tests for matching clusters to existing hotspots."""

from datetime import timedelta
from unittest.mock import MagicMock
from uuid import UUID, uuid4

import numpy as np
import pytest
from factories import BASE_TIME, make_tags

from hotspots.schemas.clustering import ClusteringConfig
from hotspots.schemas.tagging import EnhancedTags
from hotspots.services.density_clustering import DensityCluster
from hotspots.services.hotspot_ranking import MemberProfile
from hotspots.services.reconciliation import (
    HotspotDraft,
    HotspotReconciler,
    MemberDraft,
    ReconciliationAction,
    ReconciliationStep,
)
from hotspots.services.repositories import (
    HotspotOverlap,
    SqlAlchemyHotspotRepository,
    SqlAlchemyHotspotSignalRepository,
)


def draft_for(*signal_ids: UUID, outlier_at: int | None = None) -> HotspotDraft:
    return HotspotDraft(
        title="Communication issues (3 signals)",
        summary="3 related signals grouped by similarity.",
        rank_score=0.6,
        confidence=0.9,
        similarity_threshold=0.01,
        linked_entities=[],
        members=[
            MemberDraft(signal_id=sid, membership_strength=0.8, is_outlier=i == outlier_at)
            for i, sid in enumerate(signal_ids)
        ],
    )


def overlap(*member_ids: UUID, minutes: int = 0, hotspot_id: UUID | None = None, status="OPEN"):
    return HotspotOverlap(
        hotspot_id=hotspot_id or uuid4(),
        created_at=BASE_TIME + timedelta(minutes=minutes),
        status=status,
        member_ids=set(member_ids),
    )


@pytest.fixture
def reconciler():
    return HotspotReconciler()


class TestDraft:
    def test_draft_from_cluster(self, reconciler):
        ids = [uuid4() for _ in range(3)]
        cluster = DensityCluster(
            id=0,
            members=[0, 1, 2],
            centroid=np.zeros(2),
            threshold=0.02,
            confidence=0.9,
            strengths=[0.8, 0.6, 0.2],
            outliers=[False, False, True],
        )
        profiles = [
            MemberProfile(signal_id=sid, severity="HIGH", tags=EnhancedTags.model_validate(make_tags()))
            for sid in ids
        ]
        draft = reconciler.draft(cluster, profiles, ClusteringConfig())

        assert draft.member_ids == set(ids)
        assert draft.outlier_count == 1
        assert draft.confidence == 0.9
        assert draft.similarity_threshold == 0.02
        assert draft.clustering_method == "hdbscan"
        assert draft.title.endswith("(3 signals)")

    def test_profile_count_must_match(self, reconciler):
        cluster = DensityCluster(id=0, members=[0, 1], centroid=np.zeros(2), threshold=0.0, confidence=0.9)
        with pytest.raises(ValueError):
            reconciler.draft(cluster, [MemberProfile(signal_id=uuid4())], ClusteringConfig())


class TestPlan:
    def test_no_overlap_creates(self, reconciler):
        steps = reconciler.plan([draft_for(uuid4(), uuid4(), uuid4())], [])
        assert [s.action for s in steps] == [ReconciliationAction.CREATE]
        assert steps[0].hotspot_id is None

    def test_overlap_updates(self, reconciler):
        a, b, c, d = (uuid4() for _ in range(4))
        existing = overlap(a, b, c)
        steps = reconciler.plan([draft_for(a, b, c, d)], [existing])
        assert steps[0].action == ReconciliationAction.UPDATE
        assert steps[0].hotspot_id == existing.hotspot_id
        assert steps[0].shared_members == 3

    def test_most_shared_members_wins(self, reconciler):
        a, b, c = (uuid4() for _ in range(3))
        small = overlap(a, minutes=0)
        large = overlap(b, c, minutes=30)
        steps = reconciler.plan([draft_for(a, b, c)], [small, large])
        assert steps[0].hotspot_id == large.hotspot_id

    def test_tie_goes_to_oldest(self, reconciler):
        a, b = uuid4(), uuid4()
        newer = overlap(a, minutes=30)
        older = overlap(b, minutes=0)
        steps = reconciler.plan([draft_for(a, b, uuid4())], [newer, older])
        assert steps[0].hotspot_id == older.hotspot_id

    def test_tie_on_age_goes_to_lowest_id(self, reconciler):
        a, b = uuid4(), uuid4()
        low = overlap(a, hotspot_id=UUID(int=1))
        high = overlap(b, hotspot_id=UUID(int=2))
        steps = reconciler.plan([draft_for(a, b, uuid4())], [high, low])
        assert steps[0].hotspot_id == UUID(int=1)

    def test_claimed_hotspot_is_not_reused(self, reconciler):
        a, b, c, d = (uuid4() for _ in range(4))
        existing = overlap(a, b, c, d)
        steps = reconciler.plan([draft_for(a, b), draft_for(c, d)], [existing])
        assert [s.action for s in steps] == [ReconciliationAction.UPDATE, ReconciliationAction.CREATE]

    def test_resolved_hotspot_can_be_updated(self, reconciler):
        a = uuid4()
        existing = overlap(a, status="RESOLVED")
        steps = reconciler.plan([draft_for(a, uuid4(), uuid4())], [existing])
        assert steps[0].hotspot_id == existing.hotspot_id


class TestApply:
    def test_create_writes_hotspot_and_edges(self, reconciler):
        hotspots, edges = MagicMock(), MagicMock()
        hotspots.create.return_value.id = uuid4()
        draft = draft_for(uuid4(), uuid4(), uuid4(), outlier_at=2)

        applied = reconciler.apply(
            ReconciliationStep(action=ReconciliationAction.CREATE, draft=draft),
            hotspots,
            edges,
            now=BASE_TIME,
        )

        kwargs = hotspots.create.call_args.kwargs
        assert kwargs["member_count"] == 3
        assert kwargs["created_at"] == BASE_TIME
        assert "status" not in kwargs
        assert edges.upsert.call_count == 3
        edges.remove_except.assert_not_called()
        assert applied.edges_written == 3

    def test_update_keeps_title_and_status(self, reconciler):
        hotspots, edges = MagicMock(), MagicMock()
        edges.remove_except.return_value = 2
        hotspot_id = uuid4()
        draft = draft_for(uuid4(), uuid4(), uuid4())

        applied = reconciler.apply(
            ReconciliationStep(action=ReconciliationAction.UPDATE, draft=draft, hotspot_id=hotspot_id),
            hotspots,
            edges,
            now=BASE_TIME,
        )

        args, kwargs = hotspots.update.call_args
        assert args == (hotspot_id,)
        assert not {"title", "summary", "status"} & kwargs.keys()
        edges.remove_except.assert_called_once_with(hotspot_id, draft.member_ids)
        assert applied.edges_removed == 2

    def test_update_against_database(self, reconciler, db, add_signal):
        a, b, c, d = (add_signal() for _ in range(4))
        hotspots = SqlAlchemyHotspotRepository(db)
        edges = SqlAlchemyHotspotSignalRepository(db)

        created = reconciler.apply(
            ReconciliationStep(action=ReconciliationAction.CREATE, draft=draft_for(a.id, b.id, c.id)),
            hotspots,
            edges,
            now=BASE_TIME,
        )
        hotspots.transition_status(created.hotspot_id, "APPROVED")

        updated = reconciler.apply(
            ReconciliationStep(
                action=ReconciliationAction.UPDATE,
                draft=draft_for(b.id, c.id, d.id),
                hotspot_id=created.hotspot_id,
            ),
            hotspots,
            edges,
            now=BASE_TIME + timedelta(hours=1),
        )

        hotspot = hotspots.get(created.hotspot_id)
        assert hotspot.status == "APPROVED"
        assert hotspot.member_count == 3
        assert updated.edges_removed == 1
        assert {e.signal_id for e in edges.list_for_hotspot(hotspot.id)} == {b.id, c.id, d.id}
