"""Tests for the clustering Celery tasks (called directly, no broker)."""

from unittest.mock import patch
from uuid import uuid4

import pytest
from celery.exceptions import Retry

from hotspots.core.errors import MissingPrerequisite, PersistenceConflict
from hotspots.schemas.clustering import RunResult
from hotspots.workers.clustering import MAX_RETRIES, cluster_hotspots, generate_signal_features


class TestClusterHotspotsTask:
    def test_returns_json_safe_result(self):
        hotspot_id = uuid4()
        result = RunResult(success=True, hotspots_created=1, hotspot_ids=[hotspot_id])

        with patch(
            "hotspots.services.clustering_pipeline.run_clustering", return_value=result
        ) as run:
            payload = cluster_hotspots({"min_cluster_size": 4})

        run.assert_called_once_with({"min_cluster_size": 4})
        assert payload["success"] is True
        assert payload["hotspot_ids"] == [str(hotspot_id)]
        assert "timestamp" in payload

    def test_retryable_failure_is_retried(self):
        result = RunResult(success=False, error_code="persistence_conflict", retryable=True)

        with (
            patch("hotspots.services.clustering_pipeline.run_clustering", return_value=result),
            patch.object(cluster_hotspots, "retry", side_effect=Retry()) as retry,
        ):
            with pytest.raises(Retry):
                cluster_hotspots()

        retry.assert_called_once_with(countdown=60)

    def test_exhausted_retries_return_result(self):
        result = RunResult(
            success=False,
            signals_processed=7,
            error_code="persistence_conflict",
            retryable=True,
        )

        cluster_hotspots.push_request(retries=MAX_RETRIES)
        try:
            with (
                patch("hotspots.services.clustering_pipeline.run_clustering", return_value=result),
                patch.object(cluster_hotspots, "retry") as retry,
            ):
                payload = cluster_hotspots.run()
        finally:
            cluster_hotspots.pop_request()

        retry.assert_not_called()
        assert payload["success"] is False
        assert payload["signals_processed"] == 7
        assert payload["error_code"] == "persistence_conflict"
        assert "timestamp" in payload

    def test_permanent_failure_is_returned(self):
        result = RunResult(success=False, error_code="computation_failure", retryable=False)

        with patch("hotspots.services.clustering_pipeline.run_clustering", return_value=result):
            payload = cluster_hotspots()

        assert payload["success"] is False
        assert payload["error_code"] == "computation_failure"


class TestGenerateSignalFeaturesTask:
    def test_missing_prerequisite_is_reported(self):
        signal_id = uuid4()
        error = MissingPrerequisite(signal_id, "enhanced tags")

        with patch("hotspots.services.signal_features.generate_features", side_effect=error):
            payload = generate_signal_features(str(signal_id))

        assert payload["status"] == "failed"
        assert payload["error_code"] == "missing_prerequisite"

    def test_conflict_is_retried(self):
        with (
            patch(
                "hotspots.services.signal_features.generate_features",
                side_effect=PersistenceConflict("version moved"),
            ),
            patch.object(generate_signal_features, "retry", side_effect=Retry()),
        ):
            with pytest.raises(Retry):
                generate_signal_features(str(uuid4()))

    def test_conflict_after_last_retry_is_reported(self):
        generate_signal_features.push_request(retries=MAX_RETRIES)
        try:
            with patch(
                "hotspots.services.signal_features.generate_features",
                side_effect=PersistenceConflict("version moved"),
            ):
                payload = generate_signal_features.run(str(uuid4()))
        finally:
            generate_signal_features.pop_request()

        assert payload["status"] == "failed"
        assert payload["error_code"] == "persistence_conflict"
