"""Tests for the multi-dimensional feature engineering engine."""

import pytest
from factories import make_tags

from hotspots.core.errors import MissingPrerequisite
from hotspots.models.signal import Signal
from hotspots.schemas.features import (
    DOMAIN_SLICE,
    DOMAIN_WEIGHT,
    EXECUTIVE_SLICE,
    EXECUTIVE_WEIGHT,
    SEMANTIC_SLICE,
    SEMANTIC_WEIGHT,
    TOTAL_DIMENSIONS,
    FeatureVector,
)
from hotspots.schemas.tagging import EnhancedTags
from hotspots.services.feature_engineering import (
    DEPARTMENTS,
    ROOT_CAUSES,
    FeatureEngineeringEngine,
    FeatureRequest,
    department_from_name,
    validate_enhanced_tags,
)

DEPARTMENT_OFFSET = len(ROOT_CAUSES)
EXECUTIVE_OFFSET = EXECUTIVE_SLICE.start


def make_request(text: str | None = None, **tag_kwargs) -> FeatureRequest:
    return FeatureRequest(
        text=text or "Client approval for the structural drawings is delayed; budget at risk.",
        tags=EnhancedTags.model_validate(make_tags(**tag_kwargs)),
        severity="HIGH",
    )


@pytest.fixture
def engine():
    return FeatureEngineeringEngine()


class TestVectorLayout:
    def test_vector_has_89_dimensions(self, engine):
        result = engine.generate(make_request())
        assert len(result.features.values) == TOTAL_DIMENSIONS == 89
        assert len(result.features.domain) == 60
        assert len(result.features.semantic) == 25
        assert len(result.features.executive) == 4

    def test_block_weights_bound_each_block(self, engine):
        values = engine.generate(make_request()).features.values
        assert all(0.0 <= v <= DOMAIN_WEIGHT for v in values[DOMAIN_SLICE])
        assert all(abs(v) <= SEMANTIC_WEIGHT + 1e-9 for v in values[SEMANTIC_SLICE])
        assert all(0.0 <= v <= EXECUTIVE_WEIGHT for v in values[EXECUTIVE_SLICE])

    def test_root_cause_scores(self, engine):
        values = engine.generate(make_request()).features.values
        primary = ROOT_CAUSES.index("COMMUNICATION")
        alternative = ROOT_CAUSES.index("PROCESS")
        assert values[primary] == pytest.approx(DOMAIN_WEIGHT * 0.85)
        # Alternatives score min(0.8, 0.5 x confidence)
        assert values[alternative] == pytest.approx(DOMAIN_WEIGHT * 0.2)

    def test_department_one_hot(self, engine):
        values = engine.generate(make_request()).features.values
        department = values[DEPARTMENT_OFFSET : DEPARTMENT_OFFSET + len(DEPARTMENTS)]
        assert department[DEPARTMENTS.index("PROJECT_MGMT")] == pytest.approx(DOMAIN_WEIGHT)
        assert sum(1 for v in department if v) == 1

    def test_department_falls_back_to_signal_label(self, engine):
        request = make_request(department_priority="UNKNOWN")
        request.department_name = "Structural Engineering"
        values = engine.generate(request).features.values
        slot = DEPARTMENT_OFFSET + DEPARTMENTS.index("STRUCTURAL")
        assert values[slot] == pytest.approx(DOMAIN_WEIGHT)

    def test_unknown_department_uses_unknown_slot(self, engine):
        values = engine.generate(make_request(department_priority="UNKNOWN")).features.values
        slot = DEPARTMENT_OFFSET + DEPARTMENTS.index("UNKNOWN")
        assert values[slot] == pytest.approx(DOMAIN_WEIGHT)

    def test_business_impact_is_clamped(self, engine):
        request = make_request(
            text="Client complaint: budget overrun and schedule delay on the tower",
            urgency="CRITICAL",
        )
        values = engine.generate(request).features.values
        assert values[EXECUTIVE_OFFSET] == pytest.approx(EXECUTIVE_WEIGHT * 1.0)


class TestDeterminism:
    def test_identical_input_gives_identical_vector(self, engine):
        a = engine.generate(make_request()).features.values
        b = FeatureEngineeringEngine().generate(make_request()).features.values
        assert a == b

    def test_text_changes_semantic_block(self, engine):
        a = engine.generate(make_request(text="Steel beam delivery is late")).features
        b = engine.generate(make_request(text="Meeting notes never reached the owner")).features
        assert a.semantic != b.semantic


class TestQualityAndWarnings:
    def test_quality_metrics_in_unit_interval(self, engine):
        metrics = engine.generate(make_request()).quality_metrics
        for value in metrics.model_dump().values():
            assert 0.0 <= value <= 1.0
        assert metrics.domain_relevance == pytest.approx(0.85)

    def test_fallback_embedding_is_reported(self, engine):
        result = engine.generate(make_request())
        assert result.features.embedding_source == "hashed_text"
        assert any("fallback" in w for w in result.warnings)

    def test_precomputed_embedding_is_used(self, engine):
        request = make_request()
        request.embedding = [0.01 * i for i in range(1, 1537)]
        result = engine.generate(request)
        assert result.features.embedding_source == "precomputed"
        assert not any("fallback" in w for w in result.warnings)

    def test_low_confidence_warning(self, engine):
        result = engine.generate(make_request(confidence=0.3))
        assert any("Low root cause confidence" in w for w in result.warnings)


class TestPrerequisites:
    def test_missing_tags(self):
        with pytest.raises(MissingPrerequisite):
            validate_enhanced_tags(None, "sig-1")

    def test_invalid_tags(self):
        with pytest.raises(MissingPrerequisite):
            validate_enhanced_tags({"root_cause": {"primary": "WEATHER"}}, "sig-1")

    def test_empty_text(self, engine):
        with pytest.raises(MissingPrerequisite):
            engine.generate(make_request(text="   "))

    def test_from_signal_requires_description(self):
        signal = Signal(title="Late RFI", description="", enhanced_tags=make_tags())
        with pytest.raises(MissingPrerequisite):
            FeatureRequest.from_signal(signal)

    def test_from_signal_metadata_overrides(self):
        signal = Signal(
            title="Late RFI",
            description="RFI response from the consultant is two weeks late.",
            severity="LOW",
            enhanced_tags=make_tags(),
        )
        request = FeatureRequest.from_signal(signal, metadata={"severity": "CRITICAL"})
        assert request.severity == "CRITICAL"
        assert request.text.startswith("Late RFI. RFI response")

    def test_fallback_embedding_uses_description_only(self, engine):
        description = "RFI response from the consultant is two weeks late."
        first = FeatureRequest.from_signal(
            Signal(title="Late RFI", description=description, enhanced_tags=make_tags())
        )
        second = FeatureRequest.from_signal(
            Signal(title="Structural query", description=description, enhanced_tags=make_tags())
        )

        a = engine.semantic_features(first)
        b = engine.semantic_features(second)

        assert a.embedding_source == "hashed_text"
        assert a.embedding.tolist() == b.embedding.tolist()


class TestFeatureVectorSchema:
    def test_rejects_wrong_length(self):
        with pytest.raises(ValueError):
            FeatureVector(values=(0.0,) * 88)

    def test_rejects_non_finite(self):
        with pytest.raises(ValueError):
            FeatureVector(values=(float("nan"),) + (0.0,) * 88)


@pytest.mark.parametrize(
    "name,expected",
    [
        ("Structural Engineering", "STRUCTURAL"),
        ("MEP Coordination", "MEP"),
        ("IT", "ADMIN"),
        ("Quality Control", "QC"),
        ("Facilities", "UNKNOWN"),
        (None, "UNKNOWN"),
    ],
)
def test_department_from_name(name, expected):
    assert department_from_name(name) == expected
