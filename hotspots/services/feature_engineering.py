"""Multi-dimensional feature engineering for signal clustering.

Turns a signal's enriched tags and text into an 89-dimension vector:

- Domain features (60%): root cause, department, project phase, urgency and
  39 business-context factors derived from the classifier output.
- Semantic features (30%): a 20-dimension reduced text embedding, A&E
  terminology density and two text patterns.
- Executive features (10%): business impact, actionability, strategic
  priority and executive attention.

Everything here is pure and deterministic: the same tags and text always
produce the same vector. Persisting the result is the caller's job.
"""

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

import numpy as np
from pydantic import ValidationError

from hotspots.core.errors import ComputationFailure, MissingPrerequisite
from hotspots.schemas.features import (
    DOMAIN_DIMENSIONS,
    DOMAIN_WEIGHT,
    EXECUTIVE_DIMENSIONS,
    EXECUTIVE_WEIGHT,
    FEATURE_MODEL_VERSION,
    SEMANTIC_DIMENSIONS,
    SEMANTIC_WEIGHT,
    FeatureGenerationResult,
    FeatureVector,
    QualityMetrics,
)
from hotspots.schemas.tagging import EnhancedTags
from hotspots.services.embeddings import FallbackEmbeddingSource, reduce_embedding

if TYPE_CHECKING:
    from hotspots.models.signal import Signal

logger = logging.getLogger(__name__)

# =============================================================================
# Category orderings (index = position in the one-hot block)
# =============================================================================

ROOT_CAUSES = ["PROCESS", "RESOURCE", "COMMUNICATION", "TECHNOLOGY", "TRAINING", "QUALITY"]
DEPARTMENTS = [
    "STRUCTURAL",
    "ARCHITECTURAL",
    "MEP",
    "PROJECT_MGMT",
    "QC",
    "ADMIN",
    "CLIENT",
    "UNKNOWN",
]
PROJECT_PHASES = ["DESIGN", "CONSTRUCTION", "CLOSEOUT"]
URGENCY_LEVELS = ["LOW", "MEDIUM", "HIGH", "CRITICAL"]
IMPACT_LEVELS = ["MINIMAL", "MODERATE", "SIGNIFICANT", "SEVERE"]
COST_LEVELS = ["LOW", "MEDIUM", "HIGH", "UNKNOWN"]
CLIENT_TIERS = ["ENTERPRISE", "MID_MARKET", "RESIDENTIAL", "UNKNOWN"]
ENTITY_TYPES = ["PROJECT", "CLIENT", "VENDOR", "LOCATION", "PERSON", "DOCUMENT", "SYSTEM"]

SEVERITY_LEVELS: dict[str, int] = {
    "LOW": 1,
    "MEDIUM": 2,
    "HIGH": 3,
    "CRITICAL": 4,
}

# Free-text department labels -> department priority, first match wins
DEPARTMENT_KEYWORDS: list[tuple[str, str]] = [
    ("struct", "STRUCTURAL"),
    ("architect", "ARCHITECTURAL"),
    ("design", "ARCHITECTURAL"),
    ("mep", "MEP"),
    ("mechanical", "MEP"),
    ("electrical", "MEP"),
    ("plumbing", "MEP"),
    ("project", "PROJECT_MGMT"),
    ("operations", "PROJECT_MGMT"),
    ("quality", "QC"),
    ("qc", "QC"),
    ("admin", "ADMIN"),
    ("finance", "ADMIN"),
    ("human resources", "ADMIN"),
    ("hr", "ADMIN"),
    ("it", "ADMIN"),
    ("client", "CLIENT"),
    ("sales", "CLIENT"),
    ("account", "CLIENT"),
]

# A&E terminology dictionaries for domain density
TECHNICAL_TERMS = [
    "structural",
    "architectural",
    "mechanical",
    "electrical",
    "plumbing",
    "hvac",
    "beam",
    "column",
    "foundation",
    "concrete",
    "steel",
    "seismic",
    "load",
    "cad",
    "revit",
    "autocad",
    "bim",
    "drawing",
    "specification",
    "detail",
    "code",
    "regulation",
    "compliance",
    "inspection",
    "building code",
    "zoning",
]
BUSINESS_TERMS = [
    "project",
    "deliverable",
    "milestone",
    "timeline",
    "schedule",
    "budget",
    "consultant",
    "contractor",
    "vendor",
    "client",
    "owner",
    "stakeholder",
    "approval",
    "review",
    "submittal",
    "rfi",
    "change order",
    "coordination",
]
CLIENT_TERMS = [
    "client",
    "owner",
    "end user",
    "stakeholder",
    "requirement",
    "expectation",
    "feedback",
    "approval",
    "satisfaction",
    "communication",
    "meeting",
    "presentation",
]

_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, float(value)))


def _one_hot(options: Sequence[str], value: str | None) -> list[float]:
    return [1.0 if option == value else 0.0 for option in options]


def _contains_any(text: str, terms: Sequence[str]) -> bool:
    return any(term in text for term in terms)


def department_from_name(name: str | None) -> str:
    """Map a free-text department label onto a department priority."""
    if not name:
        return "UNKNOWN"
    words = set(re.findall(r"[a-z]+", name.lower()))
    lowered = name.lower()
    for keyword, department in DEPARTMENT_KEYWORDS:
        # Short keywords must match a whole word ("it", "hr", "qc")
        if len(keyword) <= 3:
            if keyword in words:
                return department
        elif keyword in lowered:
            return department
    return "UNKNOWN"


def validate_enhanced_tags(raw: Any, signal_id: UUID | str | None = None) -> EnhancedTags:
    """Parse a stored tagging payload, raising MissingPrerequisite if unusable."""
    if raw is None or raw == {}:
        raise MissingPrerequisite(signal_id, "enhanced tags")
    if isinstance(raw, EnhancedTags):
        return raw
    try:
        return EnhancedTags.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"Invalid enhanced tags for signal {signal_id}: {e.error_count()} errors")
        raise MissingPrerequisite(signal_id, "valid enhanced tags") from e


@dataclass
class FeatureRequest:
    """Everything the engine needs for one signal."""

    text: str
    tags: EnhancedTags
    signal_id: UUID | None = None
    severity: str | None = None
    department_name: str | None = None
    embedding: list[float] | None = None
    # Source for the fallback embedding; defaults to text
    description: str | None = None

    @classmethod
    def from_signal(
        cls,
        signal: "Signal",
        tags: EnhancedTags | dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> "FeatureRequest":
        """Build a request from a stored signal.

        ``tags`` and ``metadata`` override what is stored on the signal.
        Recognised metadata keys: severity, department, embedding.
        """
        metadata = metadata or {}
        text = signal.text
        if not signal.description or not signal.description.strip():
            raise MissingPrerequisite(signal.id, "description text")

        parsed = validate_enhanced_tags(
            tags if tags is not None else signal.enhanced_tags,
            signal.id,
        )
        return cls(
            text=text,
            tags=parsed,
            signal_id=signal.id,
            severity=metadata.get("severity", signal.severity),
            department_name=metadata.get("department", signal.department_name),
            embedding=metadata.get("embedding", signal.embedding),
            description=signal.description,
        )


@dataclass
class SemanticAnalysis:
    """Intermediate semantic block results."""

    embedding: np.ndarray
    embedding_source: str
    technical_density: float
    business_density: float
    client_density: float
    complexity: float
    clarity: float

    @property
    def mean_density(self) -> float:
        return (self.technical_density + self.business_density + self.client_density) / 3

    def as_list(self) -> list[float]:
        return [
            *self.embedding.tolist(),
            self.technical_density,
            self.business_density,
            self.client_density,
            self.complexity,
            self.clarity,
        ]


@dataclass
class ExecutiveFactors:
    """Business-intelligence factors, each in [0, 1]."""

    business_impact: float
    actionability: float
    strategic_priority: float
    executive_attention: float
    notes: list[str] = field(default_factory=list)

    def as_list(self) -> list[float]:
        return [
            self.business_impact,
            self.actionability,
            self.strategic_priority,
            self.executive_attention,
        ]


class FeatureEngineeringEngine:
    """Builds clustering feature vectors from enriched tags and text."""

    MODEL_VERSION = FEATURE_MODEL_VERSION

    # Executive multipliers
    URGENCY_IMPACT_MULTIPLIER: dict[str, float] = {
        "LOW": 0.8,
        "MEDIUM": 1.0,
        "HIGH": 1.2,
        "CRITICAL": 1.5,
    }
    DEPARTMENT_ACTIONABILITY: dict[str, float] = {
        "STRUCTURAL": 0.7,
        "ARCHITECTURAL": 0.8,
        "MEP": 0.6,
        "PROJECT_MGMT": 0.9,
        "QC": 0.8,
        "ADMIN": 0.9,
        "CLIENT": 0.4,
        "UNKNOWN": 0.5,
    }
    CLIENT_TIER_PRIORITY: dict[str, float] = {
        "ENTERPRISE": 1.4,
        "MID_MARKET": 1.1,
        "RESIDENTIAL": 0.9,
        "UNKNOWN": 1.0,
    }
    ROOT_CAUSE_ATTENTION: dict[str, float] = {
        "PROCESS": 0.8,
        "RESOURCE": 1.0,
        "COMMUNICATION": 1.2,
        "TECHNOLOGY": 0.7,
        "TRAINING": 0.6,
        "QUALITY": 1.3,
    }

    LOW_CONFIDENCE_THRESHOLD = 0.5

    def __init__(self, embedding_source: FallbackEmbeddingSource | None = None):
        self.embedding_source = embedding_source or FallbackEmbeddingSource()

    # =========================================================================
    # Domain block
    # =========================================================================

    def resolve_department(self, request: FeatureRequest) -> str:
        """Department priority from tags, falling back to the signal's label."""
        context = request.tags.business_context
        if context.department_priority != "UNKNOWN":
            return context.department_priority
        return department_from_name(request.department_name or context.department)

    def _root_cause_scores(self, tags: EnhancedTags) -> list[float]:
        scores = dict.fromkeys(ROOT_CAUSES, 0.0)
        scores[tags.root_cause.primary] = tags.root_cause.confidence
        alternatives = [
            alt for alt in tags.root_cause.alternatives if alt.cause != tags.root_cause.primary
        ]
        for alt in alternatives[:2]:
            scores[alt.cause] = min(0.8, alt.confidence * 0.5)
        return [scores[cause] for cause in ROOT_CAUSES]

    def _business_context(self, request: FeatureRequest) -> list[float]:
        tags = request.tags
        context = tags.business_context
        diag = tags.diagnostics
        entities = tags.extracted_entities
        process = tags.process_context

        entity_counts = [
            min(1.0, sum(1 for e in entities if e.type == entity_type) / 3)
            for entity_type in ENTITY_TYPES
        ]
        entity_confidence = (
            sum(e.confidence for e in entities) / len(entities) if entities else 0.0
        )

        alternatives = sorted(
            (alt.confidence for alt in tags.root_cause.alternatives),
            reverse=True,
        )
        top_alternative = alternatives[0] if alternatives else 0.0
        severity = SEVERITY_LEVELS.get((request.severity or "").upper(), 0)

        issue_type = tags.issue_type
        hierarchy_depth = len(issue_type.hierarchy) if issue_type else 0
        issue_confidence = issue_type.confidence if issue_type else 0.0

        quality_category = tags.domain_specific.quality_category
        compliance_risk = 1.0 if quality_category == "CODE_COMPLIANCE" else 0.3
        schedule_risk = 0.8 if context.project_phase == "CONSTRUCTION" else 0.4
        budget_risk = 0.9 if quality_category == "CONSTRUCTION_DEFECT" else 0.3

        values = [
            tags.root_cause.confidence,
            min(1.0, diag.processing_time_ms / 500),
            min(1.0, diag.rule_match_count / 6),
            1.0 if diag.ai_enhancement_needed else 0.0,
            min(1.0, diag.total_keywords_found / 10),
            min(1.0, diag.strong_matches / 3),
            min(1.0, diag.weak_matches / 3),
            *_one_hot(IMPACT_LEVELS, context.impact),
            *_one_hot(COST_LEVELS, context.estimated_cost),
            *_one_hot(CLIENT_TIERS, context.client_tier),
            *entity_counts,
            entity_confidence,
            min(1.0, len(process.stakeholders) / 10),
            min(1.0, (len(process.affected_workflows) + len(process.dependencies)) / 10),
            1.0 if process.blockers else 0.0,
            severity / 4,
            min(1.0, len(tags.root_cause.alternatives) / 3),
            top_alternative,
            _clamp(tags.root_cause.confidence - top_alternative),
            min(1.0, hierarchy_depth / 4),
            issue_confidence,
            compliance_risk,
            schedule_risk,
            budget_risk,
        ]
        return values

    def domain_features(self, request: FeatureRequest) -> list[float]:
        """Unweighted 60-dimension domain block."""
        context = request.tags.business_context
        vector = [
            *self._root_cause_scores(request.tags),
            *_one_hot(DEPARTMENTS, self.resolve_department(request)),
            *_one_hot(PROJECT_PHASES, context.project_phase),
            *_one_hot(URGENCY_LEVELS, context.urgency),
            *self._business_context(request),
        ]
        if len(vector) != DOMAIN_DIMENSIONS:
            raise ComputationFailure(f"domain block has {len(vector)} dimensions")
        return vector

    # =========================================================================
    # Semantic block
    # =========================================================================

    @staticmethod
    def terminology_density(text: str, terms: Sequence[str]) -> float:
        lowered = text.lower()
        found = sum(1 for term in terms if term in lowered)
        return found / len(terms)

    @staticmethod
    def semantic_complexity(text: str) -> float:
        """Average word length and vocabulary richness, in [0, 1]."""
        words = text.split()
        if not words:
            return 0.0
        unique = {w.lower() for w in words}
        avg_word_length = sum(len(w) for w in words) / len(words)
        richness = len(unique) / len(words)
        return min(1.0, (avg_word_length / 10 + richness) / 2)

    @staticmethod
    def clarity(text: str) -> float:
        """Highest for sentences of around 15 words, falling off either side."""
        sentences = [s for s in _SENTENCE_SPLIT_RE.split(text) if s.strip()]
        if not sentences:
            return 0.0
        avg_words = sum(len(s.split()) for s in sentences) / len(sentences)
        return _clamp(1.0 - abs(avg_words - 15) / 30)

    def semantic_features(self, request: FeatureRequest) -> SemanticAnalysis:
        embedding = self.embedding_source.resolve(
            request.description or request.text,
            request.embedding,
        )
        return SemanticAnalysis(
            embedding=reduce_embedding(embedding.vector),
            embedding_source=embedding.source,
            technical_density=self.terminology_density(request.text, TECHNICAL_TERMS),
            business_density=self.terminology_density(request.text, BUSINESS_TERMS),
            client_density=self.terminology_density(request.text, CLIENT_TERMS),
            complexity=self.semantic_complexity(request.text),
            clarity=self.clarity(request.text),
        )

    # =========================================================================
    # Executive block
    # =========================================================================

    def executive_features(self, request: FeatureRequest) -> ExecutiveFactors:
        text = request.text.lower()
        tags = request.tags
        context = tags.business_context
        notes: list[str] = []

        business_impact = 0.5
        if _contains_any(text, ("budget", "cost")):
            business_impact += 0.2
            notes.append("cost impact")
        if _contains_any(text, ("delay", "timeline", "deadline")):
            business_impact += 0.2
            notes.append("timeline impact")
        if _contains_any(text, ("client", "satisfaction", "complaint")):
            business_impact += 0.1
            notes.append("client satisfaction")
        business_impact *= self.URGENCY_IMPACT_MULTIPLIER[context.urgency]

        actionability = 0.6
        if _contains_any(text, ("simple", "quick", "easy")):
            actionability += 0.2
        if _contains_any(text, ("complex", "difficult", "major")):
            actionability -= 0.2
        actionability *= self.DEPARTMENT_ACTIONABILITY[self.resolve_department(request)]

        strategic_priority = 0.5
        if _contains_any(text, ("enterprise", "major", "strategic")):
            strategic_priority += 0.3
        if tags.root_cause.primary == "QUALITY":
            strategic_priority += 0.2
        strategic_priority *= self.CLIENT_TIER_PRIORITY[context.client_tier]

        executive_attention = 0.4
        if _contains_any(text, ("executive", "board", "ceo")):
            executive_attention += 0.4
            notes.append("executive visibility")
        if _contains_any(text, ("escalation", "complaint", "urgent")):
            executive_attention += 0.3
            notes.append("escalation")
        executive_attention *= self.ROOT_CAUSE_ATTENTION[tags.root_cause.primary]

        return ExecutiveFactors(
            business_impact=_clamp(business_impact),
            actionability=_clamp(actionability),
            strategic_priority=_clamp(strategic_priority),
            executive_attention=_clamp(executive_attention),
            notes=notes,
        )

    # =========================================================================
    # Assembly
    # =========================================================================

    def quality_metrics(
        self,
        request: FeatureRequest,
        semantic: SemanticAnalysis,
        executive: ExecutiveFactors,
    ) -> QualityMetrics:
        domain_relevance = _clamp(request.tags.root_cause.confidence)
        semantic_quality = _clamp((semantic.mean_density + semantic.complexity) / 2)
        executive_alignment = _clamp(sum(executive.as_list()) / EXECUTIVE_DIMENSIONS)
        overall = _clamp(
            DOMAIN_WEIGHT * domain_relevance
            + SEMANTIC_WEIGHT * semantic_quality
            + EXECUTIVE_WEIGHT * executive_alignment
        )
        return QualityMetrics(
            overall_confidence=overall,
            domain_relevance=domain_relevance,
            semantic_quality=semantic_quality,
            executive_alignment=executive_alignment,
        )

    def generate(
        self,
        request: FeatureRequest,
        version: int = 1,
        generated_at: datetime | None = None,
    ) -> FeatureGenerationResult:
        """Generate the weighted feature vector and its quality metrics."""
        if not request.text or not request.text.strip():
            raise MissingPrerequisite(request.signal_id, "description text")

        domain = self.domain_features(request)
        semantic = self.semantic_features(request)
        executive = self.executive_features(request)

        semantic_values = semantic.as_list()
        if len(semantic_values) != SEMANTIC_DIMENSIONS:
            raise ComputationFailure(f"semantic block has {len(semantic_values)} dimensions")

        values = (
            [v * DOMAIN_WEIGHT for v in domain]
            + [v * SEMANTIC_WEIGHT for v in semantic_values]
            + [v * EXECUTIVE_WEIGHT for v in executive.as_list()]
        )

        warnings: list[str] = []
        if semantic.embedding_source != "precomputed":
            warnings.append(
                f"No precomputed embedding; used {semantic.embedding_source} fallback"
            )
            logger.warning(
                f"Signal {request.signal_id}: falling back to {semantic.embedding_source} embedding"
            )
        if request.tags.root_cause.confidence < self.LOW_CONFIDENCE_THRESHOLD:
            warnings.append(
                f"Low root cause confidence ({request.tags.root_cause.confidence:.2f})"
            )

        features = FeatureVector(
            values=tuple(float(v) for v in values),
            version=version,
            model_version=self.MODEL_VERSION,
            embedding_source=semantic.embedding_source,
            generated_at=generated_at,
        )
        return FeatureGenerationResult(
            signal_id=request.signal_id,
            features=features,
            quality_metrics=self.quality_metrics(request, semantic, executive),
            warnings=warnings,
        )


# Singleton instance for easy import
_feature_engine: FeatureEngineeringEngine | None = None


def get_feature_engine() -> FeatureEngineeringEngine:
    """Get the singleton FeatureEngineeringEngine instance."""
    global _feature_engine
    if _feature_engine is None:
        _feature_engine = FeatureEngineeringEngine()
    return _feature_engine
