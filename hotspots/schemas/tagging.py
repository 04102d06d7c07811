"""Enriched tagging payload produced by the upstream classification stage.

Stored on ``Signal.enhanced_tags``. The clustering core only reads it; the
tagging stage (rule-based classifier plus LLM enhancement) owns writes.
"""

from typing import Literal

from pydantic import BaseModel, Field

RootCause = Literal[
    "PROCESS",
    "RESOURCE",
    "COMMUNICATION",
    "TECHNOLOGY",
    "TRAINING",
    "QUALITY",
]
ProjectPhase = Literal["DESIGN", "CONSTRUCTION", "CLOSEOUT", "UNKNOWN"]
DepartmentPriority = Literal[
    "STRUCTURAL",
    "ARCHITECTURAL",
    "MEP",
    "PROJECT_MGMT",
    "QC",
    "ADMIN",
    "CLIENT",
    "UNKNOWN",
]
Urgency = Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"]
ClientTier = Literal["ENTERPRISE", "MID_MARKET", "RESIDENTIAL", "UNKNOWN"]
BusinessImpact = Literal["MINIMAL", "MODERATE", "SIGNIFICANT", "SEVERE"]
CostImpact = Literal["LOW", "MEDIUM", "HIGH", "UNKNOWN"]
EntityType = Literal[
    "PROJECT",
    "CLIENT",
    "VENDOR",
    "LOCATION",
    "PERSON",
    "DOCUMENT",
    "SYSTEM",
]
QualityCategory = Literal[
    "DESIGN_ERROR",
    "CONSTRUCTION_DEFECT",
    "CODE_COMPLIANCE",
    "SAFETY",
    "COORDINATION",
]


class AlternativeCause(BaseModel):
    """A runner-up root cause considered by the classifier."""

    cause: RootCause
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str | None = None


class RootCauseClassification(BaseModel):
    """Primary root cause with confidence and alternatives."""

    primary: RootCause
    confidence: float = Field(ge=0.0, le=1.0)
    alternatives: list[AlternativeCause] = Field(default_factory=list)


class IssueType(BaseModel):
    """Hierarchical issue type, e.g. ['TECHNICAL', 'STRUCTURAL', 'FOUNDATION']."""

    primary: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    hierarchy: list[str] = Field(default_factory=list)


class BusinessContext(BaseModel):
    """Business context assessment used for executive prioritization."""

    project_phase: ProjectPhase = "UNKNOWN"
    department_priority: DepartmentPriority = "UNKNOWN"
    urgency: Urgency = "MEDIUM"
    client_tier: ClientTier = "UNKNOWN"
    impact: BusinessImpact = "MODERATE"
    estimated_cost: CostImpact = "UNKNOWN"
    department: str | None = None


class ExtractedEntity(BaseModel):
    """Named entity found in the signal text."""

    type: EntityType
    value: str = Field(min_length=1)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    normalized: str | None = None

    @property
    def key(self) -> str:
        """Normalized name used to match entities across signals."""
        return (self.normalized or self.value).strip().lower()


class DomainSpecific(BaseModel):
    """Architecture & engineering specific classifications."""

    quality_category: QualityCategory | None = None
    building_type: str | None = None
    discipline: str | None = None


class ProcessContext(BaseModel):
    """Workflow and process context."""

    affected_workflows: list[str] = Field(default_factory=list)
    stakeholders: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    blockers: list[str] = Field(default_factory=list)


class ClassificationDiagnostics(BaseModel):
    """Rule-engine diagnostics attached by the classifier."""

    total_keywords_found: int = Field(default=0, ge=0)
    strong_matches: int = Field(default=0, ge=0)
    weak_matches: int = Field(default=0, ge=0)
    rule_match_count: int = Field(default=0, ge=0)
    processing_time_ms: float = Field(default=0.0, ge=0.0)
    ai_enhancement_needed: bool = False


class EnhancedTags(BaseModel):
    """Complete enriched tagging payload for one signal."""

    root_cause: RootCauseClassification
    business_context: BusinessContext
    issue_type: IssueType | None = None
    extracted_entities: list[ExtractedEntity] = Field(default_factory=list)
    domain_specific: DomainSpecific = Field(default_factory=DomainSpecific)
    process_context: ProcessContext = Field(default_factory=ProcessContext)
    diagnostics: ClassificationDiagnostics = Field(default_factory=ClassificationDiagnostics)
