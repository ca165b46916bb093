from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict, Any, NamedTuple
from datetime import datetime, timezone
from enum import Enum, IntEnum
import time


class StageId(str, Enum):
    """Units of generation work, plus the two progress-only pseudo-stages"""
    INITIALIZING = "initializing"
    DESCRIPTION = "description"
    USP_EXTRACTION = "usp_extraction"
    KEYWORDS = "keywords"
    CHAPTERS = "chapters"
    FAQ = "faq"
    CASE_STUDIES = "case_studies"
    HASHTAGS = "hashtags"
    STEP_BY_STEP = "step_by_step"
    GROUNDING_AGGREGATION = "grounding_aggregation"
    COMPLETE = "complete"


class StageStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DEGRADED = "degraded"


class AuthorityTier(IntEnum):
    """1 = official / highest authority ... 4 = unclassified"""
    OFFICIAL = 1
    TECH_MEDIA = 2
    COMMUNITY = 3
    UNCLASSIFIED = 4


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class EventType(str, Enum):
    STAGE_START = "stage_start"
    PROGRESS = "progress"
    STAGE_COMPLETE = "stage_complete"
    RESULT = "result"
    ERROR = "error"
    COMPLETE = "complete"


# ---------------------------------------------------------------------------
# Sources and grounding
# ---------------------------------------------------------------------------

class Citation(BaseModel):
    """URI + title pair returned by a provider"""
    uri: str
    title: Optional[str] = None


class Source(BaseModel):
    """A cited reference, deduplicated by URI across stages.

    ``tier`` is assigned once from the URI when the source is created and is
    never recomputed; aggregation only touches ``access_count`` and ``used_in``.
    """
    model_config = ConfigDict(frozen=True)

    uri: str
    title: str = ""
    tier: AuthorityTier = AuthorityTier.UNCLASSIFIED
    access_count: int = Field(default=1, ge=1)
    used_in: List[str] = Field(default_factory=list)


class SectionCoverage(BaseModel):
    sections_with_grounding: int = Field(default=0, ge=0)
    total_sections: int = Field(default=0, ge=0)
    claims_with_sources: int = Field(default=0, ge=0)
    total_claims: int = Field(default=0, ge=0)


class GroundingBreakdown(BaseModel):
    citation_percentage: float = 0.0
    tier1_sources: int = 0
    tier2_sources: int = 0
    tier3_sources: int = 0
    tier4_sources: int = 0
    sections_with_grounding: int = 0
    total_sections: int = 0
    claims_with_sources: int = 0
    total_claims: int = 0


class GroundingQualityScore(BaseModel):
    model_config = ConfigDict(frozen=True)

    citation_density: float = Field(ge=0, le=3)
    source_authority: float = Field(ge=0, le=4)
    coverage: float = Field(ge=0, le=3)
    total: float = Field(ge=0, le=10)
    breakdown: GroundingBreakdown


class GroundingMetadata(BaseModel):
    web_search_queries: List[str] = Field(default_factory=list)
    sources: List[Source] = Field(default_factory=list)
    citation_density: float = 0.0  # % of stages that contributed sources
    total_citations: int = 0
    unique_sources: int = 0


# ---------------------------------------------------------------------------
# Fabrication guard
# ---------------------------------------------------------------------------

class FabricationCheck(BaseModel):
    has_fabrication: bool = False
    violations: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


class SanitizeResult(NamedTuple):
    sanitized: str
    was_modified: bool
    modifications: List[str]


# ---------------------------------------------------------------------------
# Stage payloads
# ---------------------------------------------------------------------------

class DescriptionPayload(BaseModel):
    preview: str
    full: str


class UniqueSellingPoint(BaseModel):
    feature: str
    category: str = "general"
    differentiation: str = ""
    user_benefit: str = ""
    confidence: ConfidenceLevel = ConfidenceLevel.MEDIUM
    evidence_sources: List[str] = Field(default_factory=list)


class UspPayload(BaseModel):
    usps: List[UniqueSellingPoint]
    competitive_context: str = ""


class ChaptersPayload(BaseModel):
    timestamps: str


class FaqItem(BaseModel):
    question: str
    answer: str


class FaqPayload(BaseModel):
    faqs: List[FaqItem]


class StepByStepPayload(BaseModel):
    steps: List[str]


class CaseStudy(BaseModel):
    title: str
    scenario: str
    solution: str
    linked_usps: List[str] = Field(default_factory=list)
    evidence_sources: List[str] = Field(default_factory=list)


class CaseStudiesPayload(BaseModel):
    case_studies: List[CaseStudy]


class KeywordsPayload(BaseModel):
    product: List[str]
    generic: List[str] = Field(default_factory=list)
    density_score: float = Field(default=0.0, ge=0, le=100)


class HashtagsPayload(BaseModel):
    hashtags: List[str]
    categories: Dict[str, List[str]] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Stage results, progress, events
# ---------------------------------------------------------------------------

class StageResult(BaseModel):
    """Output of one stage. Immutable once returned by the orchestrator."""
    model_config = ConfigDict(frozen=True)

    stage: StageId
    status: StageStatus
    payload: Optional[Dict[str, Any]] = None
    sources: List[Source] = Field(default_factory=list)
    search_queries: List[str] = Field(default_factory=list)
    retries: int = Field(default=0, ge=0)
    error: Optional[str] = None
    sanitized: List[str] = Field(default_factory=list)
    duration_ms: int = Field(default=0, ge=0)


class StageError(BaseModel):
    stage: StageId
    message: str
    error_type: str = "unexpected"  # transient | non_transient | unexpected
    retries: int = 0
    status: StageStatus = StageStatus.DEGRADED


class ProgressState(BaseModel):
    current_stage: Optional[StageId] = None
    active_stages: List[StageId] = Field(default_factory=list)
    completed_stages: List[StageId] = Field(default_factory=list)
    percentage: int = Field(default=0, ge=0, le=100)
    message: str = "Initializing..."
    started_at: float = Field(default_factory=time.time)
    elapsed_ms: int = 0
    estimated_remaining_ms: int = 0
    errors: Dict[str, StageError] = Field(default_factory=dict)


class StreamEvent(BaseModel):
    type: EventType
    stage: Optional[StageId] = None
    progress: int = Field(ge=0, le=100)
    message: str
    data: Optional[Any] = None
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))


# ---------------------------------------------------------------------------
# Request / result
# ---------------------------------------------------------------------------

class GenerationRequest(BaseModel):
    product_name: str
    keywords: List[str] = Field(default_factory=list)
    content: str = ""  # source transcript the generation is grounded in
    language: str = "ko"
    existing_description: Optional[str] = None
    product_category: Optional[str] = None
    stage_parameters: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    @field_validator("product_name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        return (value or "").strip()

    @field_validator("keywords")
    @classmethod
    def _clean_keywords(cls, value: List[str]) -> List[str]:
        return [k.strip() for k in value if k and k.strip()]

    @field_validator("language")
    @classmethod
    def _check_language(cls, value: str) -> str:
        value = (value or "ko").lower()
        if value not in ("ko", "en"):
            raise ValueError("language must be 'ko' or 'en'")
        return value


class QualityReport(BaseModel):
    confidence: ConfidenceLevel
    confidence_policy: str
    passes_quality_gate: bool
    sanitized_stages: Dict[str, List[str]] = Field(default_factory=dict)
    remaining_violations: List[str] = Field(default_factory=list)


class GenerationResult(BaseModel):
    """Aggregate result of one pipeline run.

    ``stages`` always carries every content stage, whatever its status, so the
    shape handed to serializers does not depend on which stages degraded.
    """
    fingerprint: str
    product_name: str
    language: str
    stages: Dict[str, StageResult]
    grounding: GroundingMetadata
    grounding_score: GroundingQualityScore
    quality: QualityReport
    degraded_stages: List[str] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def payload(self, stage: StageId) -> Optional[Dict[str, Any]]:
        result = self.stages.get(stage.value)
        return result.payload if result else None
