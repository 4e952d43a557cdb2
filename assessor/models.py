"""
Pydantic models for the Brief Assessor system.

These models define the strict schemas for:
- Locked reference documents (units, criteria, assignment briefs)
- Submissions, their status machine, and extraction output
- Derived grading artefacts (modality requirements, evidence signals,
  compliance, readiness, validated decisions, policy traces)
- Persisted assessments and their audit payload

External JSON (camelCase, loosely shaped) is parsed into these models at
ingestion so the pipeline only ever handles typed values.
"""

from datetime import datetime, timezone
from enum import Enum
from hashlib import sha256
from typing import Any
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
)
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Generate an opaque identifier."""
    return uuid4().hex


class CamelModel(BaseModel):
    """Base for models exchanged as camelCase JSON."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
        protected_namespaces=(),
    )

    def to_json_dict(self) -> dict[str, Any]:
        """Dump as a JSON-compatible camelCase dict."""
        return self.model_dump(mode="json", by_alias=True)


# ==============================================================================
# Enumerations
# ==============================================================================


class SubmissionStatus(str, Enum):
    """Lifecycle status of a submission."""

    UPLOADED = "UPLOADED"
    EXTRACTING = "EXTRACTING"
    EXTRACTED = "EXTRACTED"
    NEEDS_OCR = "NEEDS_OCR"
    ASSESSING = "ASSESSING"
    DONE = "DONE"
    FAILED = "FAILED"

    def can_transition_to(self, target: "SubmissionStatus") -> bool:
        """Check whether moving to ``target`` is a legal transition."""
        return target in _TRANSITIONS[self]


_TRANSITIONS: dict[SubmissionStatus, frozenset[SubmissionStatus]] = {
    SubmissionStatus.UPLOADED: frozenset({SubmissionStatus.EXTRACTING}),
    SubmissionStatus.EXTRACTING: frozenset(
        {SubmissionStatus.EXTRACTED, SubmissionStatus.NEEDS_OCR, SubmissionStatus.FAILED}
    ),
    SubmissionStatus.EXTRACTED: frozenset(
        {SubmissionStatus.ASSESSING, SubmissionStatus.EXTRACTING}
    ),
    SubmissionStatus.NEEDS_OCR: frozenset(
        {SubmissionStatus.ASSESSING, SubmissionStatus.EXTRACTING}
    ),
    SubmissionStatus.ASSESSING: frozenset(
        {SubmissionStatus.DONE, SubmissionStatus.FAILED, SubmissionStatus.ASSESSING}
    ),
    SubmissionStatus.DONE: frozenset(
        {SubmissionStatus.ASSESSING, SubmissionStatus.EXTRACTING}
    ),
    SubmissionStatus.FAILED: frozenset(
        {SubmissionStatus.ASSESSING, SubmissionStatus.EXTRACTING}
    ),
}

# Statuses from which a grading attempt may claim a submission.
GRADABLE_STATUSES = frozenset(
    {
        SubmissionStatus.EXTRACTED,
        SubmissionStatus.NEEDS_OCR,
        SubmissionStatus.DONE,
        SubmissionStatus.FAILED,
    }
)


class GradeBand(str, Enum):
    """Band a criterion contributes to."""

    PASS = "PASS"
    MERIT = "MERIT"
    DISTINCTION = "DISTINCTION"


class GradeWord(str, Enum):
    """Overall grade vocabulary."""

    REFER = "REFER"
    PASS = "PASS"
    PASS_ON_RESUBMISSION = "PASS_ON_RESUBMISSION"
    MERIT = "MERIT"
    DISTINCTION = "DISTINCTION"


class CriterionDecision(str, Enum):
    """Per-criterion decision vocabulary."""

    ACHIEVED = "ACHIEVED"
    NOT_ACHIEVED = "NOT_ACHIEVED"
    UNCLEAR = "UNCLEAR"


class ExtractionMode(str, Enum):
    """How the extraction subsystem produced the submission text."""

    NORMAL = "NORMAL"
    COVER_ONLY = "COVER_ONLY"


# ==============================================================================
# Reference Models
# ==============================================================================


class AssessmentCriterion(CamelModel):
    """A single assessment criterion such as P1, M2 or D1."""

    code: str = Field(..., min_length=1, description="Criterion code (P/M/D + number)")
    grade_band: GradeBand = Field(..., description="Band this criterion contributes to")
    lo_code: str = Field(default="", description="Learning outcome code")
    description: str = Field(default="", description="Criterion description")

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        """Criterion codes are compared upper-cased."""
        return v.strip().upper()


class LearningOutcome(CamelModel):
    """A learning outcome and the criteria that evidence it."""

    lo_code: str = Field(default="")
    description: str = Field(default="")
    criteria: tuple[AssessmentCriterion, ...] = Field(default=())


class Unit(CamelModel):
    """A unit specification: the criteria universe for its briefs."""

    id: str = Field(default_factory=new_id)
    unit_code: str = Field(default="")
    title: str = Field(default="")
    locked_at: datetime | None = Field(default=None)
    learning_outcomes: tuple[LearningOutcome, ...] = Field(default=())

    @property
    def criteria(self) -> list[AssessmentCriterion]:
        """All criteria across learning outcomes, with the LO code filled in."""
        out: list[AssessmentCriterion] = []
        for lo in self.learning_outcomes:
            for criterion in lo.criteria:
                if not criterion.lo_code and lo.lo_code:
                    criterion = criterion.model_copy(update={"lo_code": lo.lo_code})
                out.append(criterion)
        return out


class BriefTaskPart(CamelModel):
    """A sub-part of a brief task, keyed by letter or roman numeral."""

    key: str = Field(default="")
    text: str = Field(default="")


class BriefTask(CamelModel):
    """A numbered task within an assignment brief."""

    n: int | None = Field(default=None)
    label: str | None = Field(default=None)
    text: str = Field(default="")
    parts: tuple[BriefTaskPart, ...] = Field(default=())


class CriteriaMapping(CamelModel):
    """Explicit binding of a brief to one of its unit's criteria."""

    criterion_code: str = Field(..., min_length=1)

    @field_validator("criterion_code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        """Criterion codes are compared upper-cased."""
        return v.strip().upper()


class AssignmentBrief(CamelModel):
    """A locked assignment brief bound to a unit."""

    id: str = Field(default_factory=new_id)
    assignment_code: str = Field(default="")
    title: str = Field(default="")
    unit_id: str | None = Field(default=None)
    locked_at: datetime | None = Field(default=None)
    tasks: tuple[BriefTask, ...] = Field(default=())
    criteria_maps: tuple[CriteriaMapping, ...] = Field(default=())
    excluded_criteria_codes: tuple[str, ...] = Field(default=())
    rubric_text: str | None = Field(default=None)


# ==============================================================================
# Submission & Extraction Models
# ==============================================================================


class CoverField(CamelModel):
    """A single value read from a submission cover sheet."""

    value: str = Field(default="")
    confidence: float = Field(default=0.0)
    page: int | None = Field(default=None)


class CoverMetadata(CamelModel):
    """Cover-sheet identification data detected during extraction."""

    student_name: CoverField | None = None
    student_id: CoverField | None = None
    unit_code: CoverField | None = None
    assignment_code: CoverField | None = None
    submission_date: CoverField | None = None
    confidence: float = Field(default=0.0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_ready(self) -> bool:
        """At least two identifying fields and reasonable confidence."""
        fields = [
            self.student_name,
            self.student_id,
            self.unit_code,
            self.assignment_code,
            self.submission_date,
        ]
        present = [f for f in fields if f is not None and f.value.strip()]
        return len(present) >= 2 and self.confidence >= 0.5


class PageSample(CamelModel):
    """Extracted text for one page."""

    page_number: int = Field(..., ge=1)
    text: str = Field(default="")


class ExtractionRun(CamelModel):
    """Most recent text-extraction attempt for a submission."""

    id: str = Field(default_factory=new_id)
    status: str = Field(default="")
    overall_confidence: float | None = Field(default=None)
    page_count: int | None = Field(default=None)
    warnings: tuple[str, ...] = Field(default=())
    pages: tuple[PageSample, ...] = Field(default=())
    extraction_mode: str | None = Field(default=None)
    cover_metadata: CoverMetadata | None = Field(default=None)
    derived_text_chars: int | None = Field(default=None)

    @field_validator("status")
    @classmethod
    def normalize_status(cls, v: str) -> str:
        """Run status is compared upper-cased."""
        return v.strip().upper()

    @field_validator("warnings", mode="before")
    @classmethod
    def normalize_warnings(cls, v: Any) -> tuple[str, ...]:
        """Keep only non-empty warning strings."""
        if not isinstance(v, (list, tuple)):
            return ()
        return tuple(str(w).strip() for w in v if w is not None and str(w).strip())

    @property
    def mode(self) -> ExtractionMode | None:
        """Parsed extraction mode, None when unknown."""
        raw = (self.extraction_mode or "").strip().upper()
        try:
            return ExtractionMode(raw)
        except ValueError:
            return None

    @property
    def is_cover_only(self) -> bool:
        """Whether extraction ran in cover-only mode."""
        return self.mode == ExtractionMode.COVER_ONLY


class Submission(CamelModel):
    """A student's uploaded work."""

    id: str = Field(default_factory=new_id)
    status: SubmissionStatus = Field(default=SubmissionStatus.UPLOADED)
    extracted_text: str = Field(default="")
    student_id: str | None = Field(default=None)
    student_name: str | None = Field(default=None)
    assignment_brief_id: str | None = Field(default=None)
    status_changed_at: datetime = Field(default_factory=utcnow)
    claim_id: str | None = Field(default=None, description="Token of the attempt holding ASSESSING")


# ==============================================================================
# Derived Evidence Models
# ==============================================================================


class ModalityRequirement(CamelModel):
    """Modalities one (task, section) of a brief requires."""

    task: str
    section: str
    charts: tuple[str, ...] = ()
    table: bool = False
    percentage: bool = False
    equation: bool = False
    image: bool = False


class EvidenceSignals(CamelModel):
    """Heuristic signals found in submission text."""

    has_table_words: bool = False
    has_bar_chart_words: bool = False
    has_pie_chart_words: bool = False
    has_figure_words: bool = False
    has_image_words: bool = False
    has_equation_token_words: bool = False
    has_equation_marker: bool = False
    equation_like_line_count: int = 0
    percentage_count: int = 0
    data_row_like_count: int = 0


class ModalityGap(CamelModel):
    """Modalities that a requirement row is missing."""

    task: str
    section: str
    chart: bool = False
    table: bool = False
    equation: bool = False
    image: bool = False
    percentage: bool = False


class ComplianceRow(CamelModel):
    """Outcome of one requirement row."""

    requirement: ModalityRequirement
    ok: bool
    missing: ModalityGap


class ComplianceReport(CamelModel):
    """Cross-reference of requirements against detected evidence."""

    found: dict[str, bool] = Field(default_factory=dict)
    rows: tuple[ComplianceRow, ...] = ()
    missing_count: int = 0
    missing_summary: tuple[ModalityGap, ...] = ()


class ReadinessMetrics(CamelModel):
    """Measurements reported by the extraction readiness gate."""

    extracted_chars: int = 0
    page_count: int = 0
    overall_confidence: float = 0.0
    run_status: str = ""
    cover_metadata_ready: bool = False
    extraction_mode: str = "UNKNOWN"


class ReadinessResult(CamelModel):
    """Result of the extraction readiness gate."""

    ok: bool
    blockers: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    metrics: ReadinessMetrics = Field(default_factory=ReadinessMetrics)


# ==============================================================================
# Decision Models
# ==============================================================================


class EvidenceItem(CamelModel):
    """A page-linked citation backing a criterion decision."""

    page: int = Field(..., ge=1)
    quote: str | None = None
    visual_description: str | None = None


class CriterionCheck(CamelModel):
    """Validated decision for one criterion."""

    code: str
    decision: CriterionDecision
    rationale: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    evidence: tuple[EvidenceItem, ...] = ()


class GradeDecision(CamelModel):
    """Validated grading decision returned by the model."""

    overall_grade_word: GradeWord
    resubmission_required: bool
    feedback_summary: str
    feedback_bullets: tuple[str, ...]
    criterion_checks: tuple[CriterionCheck, ...]
    confidence: float = Field(..., ge=0.0, le=1.0)

    def achieved_without_evidence(self) -> list[str]:
        """Codes marked ACHIEVED that carry no evidence items."""
        return [
            c.code
            for c in self.criterion_checks
            if c.decision == CriterionDecision.ACHIEVED and not c.evidence
        ]


class ValidationResult(CamelModel):
    """Outcome of decision validation: either a decision or every violated rule."""

    ok: bool
    decision: GradeDecision | None = None
    errors: tuple[str, ...] = ()


class ConfidencePolicy(CamelModel):
    """Audit trace of the confidence cap decision."""

    model_confidence: float
    confidence_cap: float
    missing_count: int
    final_confidence: float
    was_capped: bool


class GradePolicy(CamelModel):
    """Audit trace of grade band and resubmission capping."""

    raw_grade: GradeWord
    final_grade: GradeWord
    was_capped: bool = False
    cap_reasons: tuple[str, ...] = ()
    missing_pass_codes: tuple[str, ...] = ()
    missing_merit_codes: tuple[str, ...] = ()
    missing_distinction_codes: tuple[str, ...] = ()


class DecisionChange(CamelModel):
    """A criterion decision that differs from the previous assessment."""

    code: str
    previous: str
    current: str
    direction: str


class DecisionDiff(CamelModel):
    """Criterion decision drift against the previous assessment."""

    compared_count: int = 0
    changed_count: int = 0
    stricter_count: int = 0
    lenient_count: int = 0
    lateral_count: int = 0
    changes: tuple[DecisionChange, ...] = ()

    @property
    def changed_codes(self) -> list[str]:
        return [c.code for c in self.changes]


class EvidenceDensity(CamelModel):
    """Citation density for one criterion."""

    code: str
    decision: CriterionDecision
    citation_count: int
    total_words_cited: int
    distinct_pages: int


# ==============================================================================
# Assessment Models
# ==============================================================================


class AssessmentAudit(CamelModel):
    """
    Full provenance of a grading attempt.

    Stored verbatim as the assessment's ``resultJson``.
    """

    request_id: str = ""
    model: str
    prompt_hash: str
    prompt_chars: int
    evidence_substrate: str
    started_at: datetime
    finished_at: datetime
    duration_ms: int
    tone: str
    strictness: str
    readiness: ReadinessResult
    requirements: tuple[ModalityRequirement, ...]
    evidence_signals: EvidenceSignals
    compliance: ComplianceReport
    confidence_policy: ConfidencePolicy
    grade_policy: GradePolicy
    decision: GradeDecision
    evidence_density: tuple[EvidenceDensity, ...] = ()
    schema_retry_count: int = 0
    usage: dict[str, Any] | None = None
    raw_response: dict[str, Any] | str | None = None
    previous_assessment_id: str | None = None
    decision_diff: DecisionDiff | None = None
    system_notes: tuple[str, ...] = ()

    @staticmethod
    def compute_hash(content: str) -> str:
        """Compute SHA-256 hash of content."""
        return sha256(content.encode("utf-8")).hexdigest()


class Assessment(CamelModel):
    """Persisted grading outcome. Never mutated after creation."""

    id: str = Field(default_factory=new_id)
    submission_id: str
    overall_grade: GradeWord
    feedback_text: str
    annotated_pdf_path: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    graded_by: str
    result_json: dict[str, Any] = Field(default_factory=dict)


# ==============================================================================
# Batch Models
# ==============================================================================


class BatchSkip(CamelModel):
    """A requested submission that a batch did not grade."""

    submission_id: str
    reason: str


class BatchItemResult(CamelModel):
    """Outcome of one submission graded inside a batch."""

    submission_id: str
    ok: bool
    assessment_id: str | None = None
    overall_grade: GradeWord | None = None
    error_code: str | None = None
    error: str | None = None


class BatchOutcome(CamelModel):
    """Summary of a batch grading run."""

    requested: int
    targeted: int
    skipped: tuple[BatchSkip, ...] = ()
    results: tuple[BatchItemResult, ...] = ()

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)
