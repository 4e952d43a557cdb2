"""
Configuration management for the Brief Assessor system.

Uses Pydantic Settings for type-safe configuration loading from environment variables.
All configuration is validated at startup to fail fast on misconfiguration.

Two layers exist:
- ``Settings``: process-wide values loaded once from the environment.
- ``GradingConfig``: the per-request configuration resolved from settings plus
  request overrides. Pipeline stages receive this object explicitly and never
  read ambient settings themselves.
"""

from enum import Enum
from functools import lru_cache
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_FEEDBACK_TEMPLATE = (
    "Hello {studentFirstName},\n\n"
    "{feedbackSummary}\n\n"
    "{feedbackBullets}\n\n"
    "Final grade: {overallGrade}\n\n"
    "Assessor: {assessorName}\n"
    "Date: {date}"
)


class GradingTone(str, Enum):
    """Tone used for student-facing feedback."""

    SUPPORTIVE = "supportive"
    PROFESSIONAL = "professional"
    STRICT = "strict"

    @classmethod
    def parse(cls, value: Any) -> "GradingTone":
        """Normalise a loose value, falling back to professional."""
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.PROFESSIONAL


class GradingStrictness(str, Enum):
    """How much benefit of the doubt the grader gives."""

    LENIENT = "lenient"
    BALANCED = "balanced"
    STRICT = "strict"

    @classmethod
    def parse(cls, value: Any) -> "GradingStrictness":
        """Normalise a loose value, falling back to balanced."""
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.BALANCED


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings are validated at startup. Out-of-range values
    raise clear validation errors instead of being silently clamped.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Model API Configuration
    # ==========================================================================
    openai_api_key: str = Field(
        default="",
        description="API key for the grading model endpoint (empty disables grading)",
    )

    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL for the OpenAI-compatible API",
    )

    grading_model: str = Field(
        default="gpt-4.1-mini",
        min_length=1,
        description="Default model to use for grading",
    )

    llm_temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Temperature for LLM generation",
    )

    llm_timeout_seconds: float = Field(
        default=90.0,
        ge=5.0,
        le=600.0,
        description="Timeout for a single grading model call",
    )

    llm_retries: int = Field(
        default=3,
        ge=0,
        le=5,
        description="Retry budget for transient model call failures",
    )

    llm_max_output_tokens: int = Field(
        default=1100,
        ge=500,
        le=4000,
        description="Baseline output token budget for the grading call",
    )

    schema_retries: int = Field(
        default=1,
        ge=0,
        le=3,
        description="Extra model calls allowed when the output fails validation",
    )

    # ==========================================================================
    # Evidence Context Configuration
    # ==========================================================================
    page_sample_count: int = Field(
        default=4,
        ge=1,
        le=6,
        description="Maximum number of extraction pages sampled into the prompt",
    )

    page_sample_char_limit: int = Field(
        default=1600,
        ge=500,
        le=6000,
        description="Per-page character budget for sampled pages",
    )

    input_char_limit: int = Field(
        default=18000,
        ge=4000,
        le=120000,
        description="Character budget for the submission body text",
    )

    # ==========================================================================
    # Policy Configuration
    # ==========================================================================
    modality_missing_confidence_cap: float = Field(
        default=0.65,
        ge=0.2,
        le=0.95,
        description="Confidence ceiling applied when required modality evidence is missing",
    )

    resubmission_cap_enabled: bool = Field(
        default=False,
        description="Cap MERIT/DISTINCTION to PASS_ON_RESUBMISSION when resubmission is required",
    )

    # ==========================================================================
    # Extraction Readiness Configuration
    # ==========================================================================
    min_extracted_chars: int = Field(
        default=700,
        ge=200,
        description="Minimum extracted body characters before grading is allowed",
    )

    min_extraction_confidence: float = Field(
        default=0.68,
        ge=0.4,
        le=0.99,
        description="Minimum extraction run confidence before grading is allowed",
    )

    min_page_count: int = Field(
        default=1,
        ge=1,
        description="Minimum extracted page count before grading is allowed",
    )

    max_warnings_before_block: int = Field(
        default=8,
        ge=2,
        description="Number of extraction warnings that blocks grading",
    )

    # ==========================================================================
    # Grading Defaults
    # ==========================================================================
    default_tone: GradingTone = Field(
        default=GradingTone.PROFESSIONAL,
        description="Default feedback tone",
    )

    default_strictness: GradingStrictness = Field(
        default=GradingStrictness.BALANCED,
        description="Default grading strictness",
    )

    use_rubric_if_available: bool = Field(
        default=True,
        description="Include brief rubric guidance in the prompt when present",
    )

    max_feedback_bullets: int = Field(
        default=6,
        ge=3,
        le=12,
        description="Maximum number of feedback bullets shown to the student",
    )

    feedback_template: str = Field(
        default=DEFAULT_FEEDBACK_TEMPLATE,
        min_length=1,
        description="Template used to render student feedback text",
    )

    default_assessor_name: str = Field(
        default="system",
        description="Grader identity recorded when no actor is supplied",
    )

    # ==========================================================================
    # Concurrency Configuration
    # ==========================================================================
    assessing_stale_after_seconds: int = Field(
        default=900,
        ge=60,
        le=86400,
        description="Age after which an ASSESSING claim may be re-taken by a new trigger",
    )

    batch_max_concurrency: int = Field(
        default=2,
        ge=1,
        le=4,
        description="Maximum number of submissions graded concurrently by a batch",
    )

    # ==========================================================================
    # Service Configuration
    # ==========================================================================
    debug: bool = Field(
        default=False,
        description="Expose error details in API responses",
    )

    log_level: str = Field(
        default="INFO",
        description="Root log level",
    )

    @field_validator("openai_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Ensure base URL doesn't have trailing slash."""
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalise the log level name."""
        return v.strip().upper() or "INFO"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to ensure settings are only loaded once.
    """
    return Settings()


class GradingOverrides(BaseModel):
    """Optional per-request overrides accepted by the grading entry points."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    tone: str | None = None
    strictness: str | None = None
    use_rubric_if_available: bool | None = Field(default=None, alias="useRubricIfAvailable")
    actor: str | None = None
    dry_run: bool = Field(default=False, alias="dryRun")


class GradingConfig(BaseModel):
    """
    Fully resolved configuration for one grading attempt.

    Built once per request by ``GradingConfig.resolve`` and passed
    explicitly through the pipeline.
    """

    model_config = ConfigDict(frozen=True)

    model: str
    tone: GradingTone
    strictness: GradingStrictness
    use_rubric_if_available: bool
    max_feedback_bullets: int = Field(ge=3, le=12)
    feedback_template: str
    actor: str

    temperature: float
    max_output_tokens: int
    schema_retries: int

    page_sample_count: int
    page_sample_char_limit: int
    input_char_limit: int

    confidence_cap: float = Field(ge=0.2, le=0.95)
    resubmission_cap_enabled: bool

    min_extracted_chars: int
    min_extraction_confidence: float
    min_page_count: int
    max_warnings_before_block: int

    @classmethod
    def resolve(
        cls, settings: Settings, overrides: GradingOverrides | None = None
    ) -> "GradingConfig":
        """
        Resolve the effective configuration for a request.

        Args:
            settings: Process-wide settings.
            overrides: Request-level overrides (tone, strictness, rubric use, actor).

        Returns:
            Immutable GradingConfig.
        """
        overrides = overrides or GradingOverrides()
        tone = (
            GradingTone.parse(overrides.tone) if overrides.tone else settings.default_tone
        )
        strictness = (
            GradingStrictness.parse(overrides.strictness)
            if overrides.strictness
            else settings.default_strictness
        )
        use_rubric = (
            overrides.use_rubric_if_available
            if overrides.use_rubric_if_available is not None
            else settings.use_rubric_if_available
        )
        actor = (overrides.actor or "").strip() or settings.default_assessor_name

        return cls(
            model=settings.grading_model,
            tone=tone,
            strictness=strictness,
            use_rubric_if_available=use_rubric,
            max_feedback_bullets=settings.max_feedback_bullets,
            feedback_template=settings.feedback_template,
            actor=actor,
            temperature=settings.llm_temperature,
            max_output_tokens=settings.llm_max_output_tokens,
            schema_retries=settings.schema_retries,
            page_sample_count=settings.page_sample_count,
            page_sample_char_limit=settings.page_sample_char_limit,
            input_char_limit=settings.input_char_limit,
            confidence_cap=settings.modality_missing_confidence_cap,
            resubmission_cap_enabled=settings.resubmission_cap_enabled,
            min_extracted_chars=settings.min_extracted_chars,
            min_extraction_confidence=settings.min_extraction_confidence,
            min_page_count=settings.min_page_count,
            max_warnings_before_block=settings.max_warnings_before_block,
        )
