"""
Pytest configuration and fixtures.

Provides common test fixtures for all test modules.
"""

import tempfile
from collections.abc import Generator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from assessor.config import Settings
from assessor.grading.llm_client import ModelCompletion
from assessor.models import (
    AssessmentCriterion,
    AssignmentBrief,
    BriefTask,
    BriefTaskPart,
    CoverField,
    CoverMetadata,
    ExtractionRun,
    GradeBand,
    LearningOutcome,
    PageSample,
    Submission,
    SubmissionStatus,
    Unit,
)
from assessor.storage import InMemorySubmissionStore

LOCKED_AT = datetime(2025, 9, 1, 9, 0, tzinfo=timezone.utc)

BODY_PARAGRAPH = (
    "The maintenance schedule covers weekly inspection of the pumps, monthly lubrication "
    "of the bearings and an annual overhaul of each motor at the pumping station. "
)


def make_completion(payload: dict[str, Any] | None, content: str = "") -> ModelCompletion:
    """Build a model completion as returned by ``LLMClient.generate``."""
    return ModelCompletion(
        content=content or ("{}" if payload is None else str(payload)),
        parsed=payload,
        usage={"prompt_tokens": 1200, "completion_tokens": 300, "total_tokens": 1500},
        model="test-model",
        duration_ms=42,
    )


# ==============================================================================
# Directory Fixtures
# ==============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# ==============================================================================
# Reference Fixtures
# ==============================================================================


@pytest.fixture
def sample_unit() -> Unit:
    """Locked unit with two pass, one merit and one distinction criterion."""
    return Unit(
        id="unit-1",
        unit_code="4014",
        title="Production Engineering",
        locked_at=LOCKED_AT,
        learning_outcomes=(
            LearningOutcome(
                lo_code="LO1",
                description="Plan maintenance",
                criteria=(
                    AssessmentCriterion(
                        code="P1", grade_band=GradeBand.PASS, description="Describe a schedule"
                    ),
                    AssessmentCriterion(
                        code="P2", grade_band=GradeBand.PASS, description="Justify activities"
                    ),
                    AssessmentCriterion(
                        code="M1", grade_band=GradeBand.MERIT, description="Evaluate costs"
                    ),
                    AssessmentCriterion(
                        code="D1", grade_band=GradeBand.DISTINCTION, description="Critically review"
                    ),
                ),
            ),
        ),
    )


@pytest.fixture
def sample_brief() -> AssignmentBrief:
    """Locked brief whose task asks for no charts, tables, images or equations."""
    return AssignmentBrief(
        id="brief-1",
        assignment_code="A1",
        title="Maintenance Planning",
        unit_id="unit-1",
        locked_at=LOCKED_AT,
        tasks=(
            BriefTask(
                n=1,
                text="Describe the maintenance schedule for a pumping station and justify each activity.",
            ),
        ),
    )


@pytest.fixture
def chart_brief(sample_brief: AssignmentBrief) -> AssignmentBrief:
    """Locked brief whose task part a asks for a bar chart."""
    return sample_brief.model_copy(
        update={
            "tasks": (
                BriefTask(
                    n=1,
                    parts=(
                        BriefTaskPart(
                            key="a",
                            text="Create a bar chart showing the monthly maintenance hours.",
                        ),
                    ),
                ),
            )
        }
    )


# ==============================================================================
# Submission Fixtures
# ==============================================================================


@pytest.fixture
def sample_text() -> str:
    """Extracted body text long enough to pass the readiness gate."""
    return BODY_PARAGRAPH * 8


@pytest.fixture
def sample_submission(sample_text: str) -> Submission:
    """Extracted submission linked to a student and a brief."""
    return Submission(
        id="sub-1",
        status=SubmissionStatus.EXTRACTED,
        extracted_text=sample_text,
        student_id="student-1",
        student_name="Mr Alex Morgan",
        assignment_brief_id="brief-1",
    )


@pytest.fixture
def sample_run() -> ExtractionRun:
    """Successful extraction run with three pages."""
    return ExtractionRun(
        id="run-1",
        status="DONE",
        overall_confidence=0.91,
        page_count=3,
        extraction_mode="NORMAL",
        pages=(
            PageSample(page_number=1, text="Cover sheet. Student: Alex Morgan."),
            PageSample(page_number=2, text=BODY_PARAGRAPH),
            PageSample(page_number=3, text="The annual overhaul is costed per motor."),
        ),
        cover_metadata=CoverMetadata(
            student_name=CoverField(value="Alex Morgan", confidence=0.9, page=1),
            assignment_code=CoverField(value="A1", confidence=0.8, page=1),
            confidence=0.85,
        ),
    )


@pytest.fixture
def memory_store(
    sample_unit: Unit,
    sample_brief: AssignmentBrief,
    sample_submission: Submission,
    sample_run: ExtractionRun,
) -> InMemorySubmissionStore:
    """In-memory store seeded with one gradable submission."""
    store = InMemorySubmissionStore()
    store.add_unit(sample_unit)
    store.add_brief(sample_brief)
    store.add_submission(sample_submission, sample_run)
    return store


# ==============================================================================
# Model Output Fixtures
# ==============================================================================


@pytest.fixture
def valid_model_payload() -> dict[str, Any]:
    """Valid MERIT decision covering P1, P2, M1 and D1."""
    return {
        "overallGradeWord": "MERIT",
        "resubmissionRequired": False,
        "feedbackSummary": "You have produced a clear and well-justified maintenance plan.",
        "feedbackBullets": [
            "Your weekly inspection routine on page 2 is well explained.",
            "Strengthen the cost review on page 3 with a comparison of options.",
        ],
        "criterionChecks": [
            {
                "code": "P1",
                "decision": "ACHIEVED",
                "rationale": "Schedule is described.",
                "confidence": 0.9,
                "evidence": [{"page": 2, "quote": "weekly inspection of the pumps"}],
            },
            {
                "code": "P2",
                "decision": "ACHIEVED",
                "rationale": "Each activity is justified.",
                "confidence": 0.85,
                "evidence": [{"page": 2, "quote": "monthly lubrication of the bearings"}],
            },
            {
                "code": "M1",
                "decision": "ACHIEVED",
                "rationale": "Costs are evaluated.",
                "confidence": 0.8,
                "evidence": [{"page": 3, "quote": "costed per motor"}],
            },
            {
                "code": "D1",
                "decision": "NOT_ACHIEVED",
                "rationale": "No critical review of alternatives.",
                "confidence": 0.7,
                "evidence": [],
            },
        ],
        "confidence": 0.82,
    }


# ==============================================================================
# Settings Fixtures
# ==============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with mocked values."""
    return Settings(
        openai_api_key="test-api-key-for-testing",
        openai_base_url="https://test.api.local/",
        grading_model="test-model",
        llm_temperature=0.0,
        llm_retries=0,
        schema_retries=1,
        default_assessor_name="Assessor Bot",
    )


# ==============================================================================
# Mock Fixtures
# ==============================================================================


@pytest.fixture
def mock_llm_client(valid_model_payload: dict[str, Any]) -> MagicMock:
    """Mock grading model client that returns the valid payload."""
    client = MagicMock()
    client.generate = AsyncMock(return_value=make_completion(valid_model_payload))
    client.health_check = AsyncMock(return_value=True)
    return client


@pytest.fixture
def completion_factory() -> Any:
    """Factory for model completions."""
    return make_completion
