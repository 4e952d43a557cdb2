"""Grading API: trigger single and batch grading runs.

Endpoints:
- ``POST /api/submissions/{submission_id}/grade``: grade one submission
- ``POST /api/submissions/batch-grade``: grade several submissions
- ``GET /api/health``: liveness probe
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import Field

from assessor import __version__
from assessor.api.errors import request_id_of
from assessor.config import GradingOverrides
from assessor.grading.engine import GradingEngine, GradingOutcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["grading"])

MAX_BATCH_SIZE = 200


class BatchGradeRequest(GradingOverrides):
    """Batch grading request body."""

    submission_ids: list[str] = Field(
        default_factory=list, alias="submissionIds", max_length=MAX_BATCH_SIZE
    )
    retry_failed_only: bool = Field(default=False, alias="retryFailedOnly")
    force_retry: bool = Field(default=False, alias="forceRetry")


def get_engine(request: Request) -> GradingEngine:
    """Application-scoped grading engine, built on first use."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        engine = GradingEngine(request.app.state.settings)
        request.app.state.engine = engine
    return engine


def _outcome_payload(outcome: GradingOutcome, request_id: str) -> dict[str, Any]:
    if outcome.assessment is None:
        audit = outcome.audit
        return {
            "ok": True,
            "dryRun": True,
            "preview": {
                "overallGrade": outcome.overall_grade.value,
                "feedbackText": outcome.feedback_text,
                "gradePolicy": audit.grade_policy.to_json_dict(),
                "confidencePolicy": audit.confidence_policy.to_json_dict(),
                "compliance": audit.compliance.to_json_dict(),
                "readiness": audit.readiness.to_json_dict(),
            },
            "requestId": request_id,
        }

    assessment = outcome.assessment
    return {
        "ok": True,
        "assessment": {
            "id": assessment.id,
            "overallGrade": assessment.overall_grade.value,
            "feedbackText": assessment.feedback_text,
            "annotatedPdfPath": assessment.annotated_pdf_path,
            "createdAt": assessment.created_at.isoformat(),
            "gradedBy": assessment.graded_by,
        },
        "requestId": request_id,
    }


@router.post("/submissions/batch-grade")
async def batch_grade(
    body: BatchGradeRequest,
    request: Request,
    engine: GradingEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Grade several submissions, skipping those that are not eligible."""
    request_id = request_id_of(request)
    outcome = await engine.grade_batch(
        body.submission_ids,
        body,
        retry_failed_only=body.retry_failed_only,
        force_retry=body.force_retry,
        request_id=request_id,
    )
    return {"ok": True, **outcome.to_json_dict(), "requestId": request_id}


@router.post("/submissions/{submission_id}/grade")
async def grade_submission(
    submission_id: str,
    request: Request,
    body: GradingOverrides | None = None,
    engine: GradingEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Grade one submission against its locked brief and unit specification."""
    request_id = request_id_of(request)
    logger.info("Grade requested for submission %s (request %s)", submission_id, request_id)
    outcome = await engine.grade(submission_id, body, request_id)
    return _outcome_payload(outcome, request_id)


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "healthy", "version": __version__}
