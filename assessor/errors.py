"""Domain-specific exceptions for the grading pipeline.

Every exception carries a stable machine-readable ``code`` and the HTTP
status the API layer responds with, so the engine and the API can share
one taxonomy:

- precondition errors are raised before the ASSESSING transition and leave
  the submission status unchanged;
- everything raised after that transition moves the submission to FAILED.
"""

from __future__ import annotations

from typing import Any


class GradingError(Exception):
    """Base class for grading failures that map to a structured response."""

    code = "GRADE_FAILED"
    status_code = 500
    user_message = "Grading failed."

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
        public_details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}
        # Details that are always safe to return to the client.
        self.public_details = public_details or {}
        self.cause = cause
        super().__init__(message or self.user_message)

    @property
    def message(self) -> str:
        return str(self)


class PreconditionError(GradingError):
    """A client-preventable condition detected before any state change."""

    code = "GRADE_PRECONDITION_FAILED"
    status_code = 422
    user_message = "Grading preconditions were not met."


class SubmissionNotFoundError(PreconditionError):
    code = "GRADE_SUBMISSION_NOT_FOUND"
    status_code = 404

    def __init__(self, submission_id: str) -> None:
        self.submission_id = submission_id
        super().__init__(
            f"Submission not found: {submission_id}",
            public_details={"submissionId": submission_id},
        )


class ExtractionNotReadyError(PreconditionError):
    """The readiness gate refused to let grading proceed."""

    code = "GRADE_EXTRACTION_NOT_READY"

    def __init__(
        self,
        blockers: list[str],
        warnings: list[str],
        metrics: dict[str, Any],
    ) -> None:
        self.blockers = blockers
        self.warnings = warnings
        self.metrics = metrics
        summary = blockers[0] if blockers else "Extraction is not ready."
        super().__init__(
            f"Extraction quality gate failed: {summary}",
            public_details={"blockers": blockers, "warnings": warnings, "metrics": metrics},
        )


class AlreadyInProgressError(PreconditionError):
    """Another grading attempt currently holds the submission."""

    code = "GRADE_ALREADY_IN_PROGRESS"
    status_code = 409

    def __init__(self, submission_id: str) -> None:
        self.submission_id = submission_id
        super().__init__(
            f"Submission {submission_id} is already being graded.",
            public_details={"submissionId": submission_id},
        )


class InvalidStatusTransitionError(GradingError):
    """A submission status change that the status machine does not allow."""

    code = "GRADE_INVALID_STATUS_TRANSITION"
    status_code = 409

    def __init__(self, submission_id: str, current: str, target: str) -> None:
        self.submission_id = submission_id
        super().__init__(
            f"Submission {submission_id} cannot move from {current} to {target}.",
            public_details={"submissionId": submission_id, "from": current, "to": target},
        )


class ClaimSupersededError(GradingError):
    """A grading attempt lost its ASSESSING claim to a newer attempt."""

    code = "GRADE_CLAIM_SUPERSEDED"
    status_code = 409

    def __init__(self, submission_id: str) -> None:
        self.submission_id = submission_id
        super().__init__(
            f"Submission {submission_id} was reclaimed by a newer grading attempt.",
            public_details={"submissionId": submission_id},
        )


class ModelOutputInvalidError(GradingError):
    """The model output failed decision validation after all schema retries."""

    code = "GRADE_MODEL_OUTPUT_INVALID"
    status_code = 422
    user_message = (
        "Grading model output did not match required schema. "
        "Retry grading or adjust model/settings."
    )

    def __init__(self, errors: list[str], retry_count: int = 0) -> None:
        self.errors = errors
        self.retry_count = retry_count
        super().__init__(
            "Model output failed schema validation:\n" + "\n".join(f"  - {e}" for e in errors),
            public_details={"errors": errors, "schemaRetryCount": retry_count},
        )


class EvidenceMissingError(GradingError):
    """A criterion was marked ACHIEVED without any page-linked evidence."""

    code = "GRADE_DECISION_EVIDENCE_MISSING"
    status_code = 422

    def __init__(self, codes: list[str]) -> None:
        self.codes = codes
        super().__init__(
            f"Criterion {codes[0]} was marked ACHIEVED without evidence."
            if len(codes) == 1
            else f"Criteria {', '.join(codes)} were marked ACHIEVED without evidence.",
            public_details={"criterionCode": codes[0], "criterionCodes": codes},
        )


class ModelCallFailedError(GradingError):
    """The grading model call failed after exhausting its retry budget."""

    code = "GRADE_MODEL_CALL_FAILED"
    status_code = 500
    user_message = "Grading model call failed. Please retry later."

    def __init__(self, cause: BaseException) -> None:
        super().__init__(self.user_message, details={"cause": str(cause)[:600]}, cause=cause)


def precondition(code: str, message: str, status_code: int = 422, **public: Any) -> PreconditionError:
    """Build a precondition error with a specific stable code."""
    return PreconditionError(
        message, code=code, status_code=status_code, public_details=public or None
    )
