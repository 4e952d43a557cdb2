"""Submission store: persistence seam for the grading pipeline.

Provides an abstract interface for reading locked references and
submissions, moving submissions through the status machine and appending
assessments, with an in-memory implementation. Assessments are immutable:
a re-grade always appends a new one.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import timedelta

from assessor.errors import (
    AlreadyInProgressError,
    ClaimSupersededError,
    InvalidStatusTransitionError,
    SubmissionNotFoundError,
)
from assessor.models import (
    GRADABLE_STATUSES,
    Assessment,
    AssignmentBrief,
    ExtractionRun,
    Submission,
    SubmissionStatus,
    Unit,
    new_id,
    utcnow,
)

logger = logging.getLogger(__name__)


# ── Abstract Interface ───────────────────────────────────────


class SubmissionStore(ABC):
    """Abstract submission store. Implement for different backends."""

    @abstractmethod
    async def get_submission(self, submission_id: str) -> Submission | None:
        """Retrieve a submission by ID.  Returns None if not found."""
        ...

    @abstractmethod
    async def get_brief(self, brief_id: str) -> AssignmentBrief | None:
        """Retrieve an assignment brief by ID."""
        ...

    @abstractmethod
    async def get_unit(self, unit_id: str) -> Unit | None:
        """Retrieve a unit specification by ID."""
        ...

    @abstractmethod
    async def get_latest_run(self, submission_id: str) -> ExtractionRun | None:
        """Most recent extraction run for a submission."""
        ...

    @abstractmethod
    async def claim_for_assessment(
        self,
        submission_id: str,
        expected_status: SubmissionStatus,
        stale_after_seconds: int,
    ) -> Submission:
        """Move a submission to ASSESSING if nobody else holds it.

        Compare-and-set: the claim only succeeds when the current status
        is still ``expected_status``, or when an ASSESSING claim is older
        than ``stale_after_seconds``. The returned submission carries a
        fresh ``claim_id`` that later writes of this attempt must present.

        Raises:
            SubmissionNotFoundError: Unknown submission.
            AlreadyInProgressError: A live claim or a concurrent status change.
            InvalidStatusTransitionError: The status is not gradable.
        """
        ...

    @abstractmethod
    async def transition_status(
        self, submission_id: str, target: SubmissionStatus, claim_id: str | None = None
    ) -> Submission:
        """Apply a status transition.

        When ``claim_id`` is given the submission must still be held by that
        claim.

        Raises:
            InvalidStatusTransitionError: If the status machine forbids it.
            ClaimSupersededError: If another attempt now holds the claim.
        """
        ...

    @abstractmethod
    async def create_assessment(
        self, assessment: Assessment, claim_id: str | None = None
    ) -> Assessment:
        """Append an assessment and move the submission to DONE.

        Raises:
            ClaimSupersededError: If ``claim_id`` no longer holds the submission.
        """
        ...

    @abstractmethod
    async def list_assessments(self, submission_id: str) -> list[Assessment]:
        """All assessments of a submission, oldest first."""
        ...

    async def get_latest_assessment(self, submission_id: str) -> Assessment | None:
        """Most recent assessment of a submission, if any."""
        history = await self.list_assessments(submission_id)
        return history[-1] if history else None


# ── In-Memory Implementation ────────────────────────────────


class InMemorySubmissionStore(SubmissionStore):
    """In-process store guarded by one asyncio lock.

    Suitable for the CLI, tests and single-worker deployments.
    """

    def __init__(self) -> None:
        self._submissions: dict[str, Submission] = {}
        self._briefs: dict[str, AssignmentBrief] = {}
        self._units: dict[str, Unit] = {}
        self._runs: dict[str, ExtractionRun] = {}
        self._assessments: dict[str, list[Assessment]] = {}
        self._lock = asyncio.Lock()

    # Seeding

    def add_submission(self, submission: Submission, run: ExtractionRun | None = None) -> None:
        self._submissions[submission.id] = submission
        if run is not None:
            self._runs[submission.id] = run

    def add_brief(self, brief: AssignmentBrief) -> None:
        self._briefs[brief.id] = brief

    def add_unit(self, unit: Unit) -> None:
        self._units[unit.id] = unit

    # Reads

    async def get_submission(self, submission_id: str) -> Submission | None:
        return self._submissions.get(submission_id)

    async def get_brief(self, brief_id: str) -> AssignmentBrief | None:
        return self._briefs.get(brief_id)

    async def get_unit(self, unit_id: str) -> Unit | None:
        return self._units.get(unit_id)

    async def get_latest_run(self, submission_id: str) -> ExtractionRun | None:
        return self._runs.get(submission_id)

    async def list_assessments(self, submission_id: str) -> list[Assessment]:
        return list(self._assessments.get(submission_id, []))

    # Writes

    def _require(self, submission_id: str) -> Submission:
        submission = self._submissions.get(submission_id)
        if submission is None:
            raise SubmissionNotFoundError(submission_id)
        return submission

    def _check_claim(self, submission: Submission, claim_id: str | None) -> None:
        if claim_id is not None and submission.claim_id != claim_id:
            raise ClaimSupersededError(submission.id)

    def _set_status(
        self, submission: Submission, target: SubmissionStatus, claim_id: str | None = None
    ) -> Submission:
        if not submission.status.can_transition_to(target):
            raise InvalidStatusTransitionError(
                submission.id, submission.status.value, target.value
            )
        updated = submission.model_copy(
            update={"status": target, "status_changed_at": utcnow(), "claim_id": claim_id}
        )
        self._submissions[submission.id] = updated
        logger.info(
            "Submission %s status %s -> %s", submission.id, submission.status.value, target.value
        )
        return updated

    async def claim_for_assessment(
        self,
        submission_id: str,
        expected_status: SubmissionStatus,
        stale_after_seconds: int,
    ) -> Submission:
        async with self._lock:
            current = self._require(submission_id)
            if current.status == SubmissionStatus.ASSESSING:
                age = utcnow() - current.status_changed_at
                if age < timedelta(seconds=stale_after_seconds):
                    raise AlreadyInProgressError(submission_id)
                logger.warning(
                    "Reclaiming stale ASSESSING submission %s (held for %ds)",
                    submission_id,
                    int(age.total_seconds()),
                )
            elif current.status != expected_status:
                raise AlreadyInProgressError(submission_id)
            elif current.status not in GRADABLE_STATUSES:
                raise InvalidStatusTransitionError(
                    submission_id, current.status.value, SubmissionStatus.ASSESSING.value
                )
            return self._set_status(current, SubmissionStatus.ASSESSING, new_id())

    async def transition_status(
        self, submission_id: str, target: SubmissionStatus, claim_id: str | None = None
    ) -> Submission:
        async with self._lock:
            current = self._require(submission_id)
            self._check_claim(current, claim_id)
            return self._set_status(current, target)

    async def create_assessment(
        self, assessment: Assessment, claim_id: str | None = None
    ) -> Assessment:
        async with self._lock:
            submission = self._require(assessment.submission_id)
            self._check_claim(submission, claim_id)
            self._set_status(submission, SubmissionStatus.DONE)
            self._assessments.setdefault(assessment.submission_id, []).append(assessment)
            return assessment


_store: SubmissionStore | None = None


def get_submission_store() -> SubmissionStore:
    """Return the process-wide submission store."""
    global _store
    if _store is None:
        _store = InMemorySubmissionStore()
    return _store


def set_submission_store(store: SubmissionStore) -> None:
    """Replace the process-wide submission store."""
    global _store
    _store = store
