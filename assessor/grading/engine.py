"""
Grading engine - the core orchestrator.

Runs one grading attempt end to end:

1. Preconditions (model key, submission, references, criteria, readiness)
   are checked before any state change.
2. The evidence context is built and the submission is claimed (ASSESSING).
3. The model is invoked under the strict output contract, with bounded
   schema retries.
4. Evidence, grade band and confidence policies are applied.
5. Feedback is rendered and an immutable Assessment is appended (DONE).

Any failure after the claim moves the submission to FAILED before the
error propagates.
"""

import asyncio
import logging
import time
from collections.abc import Sequence
from typing import NamedTuple

from pydantic import ValidationError

from assessor.config import GradingConfig, GradingOverrides, Settings, get_settings
from assessor.errors import (
    ClaimSupersededError,
    EvidenceMissingError,
    ExtractionNotReadyError,
    GradingError,
    ModelCallFailedError,
    ModelOutputInvalidError,
    SubmissionNotFoundError,
    precondition,
)
from assessor.evidence import ModalityRequirementExtractor, detect_evidence, evaluate_compliance
from assessor.feedback import (
    extract_first_name,
    personalize_summary,
    render_feedback,
    sanitize_bullets,
)
from assessor.grading.confidence import apply_confidence_policy
from assessor.grading.llm_client import GRADE_OPERATION, LLMClient, LLMError, ModelCompletion
from assessor.grading.policy import apply_grade_policy, decision_diff, evidence_density
from assessor.grading.prompt_builder import GradingPrompt, PromptBuilder
from assessor.grading.readiness import ReadinessThresholds, evaluate_readiness
from assessor.grading.scorer import DecisionValidator
from assessor.models import (
    Assessment,
    AssessmentAudit,
    AssessmentCriterion,
    AssignmentBrief,
    BatchItemResult,
    BatchOutcome,
    BatchSkip,
    ComplianceReport,
    CriterionCheck,
    EvidenceSignals,
    ExtractionRun,
    GradeDecision,
    GradeWord,
    ModalityRequirement,
    ReadinessResult,
    Submission,
    SubmissionStatus,
    Unit,
    utcnow,
)
from assessor.references import CriteriaResolver, ReferenceValidator, RubricHintParser
from assessor.storage import SubmissionStore, get_submission_store
from assessor.usage import UsageRecorder

logger = logging.getLogger(__name__)

SCHEMA_RETRY_OPERATION = "submission_grade_schema_retry"

SKIP_MISSING = "missing"
SKIP_NOT_FAILED = "not-failed"
SKIP_ALREADY_DONE = "already-done"
SKIP_NOT_READY = "extraction-not-ready"

COVER_ONLY_CAVEAT = (
    "This assessment was based on sampled pages and cover details only, because the full "
    "body text of your submission could not be read reliably."
)


class GradingContext(NamedTuple):
    """Everything resolved before the submission is claimed."""

    submission: Submission
    brief: AssignmentBrief
    unit: Unit
    run: ExtractionRun | None
    criteria: list[AssessmentCriterion]
    readiness: ReadinessResult
    requirements: list[ModalityRequirement]
    signals: EvidenceSignals
    compliance: ComplianceReport
    prompt: GradingPrompt
    first_name: str | None
    cover_only: bool


class GradingOutcome(NamedTuple):
    """Result of one grading attempt."""

    assessment: Assessment | None
    audit: AssessmentAudit
    overall_grade: GradeWord
    feedback_text: str
    dry_run: bool


class ValidatedCompletion(NamedTuple):
    """Final model call and its validated decision."""

    completion: ModelCompletion
    decision: GradeDecision
    schema_retry_count: int


def confidence_caveat(cap: float) -> str:
    """Student-facing note shown when confidence was capped for missing evidence."""
    return (
        f"Confidence in this assessment was capped at {cap:.2f} because some required "
        "charts, tables, images or equations could not be located in your submission."
    )


class GradingEngine:
    """
    Main grading engine.

    Orchestrates the pipeline stages and owns the submission status
    transitions of a grading attempt.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: SubmissionStore | None = None,
        llm_client: LLMClient | None = None,
        usage_recorder: UsageRecorder | None = None,
    ):
        """
        Initialize the grading engine.

        Args:
            settings: Configuration settings. Uses global settings if not provided.
            store: Submission store. Uses the global store if not provided.
            llm_client: Grading model client. Built from settings if not provided.
            usage_recorder: Usage metering collaborator for the default client.
        """
        self._settings = settings or get_settings()
        self._store = store or get_submission_store()
        self._llm_client = llm_client or LLMClient(self._settings, usage_recorder)
        self._validator = DecisionValidator()
        self._reference_validator = ReferenceValidator()
        self._criteria_resolver = CriteriaResolver()
        self._rubric_parser = RubricHintParser()
        self._requirement_extractor = ModalityRequirementExtractor()

    async def grade(
        self,
        submission_id: str,
        overrides: GradingOverrides | None = None,
        request_id: str = "",
    ) -> GradingOutcome:
        """
        Grade one submission.

        Args:
            submission_id: Submission to grade.
            overrides: Per-request tone/strictness/rubric/actor/dry-run overrides.
            request_id: Correlation id recorded in the audit trail.

        Returns:
            GradingOutcome. ``assessment`` is None for a dry run.

        Raises:
            PreconditionError: Before any state change; status unchanged.
            GradingError: After the ASSESSING claim; status is FAILED.
        """
        overrides = overrides or GradingOverrides()
        config = GradingConfig.resolve(self._settings, overrides)
        dry_run = overrides.dry_run
        started_at = utcnow()
        started = time.perf_counter()

        if not self._settings.openai_api_key.strip():
            raise precondition(
                "GRADE_OPENAI_KEY_MISSING",
                "Grading model API key is not configured.",
                status_code=500,
            )

        context = await self._prepare(submission_id, config, dry_run)
        claim_id: str | None = None

        try:
            if not dry_run:
                claim = await self._store.claim_for_assessment(
                    submission_id,
                    context.submission.status,
                    self._settings.assessing_stale_after_seconds,
                )
                claim_id = claim.claim_id

            validated = await self._invoke_model(context, config)
            decision = validated.decision

            missing_evidence = decision.achieved_without_evidence()
            if missing_evidence:
                raise EvidenceMissingError(missing_evidence)

            grade_policy = apply_grade_policy(
                decision, context.criteria, config.resubmission_cap_enabled
            )
            confidence_policy = apply_confidence_policy(
                decision.confidence, context.compliance.missing_count, config.confidence_cap
            )

            caveats: list[str] = []
            if confidence_policy.was_capped:
                caveats.append(confidence_caveat(confidence_policy.confidence_cap))
            if context.cover_only:
                caveats.append(COVER_ONLY_CAVEAT)
            bullets = (
                caveats + sanitize_bullets(decision.feedback_bullets, config.max_feedback_bullets)
            )[: config.max_feedback_bullets]

            finished_at = utcnow()
            feedback_text = render_feedback(
                config.feedback_template,
                first_name=context.first_name,
                summary=personalize_summary(decision.feedback_summary, context.first_name),
                bullets=bullets,
                overall_grade=grade_policy.final_grade.value,
                assessor_name=config.actor,
                marked_date=finished_at,
            )

            previous = None if dry_run else await self._store.get_latest_assessment(submission_id)
            previous_checks = self._previous_checks(previous)

            notes: list[str] = []
            if confidence_policy.was_capped:
                notes.append(
                    f"Confidence capped from {confidence_policy.model_confidence:.2f} to "
                    f"{confidence_policy.confidence_cap:.2f} "
                    f"({context.compliance.missing_count} modality gaps)."
                )
            if grade_policy.was_capped:
                notes.append(
                    f"Grade capped from {grade_policy.raw_grade.value} to "
                    f"{grade_policy.final_grade.value}: {', '.join(grade_policy.cap_reasons)}."
                )
            if context.cover_only:
                notes.append("Cover-only extraction: page samples were the only evidence source.")

            audit = AssessmentAudit(
                request_id=request_id,
                model=validated.completion.model,
                prompt_hash=context.prompt.prompt_hash,
                prompt_chars=len(context.prompt.text),
                evidence_substrate=context.prompt.evidence_substrate,
                started_at=started_at,
                finished_at=finished_at,
                duration_ms=int((time.perf_counter() - started) * 1000),
                tone=config.tone.value,
                strictness=config.strictness.value,
                readiness=context.readiness,
                requirements=tuple(context.requirements),
                evidence_signals=context.signals,
                compliance=context.compliance,
                confidence_policy=confidence_policy,
                grade_policy=grade_policy,
                decision=decision,
                evidence_density=tuple(evidence_density(decision.criterion_checks)),
                schema_retry_count=validated.schema_retry_count,
                usage=validated.completion.usage,
                raw_response=validated.completion.parsed or validated.completion.content,
                previous_assessment_id=previous.id if previous else None,
                decision_diff=(
                    decision_diff(previous_checks, decision.criterion_checks)
                    if previous is not None
                    else None
                ),
                system_notes=tuple(notes),
            )

            if dry_run:
                logger.info(
                    "Dry run graded submission %s as %s (request %s)",
                    submission_id,
                    grade_policy.final_grade.value,
                    request_id,
                )
                return GradingOutcome(
                    assessment=None,
                    audit=audit,
                    overall_grade=grade_policy.final_grade,
                    feedback_text=feedback_text,
                    dry_run=True,
                )

            assessment = await self._store.create_assessment(
                Assessment(
                    submission_id=submission_id,
                    overall_grade=grade_policy.final_grade,
                    feedback_text=feedback_text,
                    graded_by=config.actor,
                    result_json=audit.to_json_dict(),
                ),
                claim_id=claim_id,
            )
            logger.info(
                "Graded submission %s as %s in %dms (assessment %s, request %s)",
                submission_id,
                assessment.overall_grade.value,
                audit.duration_ms,
                assessment.id,
                request_id,
            )
            return GradingOutcome(
                assessment=assessment,
                audit=audit,
                overall_grade=assessment.overall_grade,
                feedback_text=feedback_text,
                dry_run=False,
            )

        except GradingError as exc:
            if claim_id:
                await self._mark_failed(submission_id, exc, claim_id)
            raise
        except LLMError as exc:
            error = ModelCallFailedError(exc)
            if claim_id:
                await self._mark_failed(submission_id, error, claim_id)
            raise error from exc
        except Exception as exc:
            error = GradingError(details={"cause": str(exc)[:600]}, cause=exc)
            if claim_id:
                await self._mark_failed(submission_id, error, claim_id)
            raise error from exc

    async def _prepare(
        self, submission_id: str, config: GradingConfig, dry_run: bool
    ) -> GradingContext:
        """
        Load references and build the evidence context without changing state.

        Raises:
            PreconditionError: When any precondition fails.
        """
        submission = await self._store.get_submission(submission_id)
        if submission is None:
            raise SubmissionNotFoundError(submission_id)

        if not dry_run and not submission.student_id:
            raise precondition(
                "GRADE_STUDENT_LINK_REQUIRED",
                "Link a student before saving a grade. Preview can run without a linked student.",
                submissionId=submission_id,
            )

        brief = (
            await self._store.get_brief(submission.assignment_brief_id)
            if submission.assignment_brief_id
            else None
        )
        unit = await self._store.get_unit(brief.unit_id) if brief and brief.unit_id else None
        brief, unit = self._reference_validator.validate_or_raise(brief, unit)

        criteria = self._criteria_resolver.resolve_or_raise(brief, unit)

        run = await self._store.get_latest_run(submission_id)
        readiness = evaluate_readiness(
            submission.status,
            submission.extracted_text,
            run,
            ReadinessThresholds(
                min_chars=config.min_extracted_chars,
                min_confidence=config.min_extraction_confidence,
                min_pages=config.min_page_count,
                max_warnings_before_block=config.max_warnings_before_block,
            ),
        )
        if not readiness.ok:
            raise ExtractionNotReadyError(
                list(readiness.blockers),
                list(readiness.warnings),
                readiness.metrics.to_json_dict(),
            )

        cover_only = bool(run and run.is_cover_only)
        pages = run.pages if run else ()
        samples = PromptBuilder.select_page_samples(
            pages, config.page_sample_count, config.page_sample_char_limit
        )

        requirements = self._requirement_extractor.extract(brief.tasks)
        signals = detect_evidence(
            PromptBuilder.evidence_corpus(submission.extracted_text, samples, cover_only)
        )
        compliance = evaluate_compliance(requirements, signals)

        cover = run.cover_metadata if run else None
        first_name = extract_first_name(
            submission.student_name,
            cover.student_name.value if cover and cover.student_name else None,
        )
        rubric = self._rubric_parser.build_guidance(
            brief.rubric_text,
            [c.code for c in criteria],
            enabled=config.use_rubric_if_available,
        )

        prompt = PromptBuilder.build_grading_prompt(
            config=config,
            criteria=criteria,
            unit_code=unit.unit_code,
            unit_title=unit.title,
            assignment_code=brief.assignment_code,
            student_first_name=first_name,
            rubric=rubric,
            requirements_summary=ModalityRequirementExtractor.summarize(requirements),
            evidence=signals,
            cover_metadata=cover,
            pages=pages,
            extracted_text=submission.extracted_text,
            cover_only=cover_only,
        )

        return GradingContext(
            submission=submission,
            brief=brief,
            unit=unit,
            run=run,
            criteria=criteria,
            readiness=readiness,
            requirements=requirements,
            signals=signals,
            compliance=compliance,
            prompt=prompt,
            first_name=first_name,
            cover_only=cover_only,
        )

    async def _invoke_model(
        self, context: GradingContext, config: GradingConfig
    ) -> ValidatedCompletion:
        """
        Call the model and validate its output, re-asking on schema failures.

        Raises:
            LLMError: If any model call fails, schema retries included.
            ModelOutputInvalidError: If the output is still invalid after all retries.
        """
        codes = [c.code for c in context.criteria]
        schema = PromptBuilder.response_schema()

        completion = await self._llm_client.generate(
            context.prompt.text,
            schema,
            model=config.model,
            temperature=config.temperature,
            max_tokens=context.prompt.max_output_tokens,
            operation=GRADE_OPERATION,
        )
        result = self._validator.validate(completion.parsed, codes)

        retries = 0
        while not result.ok and retries < config.schema_retries:
            retries += 1
            logger.warning(
                "Model output failed validation for submission %s (%d errors), schema retry %d/%d",
                context.submission.id,
                len(result.errors),
                retries,
                config.schema_retries,
            )
            completion = await self._llm_client.generate(
                context.prompt.text,
                schema,
                model=config.model,
                temperature=config.temperature,
                max_tokens=context.prompt.max_output_tokens,
                operation=SCHEMA_RETRY_OPERATION,
            )
            result = self._validator.validate(completion.parsed, codes)

        if not result.ok or result.decision is None:
            raise ModelOutputInvalidError(list(result.errors), retries)

        return ValidatedCompletion(
            completion=completion, decision=result.decision, schema_retry_count=retries
        )

    @staticmethod
    def _previous_checks(previous: Assessment | None) -> list[CriterionCheck]:
        """Criterion checks recorded by an earlier assessment."""
        if previous is None:
            return []
        raw = previous.result_json.get("decision")
        if not isinstance(raw, dict):
            return []
        try:
            return list(GradeDecision.model_validate(raw).criterion_checks)
        except ValidationError:
            logger.warning("Previous assessment %s has an unreadable decision", previous.id)
            return []

    async def _mark_failed(
        self, submission_id: str, error: GradingError, claim_id: str
    ) -> None:
        logger.error(
            "Grading failed for submission %s: %s %s",
            submission_id,
            error.code,
            error.message,
            exc_info=error.cause or error,
        )
        try:
            await self._store.transition_status(
                submission_id, SubmissionStatus.FAILED, claim_id=claim_id
            )
        except ClaimSupersededError:
            logger.warning(
                "Submission %s was reclaimed by a newer attempt; leaving its status", submission_id
            )
        except GradingError:
            logger.exception("Could not mark submission %s as FAILED", submission_id)

    async def grade_batch(
        self,
        submission_ids: Sequence[str],
        overrides: GradingOverrides | None = None,
        *,
        retry_failed_only: bool = False,
        force_retry: bool = False,
        request_id: str = "",
    ) -> BatchOutcome:
        """
        Grade several submissions with bounded concurrency.

        Each target is an independent single-submission grading attempt;
        one failure never affects the others.

        Args:
            submission_ids: Requested submissions (duplicates ignored).
            overrides: Overrides applied to every attempt.
            retry_failed_only: Only grade submissions currently FAILED.
            force_retry: Re-grade submissions that are already DONE.
            request_id: Correlation id recorded in every audit.

        Returns:
            BatchOutcome with skipped entries and per-submission results.
        """
        requested = list(dict.fromkeys(s.strip() for s in submission_ids if s.strip()))
        skipped: list[BatchSkip] = []
        targets: list[str] = []

        for submission_id in requested:
            reason = await self._skip_reason(submission_id, retry_failed_only, force_retry)
            if reason:
                skipped.append(BatchSkip(submission_id=submission_id, reason=reason))
            else:
                targets.append(submission_id)

        semaphore = asyncio.Semaphore(self._settings.batch_max_concurrency)

        async def run_one(submission_id: str) -> BatchItemResult:
            async with semaphore:
                try:
                    outcome = await self.grade(submission_id, overrides, request_id)
                except GradingError as exc:
                    return BatchItemResult(
                        submission_id=submission_id,
                        ok=False,
                        error_code=exc.code,
                        error=exc.message,
                    )
                return BatchItemResult(
                    submission_id=submission_id,
                    ok=True,
                    assessment_id=outcome.assessment.id if outcome.assessment else None,
                    overall_grade=outcome.overall_grade,
                )

        results = await asyncio.gather(*(run_one(s) for s in targets))
        outcome = BatchOutcome(
            requested=len(requested),
            targeted=len(targets),
            skipped=tuple(skipped),
            results=tuple(results),
        )
        logger.info(
            "Batch graded %d of %d requested submissions (%d skipped, %d succeeded)",
            outcome.targeted,
            outcome.requested,
            len(outcome.skipped),
            outcome.succeeded,
        )
        return outcome

    async def _skip_reason(
        self, submission_id: str, retry_failed_only: bool, force_retry: bool
    ) -> str | None:
        submission = await self._store.get_submission(submission_id)
        if submission is None:
            return SKIP_MISSING
        if retry_failed_only and submission.status != SubmissionStatus.FAILED:
            return SKIP_NOT_FAILED
        if submission.status == SubmissionStatus.DONE and not force_retry:
            return SKIP_ALREADY_DONE
        readiness = evaluate_readiness(
            submission.status,
            submission.extracted_text,
            await self._store.get_latest_run(submission_id),
            ReadinessThresholds(
                min_chars=self._settings.min_extracted_chars,
                min_confidence=self._settings.min_extraction_confidence,
                min_pages=self._settings.min_page_count,
                max_warnings_before_block=self._settings.max_warnings_before_block,
            ),
        )
        if not readiness.ok:
            return SKIP_NOT_READY
        return None

    async def health_check(self) -> bool:
        """
        Check if the grading engine is operational.

        Returns:
            True if the model endpoint is configured and reachable.
        """
        if not self._settings.openai_api_key.strip():
            return False
        return await self._llm_client.health_check()
