"""
Extraction readiness gate.

A pure precondition check run before any prompt is built. It refuses to
let grading proceed when the extracted text is missing or too short, or
when the latest extraction run indicates unreliable output.
"""

from typing import NamedTuple

from assessor.models import (
    ExtractionMode,
    ExtractionRun,
    ReadinessMetrics,
    ReadinessResult,
    SubmissionStatus,
)

KNOWN_RUN_STATUSES = frozenset({"DONE", "NEEDS_OCR", "FAILED", "RUNNING", "PENDING"})


class ReadinessThresholds(NamedTuple):
    """Thresholds the gate applies."""

    min_chars: int = 700
    min_confidence: float = 0.68
    min_pages: int = 1
    max_warnings_before_block: int = 8


def _extracted_chars(extracted_text: str, run: ExtractionRun | None) -> tuple[int, bool]:
    """Return (character count, whether any length signal exists)."""
    text_chars = len(extracted_text.strip())
    if text_chars > 0:
        return text_chars, True
    derived = run.derived_text_chars if run is not None else None
    if derived is not None and derived > 0:
        return int(derived), True
    return 0, False


def evaluate_readiness(
    submission_status: SubmissionStatus | str | None,
    extracted_text: str | None,
    latest_run: ExtractionRun | None,
    thresholds: ReadinessThresholds | None = None,
) -> ReadinessResult:
    """
    Evaluate whether a submission's extraction is good enough to grade.

    Args:
        submission_status: Current submission status.
        extracted_text: Extracted body text.
        latest_run: Most recent extraction run, if any.
        thresholds: Gate thresholds (defaults applied when omitted).

    Returns:
        ReadinessResult; ``ok`` is False when any blocker was found.
    """
    limits = thresholds or ReadinessThresholds()
    min_chars = max(200, int(limits.min_chars))
    min_confidence = max(0.4, min(0.99, float(limits.min_confidence)))
    min_pages = max(1, int(limits.min_pages))
    max_warnings = max(2, int(limits.max_warnings_before_block))

    blockers: list[str] = []
    warnings: list[str] = []

    run = latest_run
    extracted_chars, has_char_signal = _extracted_chars(extracted_text or "", run)
    run_status = run.status if run is not None else ""
    page_count = run.page_count or 0 if run is not None else 0
    overall_confidence = run.overall_confidence or 0.0 if run is not None else 0.0
    run_warnings = list(run.warnings) if run is not None else []
    mode = run.mode if run is not None else None
    cover_only = mode == ExtractionMode.COVER_ONLY
    cover_ready = bool(run is not None and run.cover_metadata and run.cover_metadata.is_ready)

    if run is None:
        blockers.append("No extraction run found.")
    if run_status == "NEEDS_OCR":
        if cover_only:
            warnings.append(
                "Extraction flagged as NEEDS_OCR, but cover-only mode is allowed to continue."
            )
        else:
            blockers.append("Extraction flagged as NEEDS_OCR. Run OCR/correction before grading.")
    if run_status == "FAILED":
        blockers.append("Latest extraction run failed.")
    if run_status in ("RUNNING", "PENDING"):
        blockers.append("Extraction is still in progress.")
    if run_status and run_status not in KNOWN_RUN_STATUSES:
        warnings.append(f"Unknown extraction status: {run_status}.")
    if cover_only and not cover_ready:
        warnings.append(
            "Cover-only extraction has incomplete cover metadata; "
            "complete it in submission review if needed."
        )

    if extracted_chars < min_chars:
        if not has_char_signal:
            warnings.append("Extracted text length signal is unavailable for this run.")
        elif cover_only:
            warnings.append(
                f"Cover-only extraction has short body text ({extracted_chars} chars), "
                "which is expected for this mode."
            )
        elif cover_ready:
            warnings.append(
                f"Extracted body text is short ({extracted_chars} chars), "
                "but cover metadata is available."
            )
        else:
            blockers.append(
                f"Extracted text too short ({extracted_chars} chars; minimum {min_chars})."
            )

    if 0 < overall_confidence < min_confidence:
        blockers.append(
            f"Extraction confidence too low ({overall_confidence:.2f}; "
            f"minimum {min_confidence:.2f})."
        )
    if page_count <= 0:
        warnings.append("Extraction page count is missing.")
    elif page_count < min_pages:
        blockers.append(f"Extraction page count too low ({page_count}; minimum {min_pages}).")

    warnings.extend(f"Extraction warning: {w}" for w in run_warnings)
    if len(run_warnings) >= max_warnings:
        blockers.append(
            f"Extraction produced too many warnings ({len(run_warnings)}; "
            f"maximum {max_warnings - 1})."
        )

    status = str(getattr(submission_status, "value", submission_status) or "").upper()
    if status == SubmissionStatus.NEEDS_OCR.value:
        if cover_only:
            warnings.append(
                "Submission status is NEEDS_OCR, but cover-only mode is allowed to continue."
            )
        else:
            blockers.append("Submission status is NEEDS_OCR.")
    elif status in (SubmissionStatus.UPLOADED.value, SubmissionStatus.EXTRACTING.value):
        blockers.append(f"Submission extraction has not completed (status {status}).")

    return ReadinessResult(
        ok=not blockers,
        blockers=tuple(blockers),
        warnings=tuple(warnings),
        metrics=ReadinessMetrics(
            extracted_chars=extracted_chars,
            page_count=max(page_count, 0),
            overall_confidence=overall_confidence,
            run_status=run_status,
            cover_metadata_ready=cover_ready,
            extraction_mode=mode.value if mode else "UNKNOWN",
        ),
    )
