"""
Decision validator for LLM grading output.

Enforces the output contract on the parsed model JSON: every criterion
code appears exactly once, decisions come from a fixed vocabulary and
required fields are present. Validation never raises; it returns every
violated rule so callers can report them all at once.

The ACHIEVED-without-evidence rule is deliberately not part of this
contract. It is applied by the caller as a separate business rule once
validation has passed.
"""

import math
import re
from collections.abc import Sequence
from typing import Any

from assessor.models import (
    CriterionCheck,
    CriterionDecision,
    EvidenceItem,
    GradeDecision,
    GradeWord,
    ValidationResult,
)

MAX_FEEDBACK_BULLETS = 24

GRADE_ALIASES = {
    "PASS_ON_RESUB": GradeWord.PASS_ON_RESUBMISSION,
    "PASS_RESUBMISSION": GradeWord.PASS_ON_RESUBMISSION,
    "FAIL": GradeWord.REFER,
}

DECISION_ALIASES = {
    "NOTACHIEVED": CriterionDecision.NOT_ACHIEVED,
    "NOT-ACHIEVED": CriterionDecision.NOT_ACHIEVED,
}


def clean_text(value: Any) -> str:
    """Normalise model text: non-breaking spaces, trailing blanks, blank-line runs."""
    if value is None:
        return ""
    text = str(value).replace("\u00a0", " ")
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def normalize_grade(value: Any) -> GradeWord | None:
    """Map a loose grade word onto the grade vocabulary."""
    raw = re.sub(r"\s+", "_", str(value or "").strip().upper())
    if raw in GRADE_ALIASES:
        return GRADE_ALIASES[raw]
    try:
        return GradeWord(raw)
    except ValueError:
        return None


def normalize_decision(value: Any, met_fallback: Any = None) -> CriterionDecision | None:
    """Map a loose decision onto the decision vocabulary."""
    raw = re.sub(r"\s+", "_", str(value or "").strip().upper())
    try:
        return CriterionDecision(raw)
    except ValueError:
        pass
    if raw in DECISION_ALIASES:
        return DECISION_ALIASES[raw]
    if isinstance(met_fallback, bool):
        return CriterionDecision.ACHIEVED if met_fallback else CriterionDecision.NOT_ACHIEVED
    return None


def _to_number(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        return math.nan
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return math.nan
    return math.nan


def clamp01(value: Any) -> float:
    """Clamp a numeric value into [0, 1]; NaN when it is not a finite number."""
    number = _to_number(value)
    if not math.isfinite(number):
        return math.nan
    return max(0.0, min(1.0, number))


def normalize_evidence(item: Any) -> EvidenceItem | None:
    """Keep an evidence item only if it has a positive integer page and some content."""
    if not isinstance(item, dict):
        return None
    page = _to_number(item.get("page"))
    if not math.isfinite(page) or not page.is_integer() or page <= 0:
        return None
    quote = clean_text(item.get("quote"))
    visual = clean_text(item.get("visualDescription"))
    if not quote and not visual:
        return None
    return EvidenceItem(page=int(page), quote=quote or None, visual_description=visual or None)


class DecisionValidator:
    """
    Validates parsed model output against the grading contract.

    Checks:
    1. overallGradeWord is a known grade (aliases normalised)
    2. feedbackSummary and at least one feedback bullet are present
    3. criterionChecks covers every expected code exactly once
    4. Each check has a known decision, a rationale and a numeric confidence
    5. Top-level confidence is numeric
    """

    def validate(self, payload: Any, criteria_codes: Sequence[str]) -> ValidationResult:
        """
        Validate model output.

        Args:
            payload: Parsed model JSON (anything; non-objects are treated as empty).
            criteria_codes: Criterion codes the response must cover.

        Returns:
            ValidationResult with the typed decision, or every violated rule.
        """
        errors: list[str] = []
        data: dict[str, Any] = payload if isinstance(payload, dict) else {}

        grade = normalize_grade(data.get("overallGradeWord", data.get("overallGrade")))
        if grade is None:
            errors.append(
                "overallGradeWord must be one of REFER/PASS/PASS_ON_RESUBMISSION/MERIT/DISTINCTION "
                "(FAIL accepted and normalized to REFER)."
            )

        feedback_summary = clean_text(data.get("feedbackSummary"))
        if not feedback_summary:
            errors.append("feedbackSummary is required.")

        raw_bullets = data.get("feedbackBullets")
        bullets = [clean_text(b) for b in raw_bullets] if isinstance(raw_bullets, list) else []
        bullets = [b for b in bullets if b][:MAX_FEEDBACK_BULLETS]
        if not bullets:
            errors.append("feedbackBullets must contain at least one non-empty bullet.")

        resubmission_raw = data.get("resubmissionRequired")
        if isinstance(resubmission_raw, bool):
            resubmission_required = resubmission_raw
        else:
            resubmission_required = grade == GradeWord.REFER
            if "resubmissionRequired" in data:
                errors.append("resubmissionRequired must be boolean when provided.")

        checks, seen = self._validate_checks(data.get("criterionChecks"), criteria_codes, errors)

        expected = list(dict.fromkeys(c.strip().upper() for c in criteria_codes if c.strip()))
        for code in expected:
            if code not in seen:
                errors.append(f"Missing criterion check for code: {code}.")

        confidence = clamp01(data.get("confidence"))
        if math.isnan(confidence):
            errors.append("confidence must be a number between 0 and 1.")

        if errors or grade is None:
            return ValidationResult(ok=False, errors=tuple(errors))

        return ValidationResult(
            ok=True,
            decision=GradeDecision(
                overall_grade_word=grade,
                resubmission_required=resubmission_required,
                feedback_summary=feedback_summary,
                feedback_bullets=tuple(bullets),
                criterion_checks=tuple(checks),
                confidence=confidence,
            ),
        )

    def _validate_checks(
        self, raw_checks: Any, criteria_codes: Sequence[str], errors: list[str]
    ) -> tuple[list[CriterionCheck], set[str]]:
        """
        Validate criterion check rows, appending problems to ``errors``.

        Returns:
            Tuple of (valid checks, codes seen).
        """
        rows = raw_checks if isinstance(raw_checks, list) else []
        if not rows:
            errors.append("criterionChecks is required.")

        expected = {c.strip().upper() for c in criteria_codes if c.strip()}
        checks: list[CriterionCheck] = []
        seen: set[str] = set()

        for row in rows:
            item = row if isinstance(row, dict) else {}
            code = str(item.get("code") or "").strip().upper()
            if not code:
                errors.append("criterionChecks[].code is required.")
                continue
            if code not in expected:
                errors.append(f"criterionChecks contains unknown code: {code}.")
                continue
            if code in seen:
                errors.append(f"criterionChecks contains duplicate code: {code}.")
                continue
            seen.add(code)

            decision = normalize_decision(item.get("decision"), item.get("met"))
            rationale = clean_text(item.get("rationale", item.get("comment")))
            raw_evidence = item.get("evidence")
            evidence = [
                e
                for e in (normalize_evidence(x) for x in raw_evidence or [])
                if e is not None
            ] if isinstance(raw_evidence, list) else []
            row_confidence = clamp01(item.get("confidence"))

            if decision is None:
                errors.append(
                    f"criterionChecks[{code}].decision is required and must be "
                    "ACHIEVED/NOT_ACHIEVED/UNCLEAR."
                )
            if not rationale:
                errors.append(f"criterionChecks[{code}].rationale is required.")
            if math.isnan(row_confidence):
                errors.append(f"criterionChecks[{code}].confidence must be a number between 0 and 1.")

            checks.append(
                CriterionCheck(
                    code=code,
                    decision=decision or CriterionDecision.UNCLEAR,
                    rationale=rationale or "-",
                    confidence=0.5 if math.isnan(row_confidence) else row_confidence,
                    evidence=tuple(evidence),
                )
            )

        return checks, seen
