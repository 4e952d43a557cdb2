"""
Grade policy.

Post-validation rules that keep the overall grade consistent with the
criterion decisions:
- band completion: a grade band is only reachable when every criterion of
  that band (and the bands below it) is ACHIEVED;
- resubmission cap: optionally caps MERIT/DISTINCTION to
  PASS_ON_RESUBMISSION when the model asks for a resubmission.

Also derives the evidence density and rerun decision diff recorded in the
audit trail.
"""

from collections.abc import Sequence

from assessor.models import (
    AssessmentCriterion,
    CriterionCheck,
    CriterionDecision,
    DecisionChange,
    DecisionDiff,
    EvidenceDensity,
    GradeBand,
    GradeDecision,
    GradePolicy,
    GradeWord,
)

CAP_MISSING_PASS = "CAPPED_DUE_TO_MISSING_PASS"
CAP_MISSING_MERIT = "CAPPED_DUE_TO_MISSING_MERIT"
CAP_MISSING_DISTINCTION = "CAPPED_DUE_TO_MISSING_DISTINCTION"
CAP_RESUBMISSION = "CAPPED_DUE_TO_RESUBMISSION"

DECISION_RANK = {
    CriterionDecision.NOT_ACHIEVED.value: 0,
    CriterionDecision.UNCLEAR.value: 1,
    CriterionDecision.ACHIEVED.value: 2,
}
MAX_DIFF_CHANGES = 30


def _codes_in_band(criteria: Sequence[AssessmentCriterion], band: GradeBand) -> list[str]:
    return list(dict.fromkeys(c.code for c in criteria if c.grade_band == band))


def apply_grade_policy(
    decision: GradeDecision,
    criteria: Sequence[AssessmentCriterion],
    resubmission_cap_enabled: bool = False,
) -> GradePolicy:
    """
    Apply band completion and resubmission caps to the model's grade.

    Args:
        decision: Validated grading decision.
        criteria: Active criteria for the run.
        resubmission_cap_enabled: Whether the resubmission cap is active.

    Returns:
        GradePolicy trace with the raw and final grade.
    """
    raw = decision.overall_grade_word
    achieved = {
        c.code for c in decision.criterion_checks if c.decision == CriterionDecision.ACHIEVED
    }
    missing_pass = [c for c in _codes_in_band(criteria, GradeBand.PASS) if c not in achieved]
    missing_merit = [c for c in _codes_in_band(criteria, GradeBand.MERIT) if c not in achieved]
    missing_distinction = [
        c for c in _codes_in_band(criteria, GradeBand.DISTINCTION) if c not in achieved
    ]

    grade = raw
    reasons: list[str] = []
    if missing_pass and raw != GradeWord.REFER:
        grade = GradeWord.REFER
        reasons.append(CAP_MISSING_PASS)
    elif raw in (GradeWord.MERIT, GradeWord.DISTINCTION) and missing_merit:
        grade = GradeWord.PASS
        reasons.append(CAP_MISSING_MERIT)
    elif raw == GradeWord.DISTINCTION and missing_distinction:
        grade = GradeWord.MERIT
        reasons.append(CAP_MISSING_DISTINCTION)

    if (
        resubmission_cap_enabled
        and decision.resubmission_required
        and grade in (GradeWord.MERIT, GradeWord.DISTINCTION)
    ):
        grade = GradeWord.PASS_ON_RESUBMISSION
        reasons.append(CAP_RESUBMISSION)

    return GradePolicy(
        raw_grade=raw,
        final_grade=grade,
        was_capped=grade != raw,
        cap_reasons=tuple(reasons),
        missing_pass_codes=tuple(missing_pass),
        missing_merit_codes=tuple(missing_merit),
        missing_distinction_codes=tuple(missing_distinction),
    )


def evidence_density(checks: Sequence[CriterionCheck]) -> list[EvidenceDensity]:
    """Citation count, cited words and page spread per criterion."""
    rows: list[EvidenceDensity] = []
    for check in checks:
        words = sum(
            len((e.quote or "").split()) + len((e.visual_description or "").split())
            for e in check.evidence
        )
        rows.append(
            EvidenceDensity(
                code=check.code,
                decision=check.decision,
                citation_count=len(check.evidence),
                total_words_cited=words,
                distinct_pages=len({e.page for e in check.evidence}),
            )
        )
    return rows


def decision_diff(
    previous: Sequence[CriterionCheck], current: Sequence[CriterionCheck]
) -> DecisionDiff:
    """
    Compare criterion decisions against a previous assessment.

    A change towards NOT_ACHIEVED is ``stricter``, towards ACHIEVED is
    ``lenient``. Codes absent on one side count as UNCLEAR.
    """
    before = {c.code: c.decision.value for c in previous}
    after = {c.code: c.decision.value for c in current}
    codes = sorted(set(before) | set(after))

    changes: list[DecisionChange] = []
    counts = {"stricter": 0, "lenient": 0, "lateral": 0}
    for code in codes:
        old = before.get(code, CriterionDecision.UNCLEAR.value)
        new = after.get(code, CriterionDecision.UNCLEAR.value)
        if old == new:
            continue
        old_rank, new_rank = DECISION_RANK[old], DECISION_RANK[new]
        if new_rank < old_rank:
            direction = "stricter"
        elif new_rank > old_rank:
            direction = "lenient"
        else:
            direction = "lateral"
        counts[direction] += 1
        changes.append(DecisionChange(code=code, previous=old, current=new, direction=direction))

    return DecisionDiff(
        compared_count=len(codes),
        changed_count=len(changes),
        stricter_count=counts["stricter"],
        lenient_count=counts["lenient"],
        lateral_count=counts["lateral"],
        changes=tuple(changes[:MAX_DIFF_CHANGES]),
    )
