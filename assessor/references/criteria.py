"""
Reference validation and criteria resolution.

Grading may only run against a locked brief bound to a locked unit
specification. This module checks those locks and resolves the criteria
a grading run is scored against.
"""

import re
from typing import NamedTuple

from assessor.errors import precondition
from assessor.models import AssessmentCriterion, AssignmentBrief, GradeBand, Unit

CODE_SHAPE = re.compile(r"^[PMD]\d{1,2}$")

BAND_ORDER = {GradeBand.PASS: 0, GradeBand.MERIT: 1, GradeBand.DISTINCTION: 2}


class ReferenceIssue(NamedTuple):
    """A single reference problem with the stable code it maps to."""

    code: str
    message: str


def criterion_sort_key(criterion: AssessmentCriterion) -> tuple[int, int, str]:
    """Order criteria by band, then by their numeric suffix."""
    digits = re.sub(r"\D", "", criterion.code)
    return BAND_ORDER[criterion.grade_band], int(digits) if digits else 0, criterion.code


class ReferenceValidator:
    """
    Validates the references a grading run depends on.

    Checks:
    1. The brief exists and is locked
    2. The brief's unit specification exists and is locked
    3. Criterion codes have the P/M/D + number shape
    """

    def validate(
        self, brief: AssignmentBrief | None, unit: Unit | None
    ) -> tuple[bool, list[ReferenceIssue]]:
        """
        Validate references and return any issues found.

        Args:
            brief: The assignment brief bound to the submission.
            unit: The unit specification the brief belongs to.

        Returns:
            Tuple of (is_valid, list of issues).
        """
        issues: list[ReferenceIssue] = []

        if brief is None:
            issues.append(
                ReferenceIssue(
                    "GRADE_ASSIGNMENT_BINDING_MISSING",
                    "Submission is not linked to an assignment brief.",
                )
            )
            return False, issues

        if brief.locked_at is None:
            issues.append(
                ReferenceIssue(
                    "GRADE_BRIEF_NOT_LOCKED",
                    f"Assignment brief {brief.assignment_code or brief.id} must be locked before grading.",
                )
            )

        if unit is None or unit.locked_at is None:
            label = (unit.unit_code or unit.id) if unit else (brief.unit_id or "unknown")
            issues.append(
                ReferenceIssue(
                    "GRADE_SPEC_NOT_LOCKED",
                    f"Unit specification {label} must be locked before grading.",
                )
            )
            return False, issues

        for criterion in unit.criteria:
            if not CODE_SHAPE.match(criterion.code):
                issues.append(
                    ReferenceIssue(
                        "GRADE_INVALID_CRITERION_CODE",
                        f"Criterion code '{criterion.code}' is not a P/M/D code.",
                    )
                )

        return len(issues) == 0, issues

    def validate_or_raise(
        self, brief: AssignmentBrief | None, unit: Unit | None
    ) -> tuple[AssignmentBrief, Unit]:
        """
        Validate references and raise on the first issue.

        Args:
            brief: The assignment brief bound to the submission.
            unit: The unit specification the brief belongs to.

        Returns:
            The validated (brief, unit) pair.

        Raises:
            PreconditionError: With the stable code of the first issue.
        """
        is_valid, issues = self.validate(brief, unit)
        if not is_valid:
            first = issues[0]
            raise precondition(first.code, first.message)
        if brief is None or unit is None:
            raise precondition("GRADE_ASSIGNMENT_BINDING_MISSING", "Assignment references are missing.")
        return brief, unit


class CriteriaResolver:
    """Resolves the active criteria for a brief."""

    def resolve(self, brief: AssignmentBrief, unit: Unit) -> list[AssessmentCriterion]:
        """
        Resolve active criteria.

        Explicit criteria mappings on the brief override the unit's full
        criteria set. Codes the brief excludes are then removed.

        Args:
            brief: Locked assignment brief.
            unit: Locked unit specification.

        Returns:
            Criteria ordered PASS, MERIT, DISTINCTION then by number.
        """
        by_code: dict[str, AssessmentCriterion] = {}
        for criterion in unit.criteria:
            by_code.setdefault(criterion.code, criterion)

        mapped = [m.criterion_code for m in brief.criteria_maps if m.criterion_code in by_code]
        selected = [by_code[c] for c in dict.fromkeys(mapped)] if mapped else list(by_code.values())

        excluded = {c.strip().upper() for c in brief.excluded_criteria_codes}
        active = [c for c in selected if c.code not in excluded]
        return sorted(active, key=criterion_sort_key)

    def resolve_or_raise(self, brief: AssignmentBrief, unit: Unit) -> list[AssessmentCriterion]:
        """
        Resolve criteria and refuse an empty set.

        Raises:
            PreconditionError: GRADE_NO_ACTIVE_CRITERIA when nothing is left to grade.
        """
        criteria = self.resolve(brief, unit)
        if not criteria:
            raise precondition(
                "GRADE_NO_ACTIVE_CRITERIA",
                "No active criteria remain for this brief after mappings and exclusions.",
            )
        return criteria
