"""
Unit tests for reference validation, criteria resolution and rubric guidance.
"""

import pytest

from assessor.errors import PreconditionError
from assessor.models import (
    AssessmentCriterion,
    AssignmentBrief,
    CriteriaMapping,
    GradeBand,
    LearningOutcome,
    Unit,
)
from assessor.references import CriteriaResolver, ReferenceValidator, RubricHintParser
from assessor.references.rubric import NO_RUBRIC_HINT, RUBRIC_DISABLED_HINT, clip_text


class TestReferenceValidator:
    """Tests for ReferenceValidator."""

    def test_locked_references_valid(
        self, sample_brief: AssignmentBrief, sample_unit: Unit
    ) -> None:
        """Test locked brief and unit pass."""
        is_valid, issues = ReferenceValidator().validate(sample_brief, sample_unit)

        assert is_valid is True
        assert issues == []
        assert ReferenceValidator().validate_or_raise(sample_brief, sample_unit) == (
            sample_brief,
            sample_unit,
        )

    def test_missing_brief(self, sample_unit: Unit) -> None:
        """Test an unbound submission is reported."""
        _, issues = ReferenceValidator().validate(None, sample_unit)

        assert [i.code for i in issues] == ["GRADE_ASSIGNMENT_BINDING_MISSING"]

    def test_both_unlocked(self, sample_brief: AssignmentBrief, sample_unit: Unit) -> None:
        """Test brief and unit locks are both checked, brief first."""
        brief = sample_brief.model_copy(update={"locked_at": None})
        unit = sample_unit.model_copy(update={"locked_at": None})

        _, issues = ReferenceValidator().validate(brief, unit)

        assert [i.code for i in issues] == ["GRADE_BRIEF_NOT_LOCKED", "GRADE_SPEC_NOT_LOCKED"]
        with pytest.raises(PreconditionError) as exc_info:
            ReferenceValidator().validate_or_raise(brief, unit)
        assert exc_info.value.code == "GRADE_BRIEF_NOT_LOCKED"
        assert exc_info.value.status_code == 422

    def test_missing_unit(self, sample_brief: AssignmentBrief) -> None:
        """Test a brief without its unit counts as an unlocked specification."""
        _, issues = ReferenceValidator().validate(sample_brief, None)

        assert issues[0].code == "GRADE_SPEC_NOT_LOCKED"
        assert "unit-1" in issues[0].message

    def test_bad_criterion_code(self, sample_brief: AssignmentBrief, sample_unit: Unit) -> None:
        """Test criterion codes must have the P/M/D shape."""
        unit = sample_unit.model_copy(
            update={
                "learning_outcomes": (
                    LearningOutcome(
                        lo_code="LO1",
                        criteria=(AssessmentCriterion(code="X1", grade_band=GradeBand.PASS),),
                    ),
                )
            }
        )

        _, issues = ReferenceValidator().validate(sample_brief, unit)

        assert [i.code for i in issues] == ["GRADE_INVALID_CRITERION_CODE"]


class TestCriteriaResolver:
    """Tests for CriteriaResolver."""

    def test_all_unit_criteria_by_default(
        self, sample_brief: AssignmentBrief, sample_unit: Unit
    ) -> None:
        """Test the unit's criteria apply when the brief maps none."""
        criteria = CriteriaResolver().resolve(sample_brief, sample_unit)

        assert [c.code for c in criteria] == ["P1", "P2", "M1", "D1"]
        assert all(c.lo_code == "LO1" for c in criteria)

    def test_mappings_override(self, sample_brief: AssignmentBrief, sample_unit: Unit) -> None:
        """Test explicit mappings select a subset, ignoring unknown codes."""
        brief = sample_brief.model_copy(
            update={
                "criteria_maps": (
                    CriteriaMapping(criterion_code="m1"),
                    CriteriaMapping(criterion_code="P1"),
                    CriteriaMapping(criterion_code="P9"),
                )
            }
        )

        criteria = CriteriaResolver().resolve(brief, sample_unit)

        assert [c.code for c in criteria] == ["P1", "M1"]

    def test_exclusions(self, sample_brief: AssignmentBrief, sample_unit: Unit) -> None:
        """Test excluded codes are removed case-insensitively."""
        brief = sample_brief.model_copy(update={"excluded_criteria_codes": ("d1", " P2 ")})

        criteria = CriteriaResolver().resolve(brief, sample_unit)

        assert [c.code for c in criteria] == ["P1", "M1"]

    def test_ordering_by_band_then_number(self, sample_brief: AssignmentBrief) -> None:
        """Test criteria sort PASS, MERIT, DISTINCTION then numerically."""
        unit = Unit(
            id="unit-2",
            learning_outcomes=(
                LearningOutcome(
                    criteria=(
                        AssessmentCriterion(code="D1", grade_band=GradeBand.DISTINCTION),
                        AssessmentCriterion(code="P10", grade_band=GradeBand.PASS),
                        AssessmentCriterion(code="M2", grade_band=GradeBand.MERIT),
                        AssessmentCriterion(code="P2", grade_band=GradeBand.PASS),
                    )
                ),
            ),
        )

        criteria = CriteriaResolver().resolve(sample_brief, unit)

        assert [c.code for c in criteria] == ["P2", "P10", "M2", "D1"]

    def test_empty_set_refused(self, sample_brief: AssignmentBrief, sample_unit: Unit) -> None:
        """Test nothing left to grade raises."""
        brief = sample_brief.model_copy(
            update={"excluded_criteria_codes": ("P1", "P2", "M1", "D1")}
        )

        with pytest.raises(PreconditionError) as exc_info:
            CriteriaResolver().resolve_or_raise(brief, sample_unit)

        assert exc_info.value.code == "GRADE_NO_ACTIVE_CRITERIA"


RUBRIC = """\
General support notes for the brief.
P1 - Describe the schedule
Include weekly and monthly activities.
Page 3
M1: Evaluate costs using real figures.
D1
Critically compare at least two strategies.
"""


class TestRubricHintParser:
    """Tests for RubricHintParser."""

    def test_parse_buckets(self) -> None:
        """Test lines are grouped under code headers and noise is dropped."""
        hints = RubricHintParser().parse(RUBRIC)

        assert hints == {
            "P1": "Describe the schedule Include weekly and monthly activities.",
            "M1": "Evaluate costs using real figures.",
            "D1": "Critically compare at least two strategies.",
        }

    def test_guidance_with_hints(self) -> None:
        """Test only in-scope codes are injected."""
        guidance = RubricHintParser().build_guidance(RUBRIC, ["P1", "M1"])

        assert guidance.enabled is True
        assert guidance.hints_count == 2
        assert "D1" not in guidance.hints_by_code
        assert "- P1: Describe the schedule" in guidance.prompt_context
        assert guidance.hint == "Brief support guidance loaded (2 criterion hints)."

    def test_guidance_excerpt_without_matching_codes(self) -> None:
        """Test unmatched rubric text falls back to an excerpt."""
        guidance = RubricHintParser().build_guidance("Show clear working throughout.", ["P1"])

        assert guidance.hints_count == 0
        assert "Support guidance excerpt: Show clear working throughout." in guidance.prompt_context

    def test_disabled_and_missing(self) -> None:
        """Test disabled rubric use and briefs without rubric text."""
        parser = RubricHintParser()

        assert parser.build_guidance(RUBRIC, ["P1"], enabled=False).hint == RUBRIC_DISABLED_HINT
        assert parser.build_guidance(None, ["P1"]).hint == NO_RUBRIC_HINT

    def test_clip_text_prefers_sentence_boundary(self) -> None:
        """Test long text is clipped at a sentence end without an ellipsis."""
        text = "First sentence is here. " * 20

        clipped = clip_text(text, 100)

        assert len(clipped) <= 100
        assert clipped.endswith(".")
        assert not clipped.endswith("...")
