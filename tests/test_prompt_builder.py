"""
Unit tests for grading prompt construction.
"""

from typing import Any

import pytest

from assessor.config import GradingConfig, GradingOverrides, Settings
from assessor.evidence import detect_evidence
from assessor.grading import GradingPrompt, PromptBuilder
from assessor.grading.prompt_builder import (
    COVER_ONLY_BODY_TEXT,
    NO_BODY_TEXT,
    NO_PAGE_SAMPLES,
    SUBSTRATE_PAGES_ONLY,
)
from assessor.models import AssessmentCriterion, ExtractionRun, GradeBand, PageSample, Unit
from assessor.references import RubricHintParser


@pytest.fixture
def config(test_settings: Settings) -> GradingConfig:
    """Resolved configuration with default overrides."""
    return GradingConfig.resolve(test_settings)


def _build(
    config: GradingConfig,
    unit: Unit,
    run: ExtractionRun,
    text: str,
    cover_only: bool = False,
    **overrides: Any,
) -> GradingPrompt:
    kwargs: dict[str, Any] = {
        "config": config,
        "criteria": unit.criteria,
        "unit_code": unit.unit_code,
        "unit_title": unit.title,
        "assignment_code": "A1",
        "student_first_name": "Alex",
        "rubric": RubricHintParser().build_guidance(None, ["P1"]),
        "requirements_summary": "- Task 1 part a: bar chart",
        "evidence": detect_evidence(text),
        "cover_metadata": run.cover_metadata,
        "pages": run.pages,
        "extracted_text": text,
        "cover_only": cover_only,
    }
    kwargs.update(overrides)
    return PromptBuilder.build_grading_prompt(**kwargs)


class TestPageSamples:
    """Tests for page sampling."""

    def test_first_pages_in_order(self) -> None:
        """Test samples are ordered, bounded and truncated."""
        pages = [
            PageSample(page_number=3, text="third"),
            PageSample(page_number=1, text="first page " * 10),
            PageSample(page_number=2, text="second"),
        ]

        samples = PromptBuilder.select_page_samples(pages, max_pages=2, max_chars_per_page=10)

        assert [(s.page_number, s.text) for s in samples] == [(1, "first page"), (2, "second")]

    def test_blank_pages_skipped(self) -> None:
        """Test blank pages produce no sample."""
        samples = PromptBuilder.select_page_samples(
            [PageSample(page_number=1, text="   ")], 4, 100
        )

        assert samples == []
        assert PromptBuilder.format_page_context(samples) == NO_PAGE_SAMPLES

    def test_blank_leading_page_does_not_shrink_sample(self) -> None:
        """Test a blank page is skipped and the next page fills its slot."""
        pages = [PageSample(page_number=1, text=" ")] + [
            PageSample(page_number=n, text=f"page {n}") for n in range(2, 7)
        ]

        samples = PromptBuilder.select_page_samples(pages, max_pages=4, max_chars_per_page=100)

        assert [s.page_number for s in samples] == [2, 3, 4, 5]

    def test_page_context_format(self) -> None:
        """Test page blocks are labelled and separated."""
        context = PromptBuilder.format_page_context(
            [PageSample(page_number=1, text="a"), PageSample(page_number=2, text="b")]
        )

        assert context == "Page 1\na\n\n---\n\nPage 2\nb"


class TestBodyText:
    """Tests for body text and evidence corpus selection."""

    def test_truncated_to_budget(self) -> None:
        """Test body text respects its character budget."""
        assert PromptBuilder.build_body_text("abcdef", 4, False) == "abcd"

    def test_placeholders(self) -> None:
        """Test empty and cover-only bodies use fixed placeholders."""
        assert PromptBuilder.build_body_text("  ", 100, False) == NO_BODY_TEXT
        assert PromptBuilder.build_body_text("real text", 100, True) == COVER_ONLY_BODY_TEXT

    def test_cover_only_corpus_excludes_body(self) -> None:
        """Test the evidence corpus only uses page samples in cover-only mode."""
        samples = [PageSample(page_number=1, text="Table 1 on page one")]

        corpus = PromptBuilder.evidence_corpus("a bar chart in the body", samples, cover_only=True)

        assert corpus == "Table 1 on page one"
        assert "bar chart" in PromptBuilder.evidence_corpus("a bar chart", samples, False)


class TestGradingPrompt:
    """Tests for build_grading_prompt."""

    def test_prompt_contents(
        self,
        config: GradingConfig,
        sample_unit: Unit,
        sample_run: ExtractionRun,
        sample_text: str,
    ) -> None:
        """Test the prompt carries criteria, context, pages and body text."""
        prompt = _build(config, sample_unit, sample_run, sample_text)

        assert prompt.text.startswith("You are an engineering assignment assessor.")
        assert "Tone: professional. Strictness: balanced." in prompt.text
        assert "Unit: 4014 Production Engineering" in prompt.text
        assert "Feedback addressee first name: Alex" in prompt.text
        assert '"code": "D1"' in prompt.text
        assert '"band": "DISTINCTION"' in prompt.text
        assert "- Task 1 part a: bar chart" in prompt.text
        assert "Page 2\n" in prompt.text
        assert prompt.text.endswith(sample_text)
        assert [p.page_number for p in prompt.sampled_pages] == [1, 2, 3]
        assert prompt.evidence_substrate == "BODY_PLUS_PAGE_SAMPLES"

    def test_prompt_is_deterministic(
        self,
        config: GradingConfig,
        sample_unit: Unit,
        sample_run: ExtractionRun,
        sample_text: str,
    ) -> None:
        """Test identical inputs give an identical hash."""
        first = _build(config, sample_unit, sample_run, sample_text)
        second = _build(config, sample_unit, sample_run, sample_text)

        assert first.prompt_hash == second.prompt_hash
        assert len(first.prompt_hash) == 64

    def test_hash_tracks_overrides(
        self,
        test_settings: Settings,
        sample_unit: Unit,
        sample_run: ExtractionRun,
        sample_text: str,
    ) -> None:
        """Test tone and strictness change the prompt."""
        default = GradingConfig.resolve(test_settings)
        strict = GradingConfig.resolve(
            test_settings, GradingOverrides(tone="strict", strictness="strict")
        )

        a = _build(default, sample_unit, sample_run, sample_text)
        b = _build(strict, sample_unit, sample_run, sample_text)

        assert a.prompt_hash != b.prompt_hash
        assert "Tone: strict. Strictness: strict." in b.text

    def test_cover_only_prompt(
        self, config: GradingConfig, sample_unit: Unit, sample_run: ExtractionRun
    ) -> None:
        """Test cover-only mode replaces the body with a placeholder."""
        prompt = _build(config, sample_unit, sample_run, "unreliable text", cover_only=True)

        assert prompt.text.endswith(COVER_ONLY_BODY_TEXT)
        assert "unreliable text" not in prompt.text
        assert prompt.evidence_substrate == SUBSTRATE_PAGES_ONLY

    def test_unknown_first_name(
        self,
        config: GradingConfig,
        sample_unit: Unit,
        sample_run: ExtractionRun,
        sample_text: str,
    ) -> None:
        """Test a missing first name asks the model to infer it."""
        prompt = _build(config, sample_unit, sample_run, sample_text, student_first_name=None)

        assert "Feedback addressee first name: Unknown (infer if possible)" in prompt.text

    def test_criteria_capped(
        self,
        config: GradingConfig,
        sample_unit: Unit,
        sample_run: ExtractionRun,
        sample_text: str,
    ) -> None:
        """Test at most 120 criteria are listed in the prompt."""
        criteria = [
            AssessmentCriterion(code=f"P{i}", grade_band=GradeBand.PASS) for i in range(1, 131)
        ]

        prompt = _build(config, sample_unit, sample_run, sample_text, criteria=criteria)

        assert '"code": "P120"' in prompt.text
        assert '"code": "P121"' not in prompt.text

    @pytest.mark.parametrize(
        "configured,count,expected",
        [(1100, 4, 1100), (1100, 10, 1900), (500, 1, 900), (1100, 40, 3800), (5000, 40, 5000)],
    )
    def test_max_output_tokens(self, configured: int, count: int, expected: int) -> None:
        """Test the output budget scales with the criteria count."""
        assert PromptBuilder.max_output_tokens(configured, count) == expected


class TestResponseSchema:
    """Tests for the structured output schema."""

    def test_schema_is_strict(self) -> None:
        """Test every object forbids extra keys and requires its fields."""
        schema = PromptBuilder.response_schema()
        root = schema["schema"]
        check = root["properties"]["criterionChecks"]["items"]
        evidence = check["properties"]["evidence"]["items"]

        assert schema["strict"] is True
        for node in (root, check, evidence):
            assert node["additionalProperties"] is False
            assert set(node["required"]) == set(node["properties"])
