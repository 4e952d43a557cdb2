"""
Prompt builder for LLM grading.

Assembles one bounded-length grading instruction plus the strict JSON
schema the model must answer with. The prompt is hashed so every
assessment records exactly what the model was asked.
"""

import json
from collections.abc import Sequence
from typing import Any, NamedTuple

from assessor.config import GradingConfig
from assessor.evidence.requirements import normalize_text
from assessor.models import (
    AssessmentAudit,
    AssessmentCriterion,
    CoverMetadata,
    EvidenceSignals,
    GradeWord,
    PageSample,
)
from assessor.references.rubric import RubricGuidance

MAX_PROMPT_CRITERIA = 120

NO_PAGE_SAMPLES = "(No page samples available.)"
NO_BODY_TEXT = "(No substantial extracted body text available. Use evidence-based caution.)"
COVER_ONLY_BODY_TEXT = (
    "(Cover-only extraction mode: body text is unavailable or unreliable. "
    "Use the page samples above as the only evidence source.)"
)

SUBSTRATE_BODY_PLUS_PAGES = "BODY_PLUS_PAGE_SAMPLES"
SUBSTRATE_PAGES_ONLY = "PAGE_SAMPLES_ONLY"

GRADING_RULES = (
    "- Include one criterionChecks item for every criteria code provided.",
    "- code must exactly match the provided criteria code.",
    "- ACHIEVED is only valid with page-linked evidence.",
    "- evidence must include at least one item with numeric page and either quote or visualDescription.",
    "- decision must be one of: ACHIEVED, NOT_ACHIEVED, UNCLEAR.",
    "- Do not mark a criterion as ACHIEVED if your rationale indicates missing/insufficient/unclear evidence.",
    "- If the brief requires tables/charts/images/equations, explicitly evaluate whether the submission "
    "includes them with usable evidence and reference that in evidence/comments.",
    "- Missing required charts/images/equations/tables must reduce criterion attainment "
    "and overall grade confidence.",
    "- Write student-facing feedback in warm, human, professional UK English. "
    "Prefer direct second-person phrasing ('you' / 'your').",
    "- Keep feedbackSummary concise (2-4 sentences) and do not repeat the grade label "
    "if already stated elsewhere.",
    "- feedbackBullets should be distinct points (no duplicates or rephrasings of the same point).",
    "- Include page references in feedbackBullets where possible (e.g. 'pages 2-4') "
    "so evidence is easy to verify.",
)

TONE_DIRECTIVES = {
    "supportive": "Lead with strengths and frame gaps as clear next steps.",
    "professional": "Be balanced, specific and neutral.",
    "strict": "Be direct and concise about every gap against the criteria.",
}

STRICTNESS_DIRECTIVES = {
    "lenient": "Where evidence is partial but credible, prefer UNCLEAR over NOT_ACHIEVED.",
    "balanced": "Require clear evidence for ACHIEVED; use UNCLEAR only for genuinely ambiguous evidence.",
    "strict": "Require explicit, complete evidence for ACHIEVED; treat partial evidence as NOT_ACHIEVED.",
}


class GradingPrompt(NamedTuple):
    """A built prompt and its audit metadata."""

    text: str
    prompt_hash: str
    evidence_substrate: str
    sampled_pages: tuple[PageSample, ...]
    max_output_tokens: int


class PromptBuilder:
    """
    Builds grading prompts from locked references and extraction output.

    All methods are static and deterministic: identical inputs produce
    an identical prompt and hash.
    """

    @staticmethod
    def select_page_samples(
        pages: Sequence[PageSample], max_pages: int, max_chars_per_page: int
    ) -> list[PageSample]:
        """
        Pick the first N non-empty pages and truncate each to its budget.

        Args:
            pages: Extracted pages, in any order.
            max_pages: Maximum number of pages to keep.
            max_chars_per_page: Per-page character budget.

        Returns:
            Truncated page samples in page order.
        """
        ordered = sorted(pages, key=lambda p: p.page_number)
        selected: list[PageSample] = []
        for page in ordered:
            text = normalize_text(page.text)[: max(1, max_chars_per_page)]
            if page.page_number > 0 and text:
                selected.append(PageSample(page_number=page.page_number, text=text))
            if len(selected) >= max(1, max_pages):
                break
        return selected

    @staticmethod
    def format_page_context(samples: Sequence[PageSample]) -> str:
        """Render page samples as ``Page <n>`` blocks separated by ``---``."""
        if not samples:
            return NO_PAGE_SAMPLES
        return "\n\n---\n\n".join(f"Page {p.page_number}\n{p.text}" for p in samples)

    @staticmethod
    def build_body_text(extracted_text: str | None, char_limit: int, cover_only: bool) -> str:
        """
        Select the body-text section of the prompt.

        Args:
            extracted_text: Full extracted submission text.
            char_limit: Character budget for the body.
            cover_only: Whether extraction ran in cover-only mode.

        Returns:
            Truncated body text or a fixed placeholder.
        """
        if cover_only:
            return COVER_ONLY_BODY_TEXT
        body = (extracted_text or "")[: max(1, char_limit)]
        return body if body.strip() else NO_BODY_TEXT

    @staticmethod
    def evidence_corpus(
        extracted_text: str | None, samples: Sequence[PageSample], cover_only: bool
    ) -> str:
        """Text the evidence detector scans: page samples, plus body unless cover-only."""
        page_text = "\n\n".join(p.text for p in samples if p.text)
        parts = [page_text] if cover_only else [extracted_text or "", page_text]
        return "\n\n".join(part for part in parts if part)

    @staticmethod
    def max_output_tokens(configured: int, criteria_count: int) -> int:
        """Raise the output budget so every criterion fits in the response."""
        criteria_driven = max(900, min(3800, 500 + criteria_count * 140))
        return max(configured, criteria_driven)

    @staticmethod
    def build_grading_prompt(
        *,
        config: GradingConfig,
        criteria: Sequence[AssessmentCriterion],
        unit_code: str,
        unit_title: str,
        assignment_code: str,
        student_first_name: str | None,
        rubric: RubricGuidance,
        requirements_summary: str,
        evidence: EvidenceSignals,
        cover_metadata: CoverMetadata | None,
        pages: Sequence[PageSample],
        extracted_text: str | None,
        cover_only: bool,
    ) -> GradingPrompt:
        """
        Build the complete grading prompt.

        Args:
            config: Resolved grading configuration.
            criteria: Active criteria for this run.
            unit_code: Unit code of the locked specification.
            unit_title: Unit title of the locked specification.
            assignment_code: Assignment code of the locked brief.
            student_first_name: First name used to address feedback.
            rubric: Rubric guidance for this run.
            requirements_summary: Human-readable modality requirement summary.
            evidence: Detected submission evidence signals.
            cover_metadata: Cover-sheet metadata, if any.
            pages: Extracted pages of the latest run.
            extracted_text: Extracted submission body text.
            cover_only: Whether extraction ran in cover-only mode.

        Returns:
            GradingPrompt with text, SHA-256 hash and sampling metadata.
        """
        samples = PromptBuilder.select_page_samples(
            pages, config.page_sample_count, config.page_sample_char_limit
        )
        page_context = PromptBuilder.format_page_context(samples)
        body_text = PromptBuilder.build_body_text(
            extracted_text, config.input_char_limit, cover_only
        )
        tone = config.tone.value
        strictness = config.strictness.value

        lines: list[str] = [
            "You are an engineering assignment assessor.",
            f"Tone: {tone}. Strictness: {strictness}.",
            TONE_DIRECTIVES[tone],
            STRICTNESS_DIRECTIVES[strictness],
            f"Grade using only these grades: {', '.join(g.value for g in GradeWord)}.",
            "Return STRICT JSON with keys:",
            "{ overallGradeWord, resubmissionRequired, feedbackSummary, feedbackBullets[], "
            "criterionChecks:[{code, decision, rationale, confidence, "
            "evidence:[{page, quote?, visualDescription?}]}], confidence }",
            "Rules:",
            *GRADING_RULES,
            "",
            "Assignment context:",
            f"Unit: {unit_code} {unit_title}".rstrip(),
            f"Assignment code: {assignment_code}",
            f"Feedback addressee first name: {student_first_name or 'Unknown (infer if possible)'}",
            rubric.hint,
            rubric.prompt_context,
            "",
            "Detected modality requirements from assignment brief (chart/table/image/equation):",
            requirements_summary,
            "",
            "Submission modality evidence hints (heuristic):",
            json.dumps(evidence.to_json_dict(), indent=2),
            "",
            "Submission cover metadata (audit extraction):",
            json.dumps(cover_metadata.to_json_dict() if cover_metadata else None, indent=2),
            "",
            "Criteria:",
            json.dumps(
                [
                    {
                        "code": c.code,
                        "band": c.grade_band.value,
                        "lo": c.lo_code,
                        "description": c.description,
                    }
                    for c in list(criteria)[:MAX_PROMPT_CRITERIA]
                ],
                indent=2,
            ),
            "",
            "Student submission page samples (supporting evidence):",
            page_context,
            "",
            "Submission extracted body text (primary context):",
            body_text,
        ]
        text = "\n".join(lines)

        return GradingPrompt(
            text=text,
            prompt_hash=AssessmentAudit.compute_hash(text),
            evidence_substrate=SUBSTRATE_PAGES_ONLY if cover_only else SUBSTRATE_BODY_PLUS_PAGES,
            sampled_pages=tuple(samples),
            max_output_tokens=PromptBuilder.max_output_tokens(
                config.max_output_tokens, len(criteria)
            ),
        )

    @staticmethod
    def response_schema() -> dict[str, Any]:
        """
        JSON schema for the strict structured-output contract.

        Returns:
            ``json_schema`` response format payload named ``grading_result``.
        """
        evidence_item = {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "page": {"type": "number"},
                "quote": {"type": ["string", "null"]},
                "visualDescription": {"type": ["string", "null"]},
            },
            "required": ["page", "quote", "visualDescription"],
        }
        criterion_check = {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "code": {"type": "string"},
                "decision": {"type": "string"},
                "rationale": {"type": "string"},
                "confidence": {"type": "number"},
                "evidence": {"type": "array", "items": evidence_item},
            },
            "required": ["code", "decision", "rationale", "confidence", "evidence"],
        }
        return {
            "name": "grading_result",
            "strict": True,
            "schema": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "overallGradeWord": {"type": "string"},
                    "resubmissionRequired": {"type": "boolean"},
                    "feedbackSummary": {"type": "string"},
                    "feedbackBullets": {"type": "array", "items": {"type": "string"}},
                    "criterionChecks": {"type": "array", "items": criterion_check},
                    "confidence": {"type": "number"},
                },
                "required": [
                    "overallGradeWord",
                    "resubmissionRequired",
                    "feedbackSummary",
                    "feedbackBullets",
                    "criterionChecks",
                    "confidence",
                ],
            },
        }
