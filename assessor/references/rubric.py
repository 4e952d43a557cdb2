"""
Rubric guidance parsing.

Turns free-text rubric/support notes attached to a brief into short
per-criterion hints for the grading prompt. Lines starting with a
criterion code (``P1``, ``M2 -``, ``D1:``) open a bucket for that code;
following lines are appended until the next code header.
"""

import re
from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict, Field

from assessor.evidence.requirements import normalize_text

HINT_CHAR_LIMIT = 300
EXCERPT_CHAR_LIMIT = 1200
MAX_CRITERION_HINTS = 40

RUBRIC_DISABLED_HINT = "Rubric usage disabled for this run."
NO_RUBRIC_HINT = "No rubric attachment used."

HEADER_PATTERN = re.compile(r"^([PMD]\d{1,2})\b(?:[\s:.\-–—]+(.*))?$", re.IGNORECASE)
STRAY_CODE_PATTERN = re.compile(r"^[pmd]\d{1,2}\b", re.IGNORECASE)
NOISE_PATTERN = re.compile(r"^(?:page|task)\b", re.IGNORECASE)
CODE_SHAPE = re.compile(r"^[PMD]\d{1,2}$")


class RubricGuidance(BaseModel):
    """Rubric context injected into the grading prompt."""

    model_config = ConfigDict(frozen=True)

    enabled: bool
    hint: str
    prompt_context: str
    hints_by_code: dict[str, str] = Field(default_factory=dict)

    @property
    def hints_count(self) -> int:
        return len(self.hints_by_code)


def clip_text(text: str, max_len: int) -> str:
    """Clip text without an ellipsis, preferring a sentence or word boundary."""
    text = normalize_text(text)
    if len(text) <= max_len:
        return text
    clipped = text[: max(80, max_len)]
    sentence_stop = max(clipped.rfind(". "), clipped.rfind("! "), clipped.rfind("? "))
    if sentence_stop > int(max_len * 0.55):
        return clipped[: sentence_stop + 1].strip()
    clipped = re.sub(r"\s+\S*$", "", clipped)
    return re.sub(r"[,:;(\-\s]+$", "", clipped).strip()


class RubricHintParser:
    """Parses rubric text into per-criterion guidance."""

    def parse(self, rubric_text: str) -> dict[str, str]:
        """
        Bucket rubric lines by criterion code.

        Args:
            rubric_text: Raw rubric or support-notes text.

        Returns:
            Mapping of criterion code to a clipped hint.
        """
        buckets: dict[str, list[str]] = {}
        active_code = ""

        for raw_line in (rubric_text or "").splitlines():
            line = normalize_text(raw_line)
            if not line:
                continue

            header = HEADER_PATTERN.match(line)
            if header:
                active_code = header.group(1).upper()
                bucket = buckets.setdefault(active_code, [])
                remainder = normalize_text(header.group(2) or "")
                if remainder:
                    bucket.append(remainder)
                continue

            if not active_code:
                continue
            if STRAY_CODE_PATTERN.match(line):
                continue
            if NOISE_PATTERN.match(line) and len(line) <= 24:
                continue
            buckets[active_code].append(line)

        hints: dict[str, str] = {}
        for code, rows in buckets.items():
            merged = clip_text(" ".join(rows), HINT_CHAR_LIMIT)
            if merged:
                hints[code] = merged
        return hints

    def build_guidance(
        self,
        rubric_text: str | None,
        criteria_codes: Sequence[str],
        enabled: bool = True,
    ) -> RubricGuidance:
        """
        Build the rubric context for a grading run.

        Args:
            rubric_text: Rubric/support text stored on the brief, if any.
            criteria_codes: Criterion codes in scope for this run.
            enabled: Whether rubric use is enabled for this run.

        Returns:
            RubricGuidance for the prompt and audit trail.
        """
        if not enabled:
            return RubricGuidance(
                enabled=False,
                hint=RUBRIC_DISABLED_HINT,
                prompt_context="Rubric usage disabled by grading settings for this run.",
            )

        text = normalize_text(rubric_text)
        if not text:
            return RubricGuidance(
                enabled=True,
                hint=NO_RUBRIC_HINT,
                prompt_context="No rubric attachment found for this brief.",
            )

        codes = list(dict.fromkeys(c.strip().upper() for c in criteria_codes))
        codes = [c for c in codes if CODE_SHAPE.match(c)]
        parsed = self.parse(text)
        hints = {c: parsed[c] for c in codes if c in parsed}
        hints = dict(list(hints.items())[:MAX_CRITERION_HINTS])

        lines = [
            "Use brief-level supportive guidance across all criteria where relevant, "
            "while keeping decisions evidence-led."
        ]
        if hints:
            lines.append("Support guidance by criterion code:")
            lines.extend(f"- {code}: {hint}" for code, hint in hints.items())
            hint = f"Brief support guidance loaded ({len(hints)} criterion hints)."
        else:
            lines.append(f"Support guidance excerpt: {clip_text(text, EXCERPT_CHAR_LIMIT)}")
            hint = "Brief support guidance loaded."

        return RubricGuidance(
            enabled=True,
            hint=hint,
            prompt_context="\n".join(lines),
            hints_by_code=hints,
        )
