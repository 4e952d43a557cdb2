"""
Student feedback rendering.

Turns a validated grading decision into the student-facing feedback text.
This module is presentation only: it never changes a grade or decision.
"""

import re
from collections.abc import Sequence
from datetime import date, datetime

from assessor.config import DEFAULT_FEEDBACK_TEMPLATE

HONORIFICS = frozenset({"mr", "mrs", "ms", "miss", "dr", "prof", "sir", "madam"})

# Lines matching any of these describe the grading process, not the work.
SYSTEM_FEEDBACK_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bautomated review\b",
        r"\bcover-only extraction mode\b",
        r"\bextraction mode\b",
        r"\bschema validation\b",
        r"\brequired schema\b",
        r"\bmanual review\b",
        r"\bfallback\b",
        r"\bconfidence capped\b",
        r"\bmodel output\b",
        r"\bguard adjusted\b",
        r"\bdecision guard applied\b",
        r"\brationale indicates evidence gaps\b",
    )
)

_PROCESS_WORDS = re.compile(
    r"\b(automated review|schema validation|manual review|required schema|fallback|"
    r"guard adjusted|decision guard applied|rationale indicates evidence gaps)\b",
    re.IGNORECASE,
)

_PLACEHOLDERS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\btype\s+(?:your\s+)?text\s+here\b",
        r"\benter\s+(?:your\s+)?text\s+here\b",
        r"\badd\s+(?:your\s+)?text\s+here\b",
        r"\binsert\s+text\b",
        r"\bclick\s+to\s+add\s+text\b",
    )
)

_TEMPLATE_KEYS = re.compile(
    r"\{(studentFirstName|feedbackSummary|feedbackBullets|overallGrade|assessorName|date)\}"
)


def _squash(value: object) -> str:
    return re.sub(r"\s+", " ", str(value or "")).strip()


def _clean_token(token: str) -> str:
    return re.sub(r"^[^A-Za-z]+|[^A-Za-z'-]+$", "", token).strip()


def _first_name(raw: str | None) -> str | None:
    text = re.sub(r"^student\s*name\s*[:\-]\s*", "", _squash(raw), flags=re.IGNORECASE)
    for part in (_clean_token(p) for p in text.split(" ")):
        if not part or part.lower() in HONORIFICS:
            continue
        if re.search(r"[A-Za-z]", part):
            return part
    return None


def extract_first_name(
    student_full_name: str | None = None, cover_student_name: str | None = None
) -> str | None:
    """
    First name used to address the student.

    The student record wins over the cover sheet. Honorifics and a leading
    ``Student name:`` label are skipped.
    """
    return _first_name(student_full_name) or _first_name(cover_student_name)


def personalize_summary(summary: str, first_name: str | None) -> str:
    """Prefix the summary with the student's first name unless it already starts with it."""
    clean_summary = _squash(summary)
    name = _squash(first_name)
    if not name:
        return clean_summary
    if not clean_summary:
        return name
    if re.match(rf"^{re.escape(name)}[,\s]", clean_summary, re.IGNORECASE):
        return clean_summary
    return f"{name}, {clean_summary}"


def _strip_placeholders(value: str) -> str:
    text = value
    for pattern in _PLACEHOLDERS:
        text = pattern.sub("", text)
    text = re.sub(r"\s{2,}", " ", text)
    text = re.sub(r"\s+([,.;:!?])", r"\1", text)
    return text.strip()


def is_process_line(line: str) -> bool:
    """Whether a line talks about the grading process rather than the work."""
    text = line.strip()
    if not text:
        return True
    return any(p.search(text) for p in SYSTEM_FEEDBACK_PATTERNS)


def sanitize_line(value: object) -> str:
    """Remove template placeholders and process wording from one line."""
    text = re.sub(r"\s+", " ", _strip_placeholders(str(value or "")))
    text = _PROCESS_WORDS.sub("", text)
    return re.sub(r"\s{2,}", " ", text).strip()


def sanitize_bullets(bullets: Sequence[str], max_bullets: int) -> list[str]:
    """
    Student-safe feedback bullets.

    Args:
        bullets: Raw bullets from the grading decision.
        max_bullets: Maximum bullets kept (at least one).

    Returns:
        Cleaned bullets with process/system lines dropped.
    """
    out: list[str] = []
    limit = max(1, max_bullets)
    for item in bullets:
        line = str(item or "").strip()
        if not line or is_process_line(line):
            continue
        cleaned = sanitize_line(line)
        if not cleaned:
            continue
        out.append(cleaned)
        if len(out) >= limit:
            break
    return out


def format_uk_date(value: date | datetime) -> str:
    """Format a date as dd/mm/yyyy."""
    return value.strftime("%d/%m/%Y")


def render_feedback(
    template: str,
    *,
    first_name: str | None,
    summary: str,
    bullets: Sequence[str],
    overall_grade: str,
    assessor_name: str,
    marked_date: date | datetime,
) -> str:
    """
    Render the feedback template.

    Unknown placeholders are left untouched. Empty values fall back to
    neutral defaults so the rendered text never shows a bare placeholder.
    """
    body = (template or "").replace("\r\n", "\n").strip() or DEFAULT_FEEDBACK_TEMPLATE
    bullet_lines = [str(b).strip() for b in bullets if str(b or "").strip()]
    values = {
        "studentFirstName": (first_name or "").strip() or "Student",
        "feedbackSummary": summary.strip() or "Feedback generated.",
        "feedbackBullets": (
            "\n".join(f"- {b}" for b in bullet_lines) if bullet_lines else "- Feedback generated."
        ),
        "overallGrade": overall_grade.strip().upper() or "REFER",
        "assessorName": assessor_name.strip() or "Assessor",
        "date": format_uk_date(marked_date),
    }
    return _TEMPLATE_KEYS.sub(lambda m: values[m.group(1)], body)
