"""
Modality requirement extraction.

Reads a locked brief's task tree and works out which task sections ask the
student for tables, percentages, charts, equations or images. Sections with
no such keyword impose no constraint and are dropped.
"""

import re
from collections.abc import Iterable

from assessor.models import BriefTask, ModalityRequirement

TASK_BUCKET = "task"
MAX_SUMMARY_ROWS = 16
NO_REQUIREMENTS_SUMMARY = (
    "No explicit chart/table/image/equation requirements detected from brief tasks."
)

CHART_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("bar", re.compile(r"\bbar\s+(chart|graph)\b", re.IGNORECASE)),
    ("pie", re.compile(r"\bpie\s+(chart|graph)\b", re.IGNORECASE)),
    ("line", re.compile(r"\bline\s+(chart|graph)\b", re.IGNORECASE)),
    ("scatter", re.compile(r"\bscatter\b", re.IGNORECASE)),
    ("histogram", re.compile(r"\bhistogram\b", re.IGNORECASE)),
)
TABLE_PATTERN = re.compile(r"\btable\b", re.IGNORECASE)
PERCENTAGE_PATTERN = re.compile(r"\bpercentage\b|%", re.IGNORECASE)
EQUATION_MARKER_PATTERN = re.compile(r"\[\[eq:[^\]]+\]\]", re.IGNORECASE)
EQUATION_WORD_PATTERN = re.compile(
    r"\b(equation|formula|express(ed|ion)|using\s+.*equation|solve\s+for|derive)\b",
    re.IGNORECASE,
)
IMAGE_MARKER_PATTERN = re.compile(r"\[\[img:[^\]]+\]\]", re.IGNORECASE)
IMAGE_WORD_PATTERN = re.compile(
    r"\b(image|diagram|figure|graph\s+below|shown\s+below|circuit|screenshot)\b",
    re.IGNORECASE,
)

_LETTER_KEY = re.compile(r"^([a-z])(?:\.|$)")
_ROMAN_KEY = re.compile(r"^(?:i{1,3}|iv|vi{0,3}|ix|x)[.)]?$")


def normalize_text(value: str | None) -> str:
    """Collapse horizontal whitespace and blank-line runs, keeping line breaks."""
    text = (value or "").replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _section_letter(key: str, current: str) -> str | None:
    """
    Resolve the letter section a part key opens, if any.

    Roman numerals (``i``, ``ii``, ``iv``...) continue the current letter
    section. A single ``i``, ``v`` or ``x`` only counts as a letter when it
    directly follows the previous letter (``h`` then ``i``) or when no letter
    section is open yet.
    """
    if current and _ROMAN_KEY.match(key):
        single = key.rstrip(".)")
        follows_previous = len(single) == 1 and ord(single) == ord(current) + 1
        if not follows_previous:
            return None
    match = _LETTER_KEY.match(key)
    return match.group(1) if match else None


class ModalityRequirementExtractor:
    """
    Derives modality requirements from a brief task tree.

    The extractor is pure: the same tasks always yield the same
    requirement rows in the same order.
    """

    def extract(self, tasks: Iterable[BriefTask]) -> list[ModalityRequirement]:
        """
        Extract requirement rows from brief tasks.

        Args:
            tasks: Structured tasks of a locked brief.

        Returns:
            One requirement per (task, section) that mentions at least one modality.
        """
        requirements: list[ModalityRequirement] = []
        for task in tasks:
            label = self._task_label(task)
            for section, body in self._group_sections(task).items():
                requirement = self.detect(label, section, body)
                if requirement is not None:
                    requirements.append(requirement)
        return requirements

    def detect(self, task: str, section: str, body: str) -> ModalityRequirement | None:
        """
        Apply the modality detectors to one section's text.

        Args:
            task: Task label.
            section: Section letter, or ``"task"`` for ungrouped text.
            body: Concatenated section text.

        Returns:
            A requirement row, or None when no modality is mentioned.
        """
        text = normalize_text(body)
        charts = tuple(name for name, pattern in CHART_PATTERNS if pattern.search(text))
        table = bool(TABLE_PATTERN.search(text))
        percentage = bool(PERCENTAGE_PATTERN.search(text))
        equation = bool(EQUATION_MARKER_PATTERN.search(text) or EQUATION_WORD_PATTERN.search(text))
        image = bool(IMAGE_MARKER_PATTERN.search(text) or IMAGE_WORD_PATTERN.search(text))

        if not (charts or table or percentage or equation or image):
            return None

        return ModalityRequirement(
            task=task,
            section=section,
            charts=charts,
            table=table,
            percentage=percentage,
            equation=equation,
            image=image,
        )

    @staticmethod
    def summarize(requirements: list[ModalityRequirement]) -> str:
        """
        Render requirements as a bullet list for the grading prompt.

        Args:
            requirements: Extracted requirement rows.

        Returns:
            Human-readable summary capped at 16 rows.
        """
        if not requirements:
            return NO_REQUIREMENTS_SUMMARY

        lines: list[str] = []
        for req in requirements[:MAX_SUMMARY_ROWS]:
            items: list[str] = []
            if req.table:
                items.append("table")
            if req.percentage:
                items.append("percentages")
            if req.charts:
                items.append(f"{'+'.join(req.charts)} chart")
            if req.image:
                items.append("image/diagram evidence")
            if req.equation:
                items.append("equation/formula evidence")
            section = "" if req.section == TASK_BUCKET else f" part {req.section}"
            lines.append(f"- {req.task}{section}: {', '.join(items)}")
        return "\n".join(lines)

    @staticmethod
    def _task_label(task: BriefTask) -> str:
        if task.label and task.label.strip():
            return task.label.strip()
        if task.n:
            return f"Task {task.n}"
        return "Task"

    @staticmethod
    def _group_sections(task: BriefTask) -> dict[str, str]:
        """Group task parts into letter sections, preserving first-seen order."""
        sections: dict[str, list[str]] = {}
        current = ""
        for part in task.parts:
            key = part.key.strip().lower()
            text = normalize_text(part.text)
            if not key or not text:
                continue
            letter = _section_letter(key, current)
            if letter:
                current = letter
            bucket = letter or current or TASK_BUCKET
            sections.setdefault(bucket, []).append(text)

        if not sections:
            body = normalize_text(task.text)
            if body:
                sections[TASK_BUCKET] = [body]

        return {section: "\n".join(chunks) for section, chunks in sections.items()}
