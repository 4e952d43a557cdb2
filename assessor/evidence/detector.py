"""
Submission evidence detection.

Scans extracted submission text for heuristic signs that tables, charts,
equations, percentages or images are actually present. Counts saturate at
fixed caps so pathological inputs cannot inflate the evidence picture.
"""

import re

from assessor.evidence.requirements import normalize_text
from assessor.models import EvidenceSignals

EQUATION_LINE_CAP = 120
PERCENTAGE_CAP = 200
DATA_ROW_CAP = 80

TABLE_WORDS = re.compile(r"\btable\b|\btabulated\b")
BAR_CHART_WORDS = re.compile(r"\bbar\s+(chart|graph)\b")
PIE_CHART_WORDS = re.compile(r"\bpie\s+(chart|graph)\b")
FIGURE_WORDS = re.compile(r"\bfigure\b|\bgraph\b|\bchart\b")
IMAGE_WORDS = re.compile(r"\b(image|diagram|figure|circuit|screenshot)\b")
EQUATION_TOKEN_WORDS = re.compile(r"\b(equation|formula)\b")
EQUATION_MARKER = re.compile(r"\[\[eq:[^\]]+\]\]", re.IGNORECASE)
EQUATION_LINE = re.compile(r"(?:^|\n)\s*[a-z][a-z0-9_]{0,10}\s*=\s*[^,\n]{2,80}")
PERCENTAGE_TOKEN = re.compile(r"\b\d+(?:\.\d+)?\s*%")
DATA_ROW = re.compile(r"\b[a-z][a-z\s]{2,30}\s+\d{1,4}(?:\.\d+)?%?\b")


def detect_evidence(text: str | None) -> EvidenceSignals:
    """
    Detect modality evidence in submission text.

    Args:
        text: Body text and/or sampled page text.

    Returns:
        Boolean and capped count signals.
    """
    src = normalize_text(text).lower()
    return EvidenceSignals(
        has_table_words=bool(TABLE_WORDS.search(src)),
        has_bar_chart_words=bool(BAR_CHART_WORDS.search(src)),
        has_pie_chart_words=bool(PIE_CHART_WORDS.search(src)),
        has_figure_words=bool(FIGURE_WORDS.search(src)),
        has_image_words=bool(IMAGE_WORDS.search(src)),
        has_equation_token_words=bool(EQUATION_TOKEN_WORDS.search(src)),
        has_equation_marker=bool(EQUATION_MARKER.search(src)),
        equation_like_line_count=min(EQUATION_LINE_CAP, len(EQUATION_LINE.findall(src))),
        percentage_count=min(PERCENTAGE_CAP, len(PERCENTAGE_TOKEN.findall(src))),
        data_row_like_count=min(DATA_ROW_CAP, len(DATA_ROW.findall(src))),
    )
