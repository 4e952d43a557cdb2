"""
Modality compliance evaluation.

Cross-references brief requirements against detected submission evidence.
A requirement row fails when any modality it requires was not found; the
number of failing rows feeds the confidence policy.
"""

from assessor.models import (
    ComplianceReport,
    ComplianceRow,
    EvidenceSignals,
    ModalityGap,
    ModalityRequirement,
)

MAX_MISSING_SUMMARY = 12


def found_modalities(signals: EvidenceSignals) -> dict[str, bool]:
    """Collapse raw evidence signals into per-modality found flags."""
    return {
        "table": signals.has_table_words or signals.data_row_like_count >= 2,
        "bar": signals.has_bar_chart_words,
        "pie": signals.has_pie_chart_words,
        "graph": signals.has_figure_words,
        "image": signals.has_image_words or signals.has_figure_words,
        "equation": (
            signals.has_equation_marker
            or signals.has_equation_token_words
            or signals.equation_like_line_count > 0
        ),
        "percentage": signals.percentage_count > 0,
    }


def _chart_found(chart: str, found: dict[str, bool]) -> bool:
    if chart == "bar":
        return found["bar"]
    if chart == "pie":
        return found["pie"]
    return found["graph"]


def evaluate_compliance(
    requirements: list[ModalityRequirement], signals: EvidenceSignals
) -> ComplianceReport:
    """
    Evaluate which requirement rows lack evidence.

    Args:
        requirements: Rows from the modality requirement extractor.
        signals: Output of the submission evidence detector.

    Returns:
        ComplianceReport with per-row results and a capped missing summary.
    """
    found = found_modalities(signals)
    rows: list[ComplianceRow] = []

    for req in requirements:
        charts = [c.lower() for c in req.charts]
        chart_ok = all(_chart_found(c, found) for c in charts)
        table_ok = not req.table or found["table"]
        equation_ok = not req.equation or found["equation"]
        image_ok = not req.image or found["image"]
        percentage_ok = not req.percentage or found["percentage"]

        rows.append(
            ComplianceRow(
                requirement=req,
                ok=chart_ok and table_ok and equation_ok and image_ok and percentage_ok,
                missing=ModalityGap(
                    task=req.task,
                    section=req.section,
                    chart=bool(charts) and not chart_ok,
                    table=req.table and not table_ok,
                    equation=req.equation and not equation_ok,
                    image=req.image and not image_ok,
                    percentage=req.percentage and not percentage_ok,
                ),
            )
        )

    failed = [row for row in rows if not row.ok]
    return ComplianceReport(
        found=found,
        rows=tuple(rows),
        missing_count=len(failed),
        missing_summary=tuple(row.missing for row in failed[:MAX_MISSING_SUMMARY]),
    )
