"""
Unit tests for modality requirement extraction, evidence detection and
compliance evaluation.
"""

from assessor.evidence import (
    ModalityRequirementExtractor,
    detect_evidence,
    evaluate_compliance,
    found_modalities,
    normalize_text,
)
from assessor.evidence.requirements import NO_REQUIREMENTS_SUMMARY
from assessor.models import BriefTask, BriefTaskPart, EvidenceSignals, ModalityRequirement


def _task(n: int, *parts: tuple[str, str], text: str = "") -> BriefTask:
    return BriefTask(
        n=n,
        text=text,
        parts=tuple(BriefTaskPart(key=k, text=t) for k, t in parts),
    )


class TestNormalizeText:
    """Tests for text normalization."""

    def test_collapses_whitespace_keeps_lines(self) -> None:
        """Test spaces collapse but single line breaks survive."""
        assert normalize_text("a  \t b\r\nc") == "a b\nc"

    def test_collapses_blank_line_runs(self) -> None:
        """Test three or more newlines become one blank line."""
        assert normalize_text("a\n\n\n\nb") == "a\n\nb"

    def test_none(self) -> None:
        """Test None normalizes to an empty string."""
        assert normalize_text(None) == ""


class TestModalityRequirementExtractor:
    """Tests for ModalityRequirementExtractor."""

    def test_bar_chart_requirement(self) -> None:
        """Test a bar chart request produces a chart row for its section."""
        tasks = [_task(1, ("a", "Create a bar chart showing the monthly maintenance hours."))]

        rows = ModalityRequirementExtractor().extract(tasks)

        assert len(rows) == 1
        assert rows[0].task == "Task 1"
        assert rows[0].section == "a"
        assert rows[0].charts == ("bar",)
        assert rows[0].table is False

    def test_sections_without_modalities_dropped(self) -> None:
        """Test sections that ask for nothing visual impose no constraint."""
        tasks = [
            _task(
                1,
                ("a", "Describe the maintenance schedule."),
                ("b", "Present the costs in a table with percentage share."),
            )
        ]

        rows = ModalityRequirementExtractor().extract(tasks)

        assert [r.section for r in rows] == ["b"]
        assert rows[0].table is True
        assert rows[0].percentage is True

    def test_roman_numerals_continue_letter_section(self) -> None:
        """Test i/ii parts are grouped under the preceding letter."""
        tasks = [
            _task(
                2,
                ("a", "Explain the process."),
                ("i", "Draw a circuit diagram."),
                ("ii", "Derive the transfer equation."),
                ("b", "Summarise."),
            )
        ]

        rows = ModalityRequirementExtractor().extract(tasks)

        assert len(rows) == 1
        assert rows[0].section == "a"
        assert rows[0].image is True
        assert rows[0].equation is True

    def test_letter_i_after_h_opens_new_section(self) -> None:
        """Test a single ``i`` directly after ``h`` is a letter, not a numeral."""
        tasks = [
            _task(
                3,
                ("h", "Write a conclusion."),
                ("i", "Add a pie chart of the budget."),
            )
        ]

        rows = ModalityRequirementExtractor().extract(tasks)

        assert [(r.section, r.charts) for r in rows] == [("i", ("pie",))]

    def test_task_text_used_without_parts(self) -> None:
        """Test a task without parts is scanned as a single bucket."""
        tasks = [_task(4, text="Use the formula for efficiency and show a line graph.")]

        rows = ModalityRequirementExtractor().extract(tasks)

        assert rows[0].section == "task"
        assert rows[0].charts == ("line",)
        assert rows[0].equation is True

    def test_custom_label_preferred(self) -> None:
        """Test an explicit task label overrides the numbered label."""
        task = BriefTask(n=1, label="Activity 1", text="Include a table of results.")

        rows = ModalityRequirementExtractor().extract([task])

        assert rows[0].task == "Activity 1"

    def test_inline_markers(self) -> None:
        """Test equation and image markers count as requirements."""
        row = ModalityRequirementExtractor().detect("Task 1", "a", "See [[EQ:p1]] and [[IMG:p2]]")

        assert row is not None
        assert row.equation is True
        assert row.image is True

    def test_extraction_is_deterministic(self) -> None:
        """Test the same tasks always give the same rows."""
        tasks = [_task(1, ("a", "Tabulate results in a table."), ("b", "Add a histogram."))]
        extractor = ModalityRequirementExtractor()

        assert extractor.extract(tasks) == extractor.extract(tasks)

    def test_summary(self) -> None:
        """Test the prompt summary lists each requirement."""
        rows = [
            ModalityRequirement(task="Task 1", section="a", charts=("bar",), table=True),
            ModalityRequirement(task="Task 2", section="task", equation=True),
        ]

        summary = ModalityRequirementExtractor.summarize(rows)

        assert summary.splitlines() == [
            "- Task 1 part a: table, bar chart",
            "- Task 2: equation/formula evidence",
        ]

    def test_summary_capped(self) -> None:
        """Test the summary lists at most sixteen rows."""
        rows = [
            ModalityRequirement(task=f"Task {i}", section="task", table=True) for i in range(1, 21)
        ]

        lines = ModalityRequirementExtractor.summarize(rows).splitlines()

        assert len(lines) == 16
        assert lines[-1] == "- Task 16: table"

    def test_summary_empty(self) -> None:
        """Test the summary for a brief with no modality requirements."""
        assert ModalityRequirementExtractor.summarize([]) == NO_REQUIREMENTS_SUMMARY


class TestDetectEvidence:
    """Tests for detect_evidence."""

    def test_empty_text(self) -> None:
        """Test empty text yields no signals."""
        assert detect_evidence("") == EvidenceSignals()

    def test_percent_sign_required(self) -> None:
        """Test only numeric percentages with a percent sign are counted."""
        assert detect_evidence("Losses fell by 33%.").percentage_count == 1
        assert detect_evidence("Losses fell by 33 %.").percentage_count == 1
        assert detect_evidence("Losses fell by 33 percent.").percentage_count == 0

    def test_table_and_figure_words(self) -> None:
        """Test table and figure words are detected case-insensitively."""
        signals = detect_evidence("Table 1 lists the pumps. Figure 2 shows the layout.")

        assert signals.has_table_words is True
        assert signals.has_figure_words is True
        assert signals.has_image_words is True
        assert signals.has_bar_chart_words is False

    def test_chart_words(self) -> None:
        """Test bar and pie chart phrases."""
        signals = detect_evidence("The bar chart and the pie graph compare costs.")

        assert signals.has_bar_chart_words is True
        assert signals.has_pie_chart_words is True

    def test_equation_signals(self) -> None:
        """Test equation markers, words and equation-like lines."""
        signals = detect_evidence("The formula is:\np = m * v\n[[EQ:p3-1]]")

        assert signals.has_equation_token_words is True
        assert signals.has_equation_marker is True
        assert signals.equation_like_line_count == 1

    def test_counts_are_capped(self) -> None:
        """Test percentage counts saturate."""
        signals = detect_evidence("50% " * 300)

        assert signals.percentage_count == 200

    def test_equation_lines_capped(self) -> None:
        """Test equation-like line counts saturate at 120."""
        text = "\n".join(f"x = {i} + 4" for i in range(130))

        assert detect_evidence(text).equation_like_line_count == 120

    def test_data_rows_capped(self) -> None:
        """Test data-like row counts saturate at 80."""
        text = "\n".join(f"item {i}" for i in range(100))

        assert detect_evidence(text).data_row_like_count == 80


class TestCompliance:
    """Tests for evaluate_compliance."""

    def test_missing_chart_counted(self) -> None:
        """Test a required bar chart with no chart evidence fails."""
        req = ModalityRequirement(task="Task 1", section="a", charts=("bar",))

        report = evaluate_compliance([req], detect_evidence("Plain prose only."))

        assert report.missing_count == 1
        assert report.rows[0].ok is False
        assert report.missing_summary[0].chart is True
        assert report.missing_summary[0].table is False

    def test_generic_chart_satisfied_by_figure_words(self) -> None:
        """Test non bar/pie charts accept any figure or graph mention."""
        req = ModalityRequirement(task="Task 1", section="a", charts=("line",))

        report = evaluate_compliance([req], detect_evidence("The graph shows a rising trend."))

        assert report.missing_count == 0

    def test_table_satisfied_by_data_rows(self) -> None:
        """Test two data-like rows stand in for a table."""
        signals = EvidenceSignals(data_row_like_count=2)

        assert found_modalities(signals)["table"] is True

    def test_image_satisfied_by_figure_words(self) -> None:
        """Test figure mentions count as image evidence."""
        signals = EvidenceSignals(has_figure_words=True)

        assert found_modalities(signals)["image"] is True

    def test_missing_summary_capped(self) -> None:
        """Test the missing summary keeps twelve rows while the count stays exact."""
        reqs = [
            ModalityRequirement(task=f"Task {i}", section="a", charts=("bar",)) for i in range(15)
        ]

        report = evaluate_compliance(reqs, EvidenceSignals())

        assert report.missing_count == 15
        assert len(report.missing_summary) == 12
        assert report.missing_summary[-1].task == "Task 11"

    def test_no_requirements(self) -> None:
        """Test no requirements means nothing missing."""
        report = evaluate_compliance([], EvidenceSignals())

        assert report.missing_count == 0
        assert report.rows == ()
