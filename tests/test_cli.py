"""
Tests for the command line interface.
"""

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from assessor.config import Settings
from assessor.main import BundleError, app, load_bundle
from assessor.models import AssignmentBrief, ExtractionRun, Submission, Unit

runner = CliRunner()


@pytest.fixture
def bundle_file(
    temp_dir: Path,
    sample_unit: Unit,
    sample_brief: AssignmentBrief,
    sample_submission: Submission,
    sample_run: ExtractionRun,
) -> Path:
    """Bundle JSON holding one gradable submission."""
    path = temp_dir / "bundle.json"
    path.write_text(
        json.dumps(
            {
                "unit": sample_unit.to_json_dict(),
                "brief": sample_brief.to_json_dict(),
                "submission": sample_submission.to_json_dict(),
                "extractionRun": sample_run.to_json_dict(),
            }
        ),
        encoding="utf-8",
    )
    return path


class TestLoadBundle:
    """Tests for load_bundle."""

    def test_load(self, bundle_file: Path) -> None:
        """Test a bundle seeds a store."""
        store, submission, run = load_bundle(bundle_file)

        assert submission.id == "sub-1"
        assert run is not None
        assert run.page_count == 3

    def test_missing_file(self, temp_dir: Path) -> None:
        """Test a missing bundle raises BundleError."""
        with pytest.raises(BundleError, match="File not found"):
            load_bundle(temp_dir / "nope.json")

    def test_invalid_json(self, temp_dir: Path) -> None:
        """Test malformed JSON raises BundleError."""
        path = temp_dir / "bad.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(BundleError, match="Invalid JSON"):
            load_bundle(path)

    def test_binding_defaults(self, temp_dir: Path, sample_unit: Unit) -> None:
        """Test the brief and submission are bound when the bundle omits ids."""
        path = temp_dir / "bundle.json"
        path.write_text(
            json.dumps(
                {
                    "unit": sample_unit.to_json_dict(),
                    "brief": {"id": "b-9", "assignmentCode": "A9"},
                    "submission": {"id": "s-9", "status": "EXTRACTED"},
                }
            ),
            encoding="utf-8",
        )

        _, submission, run = load_bundle(path)

        assert submission.assignment_brief_id == "b-9"
        assert run is None


class TestCommands:
    """Tests for CLI commands."""

    def test_readiness_ok(self, bundle_file: Path, test_settings: Settings) -> None:
        """Test a ready bundle exits zero."""
        with patch("assessor.main.get_settings", return_value=test_settings):
            result = runner.invoke(app, ["readiness", str(bundle_file)])

        assert result.exit_code == 0
        assert "Ready for grading" in result.output

    def test_readiness_blocked(
        self, temp_dir: Path, sample_submission: Submission, test_settings: Settings
    ) -> None:
        """Test a bundle without an extraction run exits non-zero."""
        path = temp_dir / "bundle.json"
        path.write_text(
            json.dumps({"submission": sample_submission.to_json_dict()}), encoding="utf-8"
        )

        with patch("assessor.main.get_settings", return_value=test_settings):
            result = runner.invoke(app, ["readiness", str(path)])

        assert result.exit_code == 1
        assert "No extraction run found." in result.output

    def test_requirements(self, temp_dir: Path, chart_brief: AssignmentBrief) -> None:
        """Test requirements are listed for a brief."""
        path = temp_dir / "brief.json"
        path.write_text(json.dumps(chart_brief.to_json_dict()), encoding="utf-8")

        result = runner.invoke(app, ["requirements", str(path)])

        assert result.exit_code == 0
        assert "bar" in result.output

    def test_grade_writes_audit(
        self,
        bundle_file: Path,
        temp_dir: Path,
        test_settings: Settings,
        mock_llm_client: MagicMock,
    ) -> None:
        """Test grading a bundle prints the grade and saves the audit."""
        output = temp_dir / "audit.json"

        with (
            patch("assessor.main.get_settings", return_value=test_settings),
            patch("assessor.grading.engine.LLMClient", return_value=mock_llm_client),
        ):
            result = runner.invoke(app, ["grade", str(bundle_file), "-o", str(output), "-v"])

        assert result.exit_code == 0, result.output
        assert "MERIT" in result.output
        audit = json.loads(output.read_text(encoding="utf-8"))
        assert audit["requestId"] == "cli"
        assert audit["gradePolicy"]["finalGrade"] == "MERIT"

    def test_grade_reports_error_code(
        self,
        bundle_file: Path,
        test_settings: Settings,
        mock_llm_client: MagicMock,
    ) -> None:
        """Test grading failures print their stable code."""
        settings = test_settings.model_copy(update={"openai_api_key": ""})

        with (
            patch("assessor.main.get_settings", return_value=settings),
            patch("assessor.grading.engine.LLMClient", return_value=mock_llm_client),
        ):
            result = runner.invoke(app, ["grade", str(bundle_file)])

        assert result.exit_code == 1
        assert "GRADE_OPENAI_KEY_MISSING" in result.output

    def test_health(self, test_settings: Settings, mock_llm_client: MagicMock) -> None:
        """Test the health command uses the model client."""
        with (
            patch("assessor.main.get_settings", return_value=test_settings),
            patch("assessor.grading.engine.LLMClient", return_value=mock_llm_client),
        ):
            result = runner.invoke(app, ["health"])

        assert result.exit_code == 0
        assert "All systems operational" in result.output
