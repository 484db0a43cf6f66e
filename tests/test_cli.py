"""
CLI Tests

Runs the Typer commands that need no network through ``CliRunner``.
"""

import json

from typer.testing import CliRunner

from StudyShelf.cli import app

runner = CliRunner()


class TestPlanCommand:
    """Test `studyshelf plan`."""

    def test_raw_plan(self):
        """Test the JSON rendering of both plans."""
        result = runner.invoke(app, ["plan", "--raw"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["documents"]["strategy_order"][0] == "direct"
        assert data["chat"]["strategy_order"][-1] == "apology"

    def test_profile(self):
        """Test that a profile changes the budget."""
        result = runner.invoke(app, ["plan", "--raw", "--profile", "fast"])
        assert json.loads(result.stdout)["documents"]["total_timeout_ms"] == 20000

    def test_table(self):
        """Test the table rendering."""
        result = runner.invoke(app, ["plan"])
        assert result.exit_code == 0
        assert "signed_url" in result.stdout

    def test_unknown_profile(self):
        """Test that an unknown profile exits with an error."""
        result = runner.invoke(app, ["plan", "--profile", "turbo"])
        assert result.exit_code == 1


class TestViewerUrlCommand:
    """Test `studyshelf viewer-url`."""

    def test_google(self):
        """Test the Google viewer URL."""
        result = runner.invoke(app, ["viewer-url", "https://x.org/a.pdf"])
        assert result.stdout.strip() == (
            "https://docs.google.com/viewer?url=https%3A%2F%2Fx.org%2Fa.pdf&embedded=true"
        )

    def test_unknown_viewer(self):
        """Test that unknown viewers are rejected."""
        result = runner.invoke(app, ["viewer-url", "https://x.org/a.pdf", "--viewer", "kindle"])
        assert result.exit_code == 1


class TestResolveCommand:
    """Test `studyshelf resolve` with a local reference."""

    def test_data_url(self):
        """Test that a data: URL resolves through the direct strategy."""
        result = runner.invoke(app, ["resolve", "data:application/pdf;base64,JVBERi0xLjc="])
        assert result.exit_code == 0
        assert "Resolved via direct" in result.stdout


class TestSchemaCommand:
    """Test `studyshelf schema`."""

    def test_schema_to_file(self, tmp_path):
        """Test writing the configuration schema."""
        target = tmp_path / "schema.json"
        result = runner.invoke(app, ["schema", "-o", str(target)])
        assert result.exit_code == 0
        assert "proxy" in json.loads(target.read_text())["properties"]
