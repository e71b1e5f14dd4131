"""Tests for the fe1 CLI."""

from typer.testing import CliRunner

from fe1prep.cli.commands import app
from fe1prep.core.progress_rollup import record_video_progress
from fe1prep.core.simulation import fail_simulation, start_simulation

runner = CliRunner()

CONTENT_YAML = """
subjects:
  - id: equity
    name: Equity
    modules:
      - id: equity-trusts
        name: Express trusts
        lessons:
          - id: certainties
            title: Three certainties
            video_duration: 300
"""


class TestInitDb:
    """Tests for fe1 init-db."""

    def test_creates_database(self, tmp_path):
        """init-db creates the database at --db."""
        db_file = tmp_path / "db" / "cli.db"

        result = runner.invoke(app, ["init-db", "--db", str(db_file)])

        assert result.exit_code == 0
        assert "Database ready" in result.stdout
        assert db_file.exists()


class TestImportContent:
    """Tests for fe1 import-content."""

    def test_import(self, tmp_path):
        """Content from YAML is imported and counted."""
        db_file = tmp_path / "cli.db"
        content_file = tmp_path / "content.yaml"
        content_file.write_text(CONTENT_YAML)

        result = runner.invoke(app, ["import-content", str(content_file), "--db", str(db_file)])

        assert result.exit_code == 0
        assert "Content imported" in result.stdout
        assert "lessons: 1" in result.stdout

    def test_missing_file(self, tmp_path):
        """A missing file exits with an error."""
        result = runner.invoke(
            app,
            ["import-content", str(tmp_path / "nope.yaml"), "--db", str(tmp_path / "cli.db")],
        )

        assert result.exit_code == 1
        assert "not found" in result.stdout


class TestProgressCommand:
    """Tests for fe1 progress."""

    def test_shows_modules(self, seeded_course, db_path):
        """Progress lists every module of the subject."""
        record_video_progress("user-1", "m1-l1", 95)

        result = runner.invoke(app, ["progress", "user-1", "tort", "--db", str(db_path)])

        assert result.exit_code == 0
        assert "Tort Law" in result.stdout
        assert "Negligence" in result.stdout
        assert "1/2" in result.stdout

    def test_unknown_subject(self, db_path):
        """Unknown subject exits with an error."""
        result = runner.invoke(app, ["progress", "user-1", "nope", "--db", str(db_path)])

        assert result.exit_code == 1
        assert "Subject not found" in result.stdout


class TestSimulationsCommand:
    """Tests for fe1 simulations."""

    def test_empty_history(self, db_path):
        """No simulations yet."""
        result = runner.invoke(app, ["simulations", "user-1", "--db", str(db_path)])

        assert result.exit_code == 0
        assert "No simulations yet" in result.stdout

    def test_lists_history(self, question_pool, db_path):
        """History shows failed simulations with their score."""
        started = start_simulation("user-1")
        fail_simulation("user-1", started.simulation_id, reason="Abandoned")

        result = runner.invoke(app, ["simulations", "user-1", "--db", str(db_path)])

        assert result.exit_code == 0
        assert "FAILED" in result.stdout
        assert started.simulation_id[:8] in result.stdout
