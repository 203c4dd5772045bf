"""Tests for the command-line interface."""

import json

from typer.testing import CliRunner

from phaseclean.cli import app

runner = CliRunner()


class TestCleanCommand:
    """Tests for `phaseclean clean`."""

    def test_heuristic_clean_writes_outputs(self, tmp_path, scenario_text):
        source = tmp_path / "rivers.txt"
        source.write_text(scenario_text, encoding="utf-8")
        audit = tmp_path / "audit.json"

        result = runner.invoke(app, [
            "clean", str(source), "--heuristic-only", "--yes", "-t", "academic", "--audit", str(audit),
        ])

        assert result.exit_code == 0, result.output
        cleaned = (tmp_path / "rivers_cleaned.txt").read_text(encoding="utf-8")
        assert "Chapter 1: Sources" in cleaned
        assert "Bibliography" not in cleaned
        trail = json.loads(audit.read_text(encoding="utf-8"))
        assert trail["document_id"] == "rivers"
        assert "Cleaning Summary" in result.output

    def test_store_then_resume_reports_finished_run(self, tmp_path, short_text):
        source = tmp_path / "short.txt"
        source.write_text(short_text, encoding="utf-8")
        store = tmp_path / "store"

        runner.invoke(app, ["clean", str(source), "--heuristic-only", "--yes", "--store", str(store)])
        run_ids = [p.name for p in (store / "runs").iterdir()]
        assert len(run_ids) == 1

        result = runner.invoke(app, ["resume", run_ids[0], "--store", str(store)])
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_missing_file(self, tmp_path):
        result = runner.invoke(app, ["clean", str(tmp_path / "absent.txt")])
        assert result.exit_code != 0
