"""Tests for the command line interface."""

import json
from datetime import date, datetime, timezone

import pytest

from vital_insights.cli import build_parser, main


@pytest.fixture
def run(temp_db_path, capsys):
    """Run the CLI against the temporary database and capture stdout."""
    def _run(*argv, as_json=False):
        prefix = ["--db-path", temp_db_path] + (["--json"] if as_json else [])
        code = main(prefix + list(argv))
        out = capsys.readouterr().out
        return code, (json.loads(out) if as_json else out)
    return _run


def record_spike(run):
    for value in (72, 75, 125, 130, 74):
        assert run("record", "--user", "alice", "--type", "heart_rate", "--primary", str(value))[0] == 0


class TestParser:
    """Tests for argument parsing."""

    def test_generate_defaults(self):
        """Test generate defaults come from settings."""
        args = build_parser().parse_args(["generate"])
        assert args.lookback_days == 30
        assert args.min_readings == 3
        assert args.user is None
        assert not args.force

    @pytest.mark.parametrize("argv", [
        ["generate", "--lookback-days", "0"],
        ["generate", "--lookback-days", "366"],
        ["generate", "--min-readings", "51"],
        ["generate", "--types", "congratulation"],
    ])
    def test_generate_rejects_bad_options(self, argv):
        """Test out-of-range options exit with a usage error."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(argv)

    def test_no_command_prints_help(self, run):
        """Test running without a command shows help."""
        code, out = run()
        assert code == 0
        assert "usage" in out.lower()


class TestCommands:
    """Tests for the commands end to end."""

    def test_types(self, run):
        """Test the type listing."""
        code, out = run("types")
        assert code == 0
        assert "blood_pressure" in out
        assert "heart_rate" in out

    def test_validate(self, run):
        """Test validate prints the classification as JSON."""
        code, data = run("validate", "--type", "heart_rate", "--primary", "105", "--age", "15", as_json=True)
        assert code == 0
        assert data["warning_level"] == "normal"
        assert data["adjustments"] == ["Heart rate tolerance extended for age 15"]

    def test_validate_with_birth_date(self, run):
        """Test a birth date is turned into an age for the context."""
        birth_date = date(datetime.now(timezone.utc).year - 15, 1, 1)
        code, data = run(
            "validate", "--type", "heart_rate", "--primary", "105",
            "--birth-date", birth_date.isoformat(), as_json=True,
        )
        assert code == 0
        assert data["adjustments"] == ["Heart rate tolerance extended for age 15"]

    def test_age_and_birth_date_exclusive(self):
        """Test age and birth date cannot both be given."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(
                ["validate", "--type", "heart_rate", "--primary", "72", "--age", "15",
                 "--birth-date", "2010-01-01"]
            )

    def test_validate_error(self, temp_db_path, capsys):
        """Test engine errors print to stderr and exit 1."""
        code = main(["--db-path", temp_db_path, "validate", "--type", "heart_rate", "--primary", "300"])
        captured = capsys.readouterr()
        assert code == 1
        assert captured.out == ""
        assert "Physiologically implausible" in captured.err

    def test_record_and_trend(self, run):
        """Test recorded readings show up in the trend."""
        for value in (70, 72, 74):
            code, out = run("record", "--user", "alice", "--type", "heart_rate", "--primary", str(value))
            assert code == 0
            assert "Recorded" in out

        code, data = run("trend", "--user", "alice", "--type", "heart_rate", as_json=True)
        assert code == 0
        assert data["trend"]["sample_count"] == 3
        assert data["patterns"]["sample_count"] == 3

    def test_record_missing_secondary(self, run):
        """Test blood pressure without a diastolic value fails."""
        code, _ = run("record", "--user", "alice", "--type", "blood_pressure", "--primary", "120")
        assert code == 1

    def test_progress(self, run):
        """Test the progress summary."""
        record_spike(run)
        code, data = run("progress", "--user", "alice", as_json=True)
        assert code == 0
        assert data["total_records"] == 5
        assert data["flagged_records"] == 2

    def test_generate_dry_run(self, run):
        """Test a dry run lists candidates without storing them."""
        record_spike(run)
        code, data = run("generate", "--user", "alice", "--dry-run", as_json=True)
        assert code == 0
        assert data["dry_run"]
        titles = [r["title"] for r in data["recommendations"]]
        assert "Critical Heart Rate Reading" in titles

        code, page = run("recommendations", "--user", "alice", as_json=True)
        assert page["total"] == 0

    def test_generate_read_dismiss(self, run):
        """Test the full recommendation flow."""
        record_spike(run)
        code, report = run("generate", "--user", "alice", as_json=True)
        assert code == 0
        assert report["processed_subjects"] == 1
        assert report["total_created"] > 0

        code, page = run("recommendations", "--user", "alice", as_json=True)
        assert page["total"] == report["total_created"]
        target = page["items"][0]["id"]

        code, out = run("read", target)
        assert code == 0
        assert "as read" in out
        code, out = run("dismiss", target, "--reason", "done")
        assert code == 0

        code, dismissed = run("recommendations", "--user", "alice", "--status", "dismissed", as_json=True)
        assert [r["id"] for r in dismissed["items"]] == [target]

    def test_read_unknown(self, run):
        """Test an unknown recommendation id fails."""
        code, _ = run("read", "missing")
        assert code == 1

    def test_cleanup(self, run):
        """Test cleanup reports both sweeps."""
        code, data = run("cleanup", as_json=True)
        assert code == 0
        assert [r["category"] for r in data["results"]] == ["expired", "retention"]
