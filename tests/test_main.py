import json

import pytest

from capacity_allocator.main import main


def test_optimize_writes_outputs(sample_dir, capsys):
    assert main(["optimize", "--project-dir", str(sample_dir), "--period", "1"]) == 0

    outdir = sample_dir / "output"
    assert (outdir / "people_capacity.csv").is_file()
    assert (outdir / "project_staffing.csv").is_file()
    assert (outdir / "infeasible_projects.md").read_text().startswith("# Under-staffed Projects")
    out = capsys.readouterr().out
    assert "Calculated 5 assignments." in out
    assert "Calculations committed at" in out


def test_optimize_dry_run_leaves_portfolio_untouched(sample_dir):
    before = (sample_dir / "input" / "assignments.csv").read_text()
    assert main(["optimize", "--project-dir", str(sample_dir), "--period", "1", "--dry-run"]) == 0
    assert (sample_dir / "input" / "assignments.csv").read_text() == before
    assert not (sample_dir / "output").exists()


def test_optimize_unknown_period_exits_with_failure(sample_dir, capsys):
    assert main(["optimize", "--project-dir", str(sample_dir), "--period", "9"]) == 1
    assert "planning period 9 not found" in capsys.readouterr().err


def test_optimize_dry_run_unknown_period_exits_with_failure(sample_dir, capsys):
    assert main(["optimize", "--project-dir", str(sample_dir), "--period", "9", "--dry-run"]) == 1
    assert "planning period 9 not found" in capsys.readouterr().err


def test_overview_honours_outdir(sample_dir, tmp_path, capsys):
    outdir = tmp_path / "reports"
    assert main(["overview", "--project-dir", str(sample_dir), "--period", "1", "--outdir", str(outdir)]) == 0
    assert (outdir / "people_capacity.csv").is_file()
    assert "Last calculated: never" in capsys.readouterr().out


def test_person_command_prints_json(sample_dir, capsys):
    assert main(["person", "--project-dir", str(sample_dir), "--period", "1", "--person", "3"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["person_name"] == "Chen Wei"
    assert payload["assignments"][0]["is_pinned"] is True


def test_project_command_unknown_project_exits_2(sample_dir, capsys):
    assert main(["project", "--project-dir", str(sample_dir), "--period", "1", "--project", "42"]) == 2
    assert "project 42 not found" in capsys.readouterr().err


def test_missing_project_dir_exits_2(tmp_path):
    assert main(["overview", "--project-dir", str(tmp_path / "nope"), "--period", "1"]) == 2


def test_person_command_requires_person_id(sample_dir):
    with pytest.raises(SystemExit):
        main(["person", "--project-dir", str(sample_dir), "--period", "1"])
