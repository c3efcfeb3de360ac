"""CLI integration smoke tests for sheet-ratios."""

from __future__ import annotations

import json
from pathlib import Path

from openpyxl import Workbook, load_workbook
from typer.testing import CliRunner

from sheet_ratios import __version__
from sheet_ratios.cli import app

runner = CliRunner()

HEADER = ("Time (sec)", "340", "380", "skip", "bg340", "bg380")


def _sheet_rows(n: int = 10, *, bad_cell: bool = False, scale: float = 1.0) -> list[list[object]]:
    rows: list[list[object]] = [["Experiment: demo"], ["Operator", "lab"], list(HEADER)]
    for t in range(n):
        rows.append([t, (10 + t) * scale, 5 + t, 0, 1, 1])
    if bad_cell:
        rows[5][2] = "n/a"
    return rows


def test_sheet_rows_gives_each_caller_its_own_header() -> None:
    renamed = _sheet_rows()
    renamed[2][0] = "Seconds"

    assert _sheet_rows()[2][0] == "Time (sec)"
    assert HEADER[0] == "Time (sec)"


def _write_xlsx(tmp_path: Path, sheets: dict[str, list[list[object]]], name: str = "raw.xlsx") -> Path:
    wb = Workbook()
    wb.remove(wb.active)
    for title, rows in sheets.items():
        ws = wb.create_sheet(title=title)
        for row in rows:
            ws.append(row)
    path = tmp_path / name
    wb.save(path)
    return path


def _outputs(out_dir: Path, kind: str) -> list[Path]:
    paths = out_dir.glob(f"*_{kind}.xlsx")
    if kind == "ratios":
        return [p for p in paths if not p.name.endswith("_sorted_ratios.xlsx")]
    return list(paths)


def test_run_success_writes_workbooks_and_artifacts(tmp_path: Path) -> None:
    xlsx = _write_xlsx(tmp_path, {"Cells1": _sheet_rows(), "Cells2": _sheet_rows(scale=2.0)})
    out_dir = tmp_path / "out"

    result = runner.invoke(
        app, ["run", "--input", str(xlsx), "--out-dir", str(out_dir), "--start", "1", "--quiet"]
    )

    assert result.exit_code == 0, result.stdout
    assert len(_outputs(out_dir, "transformed_data")) == 1
    assert len(_outputs(out_dir, "ratios")) == 1
    assert len(_outputs(out_dir, "sorted_ratios")) == 1
    assert not list(out_dir.glob("*_data_with_threshold.xlsx"))

    ratios = load_workbook(_outputs(out_dir, "ratios")[0])
    assert ratios.sheetnames == ["Cells1", "Cells2"]
    assert ratios["Cells1"]["A1"].value == "cell 1"
    assert ratios["Cells1"]["A2"].value == 9 / 4

    corrected = load_workbook(_outputs(out_dir, "transformed_data")[0])
    assert [c.value for c in corrected["Cells1"][1]] == ["340", "380"]
    assert corrected["Cells1"].max_row == 11

    report = json.loads((out_dir / "run_report.json").read_text())
    assert report["sheets_in"] == 2
    assert report["sheets_ok"] == 2
    manifest = json.loads((out_dir / "run_manifest.json").read_text())
    assert manifest["status"] == "success"
    assert manifest["config"]["start"] == 1
    assert len(manifest["outputs"]) == 3


def test_run_bad_cell_fails_without_workbooks(tmp_path: Path) -> None:
    xlsx = _write_xlsx(tmp_path, {"Good": _sheet_rows(), "Broken": _sheet_rows(bad_cell=True)})
    out_dir = tmp_path / "out"

    result = runner.invoke(
        app, ["run", "--input", str(xlsx), "--out-dir", str(out_dir), "--start", "1", "--quiet"]
    )

    assert result.exit_code == 2
    assert "Broken" in result.stdout
    assert "cell C6" in result.stdout
    assert not list(out_dir.glob("*.xlsx"))
    report = json.loads((out_dir / "run_report.json").read_text())
    assert report["failed_sheets"][0]["sheet"] == "Broken"
    assert report["failed_sheets"][0]["column"] == "C"
    manifest = json.loads((out_dir / "run_manifest.json").read_text())
    assert manifest["status"] == "failed"
    assert manifest["error_code"] == 2


def test_run_skip_failed_keeps_good_sheets(tmp_path: Path) -> None:
    xlsx = _write_xlsx(tmp_path, {"Good": _sheet_rows(), "Broken": _sheet_rows(bad_cell=True)})
    out_dir = tmp_path / "out"

    result = runner.invoke(
        app,
        [
            "run", "--input", str(xlsx), "--out-dir", str(out_dir),
            "--start", "1", "--skip-failed", "--quiet",
        ],
    )

    assert result.exit_code == 0, result.stdout
    sorted_wb = load_workbook(_outputs(out_dir, "sorted_ratios")[0])
    assert sorted_wb.sheetnames == ["Good"]
    report = json.loads((out_dir / "run_report.json").read_text())
    assert report["sheets_ok"] == 1
    assert report["failed_sheets"][0]["sheet"] == "Broken"


def test_run_default_window_on_short_sheet_is_empty_window(tmp_path: Path) -> None:
    xlsx = _write_xlsx(tmp_path, {"Short": _sheet_rows()})
    out_dir = tmp_path / "out"

    result = runner.invoke(app, ["run", "--input", str(xlsx), "--out-dir", str(out_dir), "--quiet"])

    assert result.exit_code == 2
    assert "peak window" in result.stdout


def test_run_missing_marker_warns_and_continues(tmp_path: Path) -> None:
    rows = _sheet_rows()
    rows[2][0] = "Seconds"
    xlsx = _write_xlsx(tmp_path, {"NoMarker": rows[2:]})
    out_dir = tmp_path / "out"

    result = runner.invoke(
        app, ["run", "--input", str(xlsx), "--out-dir", str(out_dir), "--start", "1", "--quiet"]
    )

    assert result.exit_code == 0, result.stdout
    report = json.loads((out_dir / "run_report.json").read_text())
    assert any("analyzing from row 1" in w for w in report["warnings"])


def test_run_threshold_writes_extra_workbook(tmp_path: Path) -> None:
    xlsx = _write_xlsx(tmp_path, {"Cells": _sheet_rows()})
    out_dir = tmp_path / "out"

    result = runner.invoke(
        app,
        [
            "run", "--input", str(xlsx), "--out-dir", str(out_dir),
            "--start", "1", "--threshold", "2.0", "--quiet",
        ],
    )

    assert result.exit_code == 0, result.stdout
    [threshold_path] = list(out_dir.glob("*_data_with_threshold.xlsx"))
    assert load_workbook(threshold_path)["Cells"]["A1"].value == "cell 1"


def test_run_nonquiet_shows_progress_and_peak_order(tmp_path: Path) -> None:
    xlsx = _write_xlsx(tmp_path, {"Cells": _sheet_rows()})
    out_dir = tmp_path / "out"

    result = runner.invoke(
        app,
        ["run", "--input", str(xlsx), "--out-dir", str(out_dir), "--start", "1", "--verbose"],
    )

    assert result.exit_code == 0, result.stdout
    assert "Pipeline Start" in result.stdout
    assert "Processing sheets" in result.stdout
    assert "Peak order" in result.stdout
    assert "skipping unwanted column" in result.stdout
    assert "Pipeline Complete" in result.stdout


def test_run_no_print_order_hides_table(tmp_path: Path) -> None:
    xlsx = _write_xlsx(tmp_path, {"Cells": _sheet_rows()})
    out_dir = tmp_path / "out"

    result = runner.invoke(
        app,
        [
            "run", "--input", str(xlsx), "--out-dir", str(out_dir),
            "--start", "1", "--no-print-order",
        ],
    )

    assert result.exit_code == 0, result.stdout
    assert "Peak order" not in result.stdout


def test_profile_sets_defaults_and_cli_overrides(tmp_path: Path) -> None:
    profile = tmp_path / "profile.txt"
    profile.write_text("# lab defaults\nstart=1\nstop=5\ntrim=8\n", encoding="utf-8")
    xlsx = _write_xlsx(tmp_path, {"Cells": _sheet_rows()})
    out_dir = tmp_path / "out"

    result = runner.invoke(
        app,
        [
            "run", "--input", str(xlsx), "--out-dir", str(out_dir),
            "--profile", str(profile), "--stop", "9", "--quiet",
        ],
    )

    assert result.exit_code == 0, result.stdout
    manifest = json.loads((out_dir / "run_manifest.json").read_text())
    assert manifest["config"]["start"] == 1
    assert manifest["config"]["stop"] == 9
    assert manifest["config"]["trim"] == 8
    ratios = load_workbook(_outputs(out_dir, "ratios")[0])["Cells"]
    assert ratios.max_row == 9


def test_profile_unknown_key_fails(tmp_path: Path) -> None:
    profile = tmp_path / "profile.txt"
    profile.write_text("colour=blue\n", encoding="utf-8")
    xlsx = _write_xlsx(tmp_path, {"Cells": _sheet_rows()})
    out_dir = tmp_path / "out"

    result = runner.invoke(
        app,
        ["run", "--input", str(xlsx), "--out-dir", str(out_dir), "--profile", str(profile), "--quiet"],
    )

    assert result.exit_code == 2
    assert "Unknown profile setting" in result.stdout
    assert (out_dir / "run_manifest.json").exists()


def test_profile_file_not_found_error(tmp_path: Path) -> None:
    xlsx = _write_xlsx(tmp_path, {"Cells": _sheet_rows()})

    result = runner.invoke(
        app,
        [
            "run", "--input", str(xlsx), "--out-dir", str(tmp_path / "out"),
            "--profile", str(tmp_path / "nonexist.txt"), "--quiet",
        ],
    )

    assert result.exit_code == 2
    assert "Profile not found" in result.stdout


def test_run_unsupported_input_fails(tmp_path: Path) -> None:
    path = tmp_path / "data.txt"
    path.write_text("hello", encoding="utf-8")

    result = runner.invoke(app, ["run", "--input", str(path), "--out-dir", str(tmp_path / "out")])

    assert result.exit_code == 2
    assert "Unsupported file type" in result.stdout


def test_inspect_shows_layout(tmp_path: Path) -> None:
    xlsx = _write_xlsx(tmp_path, {"Cells": _sheet_rows()})

    result = runner.invoke(app, ["inspect", "--input", str(xlsx)])

    assert result.exit_code == 0, result.stdout
    assert "Workbook Layout" in result.stdout
    assert "Cells" in result.stdout
    assert "row 3" in result.stdout


def test_version_flag() -> None:
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.stdout
