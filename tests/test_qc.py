from __future__ import annotations

import json
from pathlib import Path

from sheet_ratios.models import RunReport
from sheet_ratios.qc import write_run_report


def test_write_run_report_writes_expected_contract(tmp_path: Path) -> None:
    report = RunReport(
        sheets_in=2,
        sheets_ok=1,
        failed_sheets=[{"sheet": "B", "error": "DataFormatError", "row": 4, "column": "C"}],
        warnings=["warn"],
    )

    out = write_run_report(tmp_path, report)

    assert out == tmp_path / "run_report.json"
    data = json.loads(out.read_text(encoding="utf-8"))
    assert data == {
        "failed_sheets": [{"column": "C", "error": "DataFormatError", "row": 4, "sheet": "B"}],
        "sheets_in": 2,
        "sheets_ok": 1,
        "warnings": ["warn"],
    }
