from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pandas as pd
import pytest
from openpyxl import Workbook

from sheet_ratios.io import load_workbook, write_json


def _save_xlsx(path: Path, sheets: dict[str, list[list[object]]]) -> Path:
    wb = Workbook()
    wb.remove(wb.active)
    for name, rows in sheets.items():
        ws = wb.create_sheet(title=name)
        for row in rows:
            ws.append(row)
    wb.save(path)
    return path


def test_load_workbook_keeps_sheet_order_and_text_cells(tmp_path: Path) -> None:
    path = _save_xlsx(
        tmp_path / "raw.xlsx",
        {
            "Zeta": [["Experiment"], ["Time (sec)", "340", "380"], [0, 1.5, 2]],
            "Alpha": [["Time (sec)", "340"], [1, 3]],
        },
    )

    workbook = load_workbook(path)

    assert list(workbook) == ["Zeta", "Alpha"]
    zeta = workbook["Zeta"]
    assert zeta.dimensions() == (3, 3)
    assert zeta.rows[0] == ["Experiment", "", ""]
    assert zeta.first_row_matching("Time (sec)") == 1
    assert float(zeta.rows[2][1]) == 1.5
    assert all(isinstance(cell, str) for row in zeta.rows for cell in row)


def test_load_workbook_xlsx_uses_openpyxl(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    xlsx_path = tmp_path / "data.xlsx"
    xlsx_path.write_bytes(b"x")
    expected = {"S1": pd.DataFrame([["Time (sec)", "1"]])}

    calls: list[dict[str, object]] = []

    def _fake_read_excel(path: Path, **kwargs: object) -> dict[str, pd.DataFrame]:
        calls.append({"path": path, **kwargs})
        return expected

    monkeypatch.setattr(pd, "read_excel", _fake_read_excel)

    workbook = load_workbook(xlsx_path)

    assert workbook["S1"].rows == [["Time (sec)", "1"]]
    assert len(calls) == 1
    assert calls[0]["engine"] == "openpyxl"
    assert calls[0]["sheet_name"] is None
    assert calls[0]["header"] is None
    assert calls[0]["dtype"] == "string"


def test_load_workbook_csv_is_single_sheet(tmp_path: Path) -> None:
    csv_path = tmp_path / "run1.csv"
    csv_path.write_text("Time (sec),340,380\n0,1.5,2\n1,,3\n", encoding="utf-8")

    workbook = load_workbook(csv_path)

    assert list(workbook) == ["run1"]
    assert workbook["run1"].rows == [
        ["Time (sec)", "340", "380"],
        ["0", "1.5", "2"],
        ["1", "", "3"],
    ]


def test_load_workbook_xls_missing_xlrd_raises_friendly_error(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    xls_path = tmp_path / "legacy.xls"
    xls_path.write_bytes(b"x")

    def _fake_read_excel(path: Path, **kwargs: object) -> pd.DataFrame:
        del path, kwargs
        raise ImportError("No module named xlrd")

    monkeypatch.setattr(pd, "read_excel", _fake_read_excel)

    with pytest.raises(ValueError, match="xlrd"):
        load_workbook(xls_path)


def test_load_workbook_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError, match="not found"):
        load_workbook(tmp_path / "nope.xlsx")


def test_load_workbook_rejects_directory_path(tmp_path: Path) -> None:
    input_dir = tmp_path / "fake.xlsx"
    input_dir.mkdir()

    with pytest.raises(ValueError, match="not a file"):
        load_workbook(input_dir)


def test_load_workbook_rejects_unknown_suffix(tmp_path: Path) -> None:
    path = tmp_path / "data.json"
    path.write_text("{}", encoding="utf-8")

    with pytest.raises(ValueError, match="Unsupported file type"):
        load_workbook(path)


def test_write_json_is_atomic_and_deterministic(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "artifact.json"
    payload = {
        "b": 1,
        "a": datetime(2024, 1, 2, 3, 4, 5),
        "path": Path("foo/bar"),
    }

    out = write_json(path, payload)

    assert out == path
    text = path.read_text(encoding="utf-8")
    assert text.endswith("\n")
    assert '"a": "2024-01-02T03:04:05"' in text
    assert '"path": "foo/bar"' in text
    assert text.index('"a"') < text.index('"b"') < text.index('"path"')
    assert not path.with_suffix(path.suffix + ".tmp").exists()


def test_write_json_raises_on_unknown_type(tmp_path: Path) -> None:
    class Unknown:
        pass

    with pytest.raises(TypeError, match="not JSON serializable"):
        write_json(tmp_path / "artifact.json", {"x": Unknown()})
