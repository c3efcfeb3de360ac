"""I/O helpers — load source workbooks, write JSON artifacts."""

from __future__ import annotations

import json
import zipfile
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, cast

import pandas as pd

from sheet_ratios.models import SheetMatrix, Workbook

# ── Loading ──────────────────────────────────────────────────────


def _cell_text(value: Any) -> str:
    try:
        if pd.isna(value):
            return ""
    except (TypeError, ValueError):
        pass
    return str(value)


def _frame_to_sheet(name: str, df: pd.DataFrame) -> SheetMatrix:
    rows = [
        [_cell_text(value) for value in row]
        for row in df.itertuples(index=False, name=None)
    ]
    return SheetMatrix(name=name, rows=rows)


def _read_csv_frame(path: Path) -> pd.DataFrame:
    last_exc: Exception | None = None
    for encoding in ("utf-8-sig", "utf-8", "latin-1"):
        try:
            return pd.read_csv(
                path,
                header=None,
                dtype="string",
                sep=None,
                engine="python",
                encoding=encoding,
                encoding_errors="strict",
                keep_default_na=False,
            )
        except (UnicodeDecodeError, pd.errors.ParserError) as exc:
            last_exc = exc
    raise ValueError(f"Could not read CSV {path} (decode or parse failed)") from last_exc


def load_workbook(path: Path) -> Workbook:
    """Load every sheet of an Excel file (or a single CSV) as raw text grids.

    Sheet order follows the workbook. A CSV becomes one sheet named after
    the file stem.

    Raises
    ------
    FileNotFoundError
        If *path* does not exist.
    ValueError
        If *path* is a directory, the extension is not supported, or the
        file cannot be parsed.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")
    if path.is_dir():
        raise ValueError(f"Input path is a directory, not a file: {path}")

    suffix = path.suffix.lower()
    if suffix == ".csv":
        sheet = _frame_to_sheet(path.stem, _read_csv_frame(path))
        return {sheet.name: sheet}

    read_excel = cast(Callable[..., dict[str, pd.DataFrame]], getattr(pd, "read_excel"))
    if suffix in (".xlsx", ".xlsm", ".xltx", ".xltm"):
        try:
            frames = read_excel(path, sheet_name=None, header=None, engine="openpyxl", dtype="string")
        except (OSError, KeyError, ValueError, zipfile.BadZipFile) as exc:
            raise ValueError(f"Could not read workbook {path}: {exc}") from exc
    elif suffix == ".xls":
        try:
            frames = read_excel(path, sheet_name=None, header=None, engine="xlrd", dtype="string")
        except ImportError as exc:
            raise ValueError(
                "Unsupported .xls input unless 'xlrd' is installed. "
                "Either convert to .xlsx or add dependency: pip install xlrd"
            ) from exc
    else:
        raise ValueError(f"Unsupported file type: {suffix!r}. Use .xlsx, .xls, or .csv")

    return {str(name): _frame_to_sheet(str(name), df) for name, df in frames.items()}


# ── Writing ──────────────────────────────────────────────────────


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    item = getattr(obj, "item", None)
    if callable(item):
        converted = item()
        if isinstance(converted, (str, int, float, bool)) or converted is None:
            return converted
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def write_json(path: Path, data: Any) -> Path:
    """Write *data* as pretty-printed JSON to *path* (atomic + deterministic)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    payload = json.dumps(
        data,
        indent=2,
        sort_keys=True,
        ensure_ascii=False,
        default=_json_default,
    ) + "\n"
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(payload, encoding="utf-8")
    tmp_path.replace(path)
    return path
