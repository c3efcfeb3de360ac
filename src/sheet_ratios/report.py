"""Excel output writer — transformed, ratio and sorted-ratio workbooks."""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

from openpyxl import Workbook
from openpyxl.chart import LineChart, Reference
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from sheet_ratios.models import ColumnTable, SheetResult

# ── Style constants ──────────────────────────────────────────────

HEADER_FONT = Font(name="Calibri", bold=True, size=11, color="FFFFFF")
HEADER_FILL = PatternFill(start_color="2F5496", end_color="2F5496", fill_type="solid")
HEADER_ALIGN = Alignment(horizontal="center", vertical="center", wrap_text=True)
VALUE_FONT = Font(name="Calibri", size=11)

# Plotted range and anchors are tied to the usual acquisition length.
CHART_LAST_ROW = 470
CHART_SERIES = 6
CHART_ANCHORS = ("A470", "R470")
CHART_TITLE = "Response Profile"

_AUTO_WIDTH_SAMPLE_ROWS = 300
_EXCEL_FORMULA_PREFIXES = ("=", "+", "-", "@")
_MAX_SHEET_TITLE = 31

OUTPUT_KINDS: dict[str, Callable[[SheetResult], ColumnTable]] = {
    "transformed_data": lambda r: r.corrected,
    "ratios": lambda r: r.ratios,
    "sorted_ratios": lambda r: r.sorted_ratios,
}
THRESHOLD_KIND = "data_with_threshold"


# ── Helpers ──────────────────────────────────────────────────────


def _style_header(ws: Worksheet, ncols: int) -> None:
    for c in range(1, ncols + 1):
        cell = ws.cell(row=1, column=c)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = HEADER_ALIGN


def _auto_width(ws: Worksheet) -> None:
    max_row = min(ws.max_row, _AUTO_WIDTH_SAMPLE_ROWS + 1)  # include header row
    for c_idx in range(1, ws.max_column + 1):
        letter = get_column_letter(c_idx)
        width = 0
        for row in ws.iter_rows(min_row=1, max_row=max_row, min_col=c_idx, max_col=c_idx):
            cell = row[0]
            width = max(width, len(str(cell.value or "")))
        width += 4
        ws.column_dimensions[letter].width = min(width, 30)


def _safe_sheet_title(wb: Workbook, name: str) -> str:
    cleaned = re.sub(r"[\[\]:*?/\\]", "_", name).strip("'") or "Sheet"
    base = cleaned[:_MAX_SHEET_TITLE]
    if base not in wb.sheetnames:
        return base

    suffix = 1
    while True:
        suffix_str = f"_{suffix}"
        candidate = f"{base[: _MAX_SHEET_TITLE - len(suffix_str)]}{suffix_str}"
        if candidate not in wb.sheetnames:
            return candidate
        suffix += 1


def _excel_value(val: Any) -> Any:
    if isinstance(val, float):
        return val if math.isfinite(val) else None

    if isinstance(val, str):
        if val.startswith("'"):
            return val
        stripped = val.lstrip()
        if stripped and stripped[0] in _EXCEL_FORMULA_PREFIXES:
            return f"'{val}"

    return val


def _table_to_sheet(wb: Workbook, name: str, table: ColumnTable) -> Worksheet:
    ws = wb.create_sheet(title=_safe_sheet_title(wb, name))
    if table.is_empty:
        return ws

    for r_idx, row_vals in enumerate(table.to_rows(), 1):
        for c_idx, val in enumerate(row_vals, 1):
            ws.cell(row=r_idx, column=c_idx, value=_excel_value(val))
    _style_header(ws, table.n_columns)
    ws.freeze_panes = "A2"
    _auto_width(ws)
    return ws


def add_response_charts(ws: Worksheet, ncols: int) -> int:
    """Add up to two line charts of the first ratio columns; return how many."""
    added = 0
    for anchor_idx, anchor in enumerate(CHART_ANCHORS):
        first_col = anchor_idx * CHART_SERIES + 1
        last_col = min(first_col + CHART_SERIES - 1, ncols)
        if last_col < first_col:
            break
        chart = LineChart()
        chart.title = CHART_TITLE
        chart.width = 27.5
        chart.height = 17
        data = Reference(
            ws, min_col=first_col, max_col=last_col, min_row=1, max_row=CHART_LAST_ROW
        )
        chart.add_data(data, titles_from_data=True)
        ws.add_chart(chart, anchor)
        added += 1
    return added


def _build_workbook(
    results: Sequence[SheetResult],
    pick: Callable[[SheetResult], ColumnTable],
    *,
    charts: bool = False,
) -> Workbook:
    wb = Workbook()
    active_sheet = wb.active
    if active_sheet is not None:
        wb.remove(active_sheet)  # remove default sheet

    for result in results:
        if not result.ok:
            continue
        table = pick(result)
        ws = _table_to_sheet(wb, result.name, table)
        if charts and not table.is_empty:
            add_response_charts(ws, table.n_columns)

    if not wb.worksheets:
        ws = wb.create_sheet(title="Sheet1")
        ws.cell(row=1, column=1, value="No data").font = VALUE_FONT
    return wb


# ── Public API ───────────────────────────────────────────────────


def output_paths(out_dir: Path, stamp: str, *, threshold: bool = False) -> dict[str, Path]:
    """Return ``{kind: path}`` for every workbook a run writes."""
    kinds = [*OUTPUT_KINDS, *([THRESHOLD_KIND] if threshold else [])]
    return {kind: Path(out_dir) / f"{stamp}_{kind}.xlsx" for kind in kinds}


def write_workbooks(
    out_dir: Path,
    results: Sequence[SheetResult],
    stamp: str,
    *,
    add_chart: bool = False,
    threshold: bool = False,
) -> list[Path]:
    """Write the output workbooks and return their paths.

    All workbooks are saved to temporary files first and only moved into
    place once every save succeeded.
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    paths = output_paths(out_dir, stamp, threshold=threshold)

    picks: dict[str, Callable[[SheetResult], ColumnTable]] = dict(OUTPUT_KINDS)
    if threshold:
        picks[THRESHOLD_KIND] = lambda r: r.thresholded or ColumnTable()

    books = {
        kind: _build_workbook(results, pick, charts=add_chart and kind == "ratios")
        for kind, pick in picks.items()
    }

    tmp_paths = {kind: path.with_name(f"{path.stem}.tmp.xlsx") for kind, path in paths.items()}
    try:
        for kind, wb in books.items():
            wb.save(tmp_paths[kind])
    except Exception:
        for tmp in tmp_paths.values():
            tmp.unlink(missing_ok=True)
        raise

    for kind, tmp in tmp_paths.items():
        tmp.replace(paths[kind])
    return list(paths.values())
