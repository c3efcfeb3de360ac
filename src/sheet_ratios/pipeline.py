"""Transform pipeline — background correction, ratios, peak sort.

Every stage is a pure function over one sheet; console detail is routed
through an injected ``echo`` callable.
"""

from __future__ import annotations

import heapq
import math
import re
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

import pandas as pd
from openpyxl.utils import get_column_letter

from sheet_ratios import BACKGROUND_COLUMNS, SKIP_EVERY
from sheet_ratios.columns import column_label
from sheet_ratios.errors import (
    DataFormatError,
    EmptyWindow,
    InvariantViolation,
    MissingMarkerRow,
    PipelineCancelled,
    PipelineError,
)
from sheet_ratios.models import ColumnTable, RunConfig, SheetMatrix, SheetResult, Workbook

Echo = Callable[..., None]

# Plain decimal or scientific notation, or inf/infinity/nan; no padding or
# digit separators.
_DECIMAL = re.compile(
    r"[+-]?(?:(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?|inf(?:inity)?|nan)",
    re.IGNORECASE,
)


def _noop(*_args: object, **_kwargs: object) -> None:
    return None


# ── Background correction ───────────────────────────────────────


def retained_columns(n_cols: int) -> list[int]:
    """Return the source column indices that carry primary data.

    Column 0 and the trailing background columns never qualify; every
    ``SKIP_EVERY``-th column in between is dropped.
    """
    return [j for j in range(1, n_cols - BACKGROUND_COLUMNS) if j % SKIP_EVERY != 0]


def _parse_cell(sheet: SheetMatrix, row: int, col: int) -> float:
    raw = sheet.rows[row][col]
    if not _DECIMAL.fullmatch(raw):
        raise DataFormatError(
            f"cannot parse {raw!r} as a decimal number",
            sheet=sheet.name,
            row=row,
            column=get_column_letter(col + 1),
        )
    return float(raw)


def background_offset(j: int) -> int:
    """Return which trailing background column (1 = last, 2 = second to last) *j* uses."""
    if (j + 1) % SKIP_EVERY == 0:
        return 1
    if (j + 2) % SKIP_EVERY == 0:
        return 2
    raise InvariantViolation(
        f"column index {j} matches no background column", column=get_column_letter(j + 1)
    )


def background_correct(
    sheet: SheetMatrix, data_start: int, *, echo: Echo = _noop
) -> ColumnTable:
    """Subtract the matching background column from every retained data column.

    Column 0 holds time labels and the last ``BACKGROUND_COLUMNS`` columns hold
    background readings; of the columns in between, every ``SKIP_EVERY``-th
    one is skipped. Headers come from row *data_start*, values from the rows
    below it.
    """
    n_rows, n_cols = sheet.dimensions()
    if n_cols < BACKGROUND_COLUMNS + 1:
        raise InvariantViolation(
            f"expected a label column and {BACKGROUND_COLUMNS} trailing background "
            f"columns, found {n_cols} column(s)",
            sheet=sheet.name,
        )

    retained = set(retained_columns(n_cols))
    headers: list[str] = []
    columns: list[list[float]] = []
    for j in range(1, n_cols - BACKGROUND_COLUMNS):
        if j not in retained:
            echo(f"  skipping unwanted column: {get_column_letter(j + 1)}")
            continue

        bg_col = n_cols - background_offset(j)
        header = sheet.rows[data_start][j]
        headers.append(header)
        echo(f"  wrote new column header: {header!r} in {column_label(len(headers))}1")

        values: list[float] = []
        for k in range(data_start + 1, n_rows):
            primary = _parse_cell(sheet, k, j)
            background = _parse_cell(sheet, k, bg_col)
            values.append(primary - background)
            echo(f"    old value: {primary}, bg: {background}, corrected: {values[-1]}")
        columns.append(values)

    return ColumnTable.from_columns(headers, columns)


# ── Ratios ───────────────────────────────────────────────────────


def compute_ratios(
    corrected: ColumnTable, trim: int = 450, *, echo: Echo = _noop
) -> tuple[ColumnTable, list[str]]:
    """Divide each corrected column by its right-hand neighbour, pairwise.

    Returns ``(ratios, warnings)``. Only the first *trim* data rows are kept.
    Division by zero yields ``inf``/``-inf``/``nan`` and is reported as a
    warning rather than raised.
    """
    warnings: list[str] = []
    if corrected.n_rows < 1 or corrected.n_columns < 2:
        return ColumnTable(), warnings

    if corrected.n_columns % 2:
        warnings.append(
            "Dropped unpaired corrected column "
            f"{column_label(corrected.n_columns)} ({corrected.headers[-1]!r})"
        )

    limit = min(corrected.n_rows, trim)
    if limit < corrected.n_rows:
        echo(f"  trimmed after {trim} measurements")
    data = corrected.data.iloc[:limit]

    headers: list[str] = []
    columns: list[list[float]] = []
    for c in range(0, corrected.n_columns - 1, 2):
        ratio: pd.Series = data.iloc[:, c] / data.iloc[:, c + 1]
        headers.append(f"cell {len(headers) + 1}")
        columns.append([float(v) for v in ratio])
        for value in columns[-1]:
            echo(f"    wrote ratio: {value}")

        non_finite = int(ratio.isna().sum()) + int(ratio.isin([math.inf, -math.inf]).sum())
        if non_finite:
            suffix = "" if non_finite == 1 else "s"
            warnings.append(
                f"Found {non_finite} non-finite ratio{suffix} in {headers[-1]} "
                "(division by zero)"
            )
    return ColumnTable.from_columns(headers, columns), warnings


# ── Peak sort ────────────────────────────────────────────────────


def extract_peaks(ratios: ColumnTable, start: int, stop: int) -> dict[int, float]:
    """Return ``{column index: max value in rows [start, stop)}``.

    Row indices count the header as row 0, so *start* is raised to 1 and
    *stop* is clamped to the number of rows. NaN values are ignored; a column
    with nothing but NaN in the window gets a NaN peak.
    """
    if ratios.is_empty:
        return {}

    total_rows = ratios.n_rows + 1
    lo = max(start, 1)
    hi = min(stop, total_rows)
    if lo >= hi:
        raise EmptyWindow(
            f"peak window [{start}, {stop}) holds no data rows (sheet has {total_rows} rows)"
        )

    window = ratios.data.iloc[lo - 1 : hi - 1]
    maxima = window.max(axis=0, skipna=True)
    return {idx: float(maxima.iloc[idx]) for idx in range(ratios.n_columns)}


def _peak_key(peak: float) -> tuple[int, float]:
    # NaN peaks rank after every numeric peak.
    if math.isnan(peak):
        return (1, 0.0)
    return (0, -peak)


def peak_order(peaks: dict[int, float]) -> list[int]:
    """Return column indices by descending peak; ties go to the lower index."""
    heap = [(_peak_key(peak), idx) for idx, peak in peaks.items()]
    heapq.heapify(heap)
    order: list[int] = []
    while heap:
        _key, idx = heapq.heappop(heap)
        order.append(idx)
    return order


def sort_by_peak(
    ratios: ColumnTable, peaks: dict[int, float]
) -> tuple[ColumnTable, list[int]]:
    """Permute the ratio columns into peak order. Returns ``(sorted, order)``."""
    order = peak_order(peaks)
    headers = [ratios.headers[idx] for idx in order]
    columns = [ratios.column(idx) for idx in order]
    return ColumnTable.from_columns(headers, columns), order


def apply_threshold(ratios: ColumnTable, threshold: float) -> ColumnTable:
    """Keep only ratio columns with at least one value above *threshold*.

    A threshold of 0 disables the filter.
    """
    if threshold == 0 or ratios.is_empty:
        return ratios
    keep = [
        idx for idx in range(ratios.n_columns)
        if bool((ratios.data.iloc[:, idx] > threshold).any())
    ]
    return ColumnTable.from_columns(
        [ratios.headers[idx] for idx in keep],
        [ratios.column(idx) for idx in keep],
    )


# ── Drivers ──────────────────────────────────────────────────────


def process_sheet(
    sheet: SheetMatrix, config: RunConfig, *, echo: Echo = _noop
) -> SheetResult:
    """Run corrected -> ratios -> sorted for one sheet.

    Raises
    ------
    PipelineError
        Any fatal error, tagged with the sheet name.
    """
    result = SheetResult(name=sheet.name)
    n_rows, n_cols = sheet.dimensions()
    if n_rows == 0:
        result.warnings.append(f"Sheet {sheet.name!r} is empty; nothing to process")
        return result

    try:
        result.data_start = sheet.first_row_matching(config.marker_label)
        echo(f"  found {config.marker_label!r} at row {result.data_start + 1}")
    except MissingMarkerRow as exc:
        result.data_start = 0
        result.warnings.append(f"{exc}; analyzing from row 1 anyway")

    try:
        result.corrected = background_correct(sheet, result.data_start, echo=echo)
        echo(
            f"  processed {n_rows} rows x {n_cols} columns -> "
            f"{result.corrected.n_columns} corrected column(s)"
        )

        result.ratios, ratio_warnings = compute_ratios(
            result.corrected, config.trim, echo=echo
        )
        result.warnings.extend(f"Sheet {sheet.name!r}: {w}" for w in ratio_warnings)

        result.peaks = extract_peaks(result.ratios, config.start, config.stop)
        echo(f"  peaks: {result.peaks}")
        result.sorted_ratios, result.order = sort_by_peak(result.ratios, result.peaks)

        if config.threshold is not None:
            result.thresholded = apply_threshold(result.ratios, config.threshold)
    except PipelineError as exc:
        raise exc.with_sheet(sheet.name)

    return result


def process_workbook(
    workbook: Workbook,
    config: RunConfig,
    *,
    echo: Echo = _noop,
    cancel: threading.Event | None = None,
) -> list[SheetResult]:
    """Process every sheet of *workbook*, in sheet order.

    With ``config.skip_failed`` a failing sheet is returned as a result
    carrying its error; otherwise the first error (in sheet order) is raised.
    Setting *cancel* stops the run before the next sheet starts and raises
    :class:`PipelineCancelled`.
    A ``KeyboardInterrupt`` sets *cancel*, drops the sheets still queued and
    propagates once the running sheets finish.
    """
    abort = threading.Event()

    def _run(name: str) -> SheetResult:
        if cancel is not None and cancel.is_set():
            raise PipelineCancelled("run cancelled", sheet=name)
        if abort.is_set():
            raise PipelineCancelled("run aborted after an earlier sheet failed", sheet=name)
        try:
            return process_sheet(workbook[name], config, echo=echo)
        except PipelineError as exc:
            if config.skip_failed:
                return SheetResult(name=name, error=exc)
            abort.set()
            raise

    names = list(workbook)
    if config.workers == 1 or len(names) < 2:
        return [_run(name) for name in names]

    outcomes: list[SheetResult | PipelineError] = []
    executor = ThreadPoolExecutor(max_workers=config.workers)
    try:
        futures = [executor.submit(_run, name) for name in names]
        for future in futures:
            try:
                outcomes.append(future.result())
            except PipelineError as exc:
                outcomes.append(exc)
    except KeyboardInterrupt:
        # Drop queued sheets; running ones finish their current sheet.
        abort.set()
        if cancel is not None:
            cancel.set()
        executor.shutdown(cancel_futures=True)
        raise
    finally:
        executor.shutdown()

    errors = [o for o in outcomes if isinstance(o, PipelineError)]
    fatal = [e for e in errors if not isinstance(e, PipelineCancelled)]
    if fatal:
        raise fatal[0]
    if errors:
        raise errors[0]
    return [o for o in outcomes if isinstance(o, SheetResult)]
