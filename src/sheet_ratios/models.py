"""Data models used across the package."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from numbers import Integral, Real
from typing import Any

import pandas as pd

from sheet_ratios import DATA_START_LABEL
from sheet_ratios.columns import column_labels
from sheet_ratios.errors import MissingMarkerRow, PipelineError


def _to_non_negative_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, Integral):
        raise TypeError(f"{field_name} must be an integer")
    result = int(value)
    if result < 0:
        raise ValueError(f"{field_name} must be >= 0")
    return result


def _to_string_list(values: Sequence[Any] | None, field_name: str) -> list[str]:
    if values is None:
        return []
    if isinstance(values, str):
        raise TypeError(f"{field_name} must be a sequence of strings")
    normalized: list[str] = []
    for item in values:
        if not isinstance(item, str):
            raise TypeError(f"{field_name} items must be strings")
        normalized.append(item)
    return normalized


# ── Configuration ────────────────────────────────────────────────


@dataclass
class RunConfig:
    """Settings for one batch run.

    ``threshold=None`` leaves the threshold extension switched off.
    """

    marker_label: str = DATA_START_LABEL
    trim: int = 450
    start: int = 30
    stop: int = 360
    threshold: float | None = None
    verbose: bool = False
    print_order: bool = True
    add_chart: bool = False
    workers: int = 1
    skip_failed: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.marker_label, str) or not self.marker_label:
            raise ValueError("marker_label must be a non-empty string")
        self.trim = _to_non_negative_int(self.trim, "trim")
        self.start = _to_non_negative_int(self.start, "start")
        self.stop = _to_non_negative_int(self.stop, "stop")
        self.workers = _to_non_negative_int(self.workers, "workers")
        if self.workers < 1:
            raise ValueError("workers must be >= 1")
        if self.threshold is not None:
            if isinstance(self.threshold, bool) or not isinstance(self.threshold, Real):
                raise TypeError("threshold must be a number")
            self.threshold = float(self.threshold)
            if not math.isfinite(self.threshold):
                raise ValueError("threshold must be finite")

    def to_dict(self) -> dict[str, Any]:
        return {
            "marker_label": self.marker_label,
            "trim": self.trim,
            "start": self.start,
            "stop": self.stop,
            "threshold": self.threshold,
            "verbose": self.verbose,
            "print_order": self.print_order,
            "add_chart": self.add_chart,
            "workers": self.workers,
            "skip_failed": self.skip_failed,
        }


# ── Source sheets ────────────────────────────────────────────────


@dataclass
class SheetMatrix:
    """Raw cell grid of one source sheet, every cell as text."""

    name: str
    rows: list[list[str]] = field(default_factory=list)

    def __post_init__(self) -> None:
        width = max((len(row) for row in self.rows), default=0)
        self.rows = [
            [str(cell) for cell in row] + [""] * (width - len(row)) for row in self.rows
        ]

    def dimensions(self) -> tuple[int, int]:
        """Return ``(row_count, col_count)``."""
        if not self.rows:
            return 0, 0
        return len(self.rows), len(self.rows[0])

    def first_row_matching(self, label: str) -> int:
        """Return the index of the first row whose first cell equals *label*."""
        for idx, row in enumerate(self.rows):
            if row and row[0] == label:
                return idx
        raise MissingMarkerRow(
            f"did not find a row with label {label!r} in column A", sheet=self.name
        )


Workbook = dict[str, SheetMatrix]
"""Source workbook: sheet name -> matrix, in sheet order."""


# ── Derived tables ───────────────────────────────────────────────


@dataclass
class ColumnTable:
    """A derived sheet: one header row over columns of floats.

    ``data`` columns are labelled ``A, B, ...`` by output position; the
    header text lives in ``headers`` because it may repeat.
    """

    headers: list[str] = field(default_factory=list)
    data: pd.DataFrame = field(default_factory=pd.DataFrame)

    def __post_init__(self) -> None:
        self.headers = _to_string_list(self.headers, "headers")
        if len(self.headers) != len(self.data.columns):
            raise ValueError("headers must have one entry per data column")

    @classmethod
    def from_columns(
        cls, headers: Sequence[str], columns: Sequence[Sequence[float]]
    ) -> ColumnTable:
        if len(headers) != len(columns):
            raise ValueError("headers must have one entry per column")
        labels = column_labels(len(columns))
        data = pd.DataFrame(
            {label: pd.Series(list(values), dtype="float64") for label, values in zip(labels, columns)},
            columns=labels,
        )
        return cls(headers=list(headers), data=data)

    @property
    def n_columns(self) -> int:
        return len(self.headers)

    @property
    def n_rows(self) -> int:
        """Data rows, header excluded."""
        return len(self.data)

    @property
    def is_empty(self) -> bool:
        return self.n_columns == 0

    def column(self, idx: int) -> list[float]:
        return [float(v) for v in self.data.iloc[:, idx]]

    def to_rows(self) -> list[list[Any]]:
        """Return the header row followed by the data rows."""
        if self.is_empty:
            return []
        body = [[float(v) for v in row] for row in self.data.itertuples(index=False, name=None)]
        return [list(self.headers), *body]


@dataclass
class SheetResult:
    """Everything derived from one source sheet."""

    name: str
    data_start: int = 0
    corrected: ColumnTable = field(default_factory=ColumnTable)
    ratios: ColumnTable = field(default_factory=ColumnTable)
    sorted_ratios: ColumnTable = field(default_factory=ColumnTable)
    peaks: dict[int, float] = field(default_factory=dict)
    order: list[int] = field(default_factory=list)
    thresholded: ColumnTable | None = None
    warnings: list[str] = field(default_factory=list)
    error: PipelineError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ── Run artifacts ────────────────────────────────────────────────


@dataclass
class RunReport:
    """Batch summary emitted alongside every run.

    Contract invariant: ``sheets_ok + len(failed_sheets) == sheets_in``.
    """

    sheets_in: int = 0
    sheets_ok: int = 0
    failed_sheets: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.sheets_in = _to_non_negative_int(self.sheets_in, "sheets_in")
        self.sheets_ok = _to_non_negative_int(self.sheets_ok, "sheets_ok")
        self.failed_sheets = list(self.failed_sheets or [])
        self.warnings = _to_string_list(self.warnings, "warnings")
        if self.sheets_ok + len(self.failed_sheets) != self.sheets_in:
            raise ValueError("sheets_ok + failed_sheets must equal sheets_in")

    @classmethod
    def from_results(cls, results: Sequence[SheetResult]) -> RunReport:
        failed = [r.error.to_dict() for r in results if r.error is not None]
        warnings = [w for r in results for w in r.warnings]
        return cls(
            sheets_in=len(results),
            sheets_ok=len(results) - len(failed),
            failed_sheets=failed,
            warnings=warnings,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "sheets_in": self.sheets_in,
            "sheets_ok": self.sheets_ok,
            "failed_sheets": [dict(item) for item in self.failed_sheets],
            "warnings": list(self.warnings),
        }


@dataclass
class RunManifest:
    """Audit-trail manifest for a single batch run."""

    tool: str = "sheet-ratios"
    version: str = ""
    run_id: str = ""
    input_path: str = ""
    output_dir: str = ""
    created_at_utc: str = ""
    sheets_in: int = 0
    sheets_ok: int = 0
    sha256: str = ""
    status: str = "success"
    error_code: int | None = None
    error_message: str = ""
    outputs: list[str] = field(default_factory=list)
    config: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.sheets_in = _to_non_negative_int(self.sheets_in, "sheets_in")
        self.sheets_ok = _to_non_negative_int(self.sheets_ok, "sheets_ok")
        self.outputs = _to_string_list(self.outputs, "outputs")
        if self.status not in {"success", "failed", "cancelled"}:
            raise ValueError(f"Invalid status: {self.status!r}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool": self.tool,
            "version": self.version,
            "run_id": self.run_id,
            "input_path": self.input_path,
            "output_dir": self.output_dir,
            "created_at_utc": self.created_at_utc,
            "sheets_in": self.sheets_in,
            "sheets_ok": self.sheets_ok,
            "sha256": self.sha256,
            "status": self.status,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "outputs": list(self.outputs),
            "config": dict(self.config),
        }
