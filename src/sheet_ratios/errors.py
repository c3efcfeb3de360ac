"""Pipeline error taxonomy."""

from __future__ import annotations


class PipelineError(ValueError):
    """Base class for errors raised while transforming a sheet.

    ``sheet``, ``row`` (0-based) and ``column`` (spreadsheet letter) are
    filled in when known so a batch failure can point at the offending cell.
    """

    def __init__(
        self,
        message: str,
        *,
        sheet: str | None = None,
        row: int | None = None,
        column: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.sheet = sheet
        self.row = row
        self.column = column

    def with_sheet(self, sheet: str) -> PipelineError:
        if self.sheet is None:
            self.sheet = sheet
        return self

    def location(self) -> str:
        parts: list[str] = []
        if self.sheet is not None:
            parts.append(f"sheet {self.sheet!r}")
        if self.column is not None and self.row is not None:
            parts.append(f"cell {self.column}{self.row + 1}")
        elif self.row is not None:
            parts.append(f"row {self.row + 1}")
        return ", ".join(parts)

    def __str__(self) -> str:
        where = self.location()
        return f"{where}: {self.message}" if where else self.message

    def to_dict(self) -> dict[str, object]:
        return {
            "sheet": self.sheet,
            "error": type(self).__name__,
            "message": self.message,
            "row": self.row,
            "column": self.column,
        }


class DataFormatError(PipelineError):
    """A cell expected to hold a decimal number does not parse."""


class InvariantViolation(PipelineError):
    """The sheet does not have the expected trailing background-column layout."""


class OutOfRange(PipelineError):
    """Column ordinal outside the supported letter-labeling domain."""


class MissingMarkerRow(PipelineError):
    """The data-start marker label is absent from column 0 (recoverable)."""


class EmptyWindow(PipelineError):
    """The peak-search window holds no rows after clamping."""


class PipelineCancelled(PipelineError):
    """A batch run was cancelled before all sheets were processed."""
