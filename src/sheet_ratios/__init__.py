"""sheet-ratios — Background-correct, ratio and peak-sort ratiometric workbooks."""

__version__ = "0.2.0"

DATA_START_LABEL: str = "Time (sec)"
"""Column-0 label of the header row that precedes the data rows."""

SKIP_EVERY: int = 3
"""Every third acquisition channel is not wanted."""

BACKGROUND_COLUMNS: int = 2
"""Trailing background columns (numerator, denominator wavelengths)."""
