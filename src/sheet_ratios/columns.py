"""Spreadsheet-style column letters."""

from __future__ import annotations

from numbers import Integral
from string import ascii_uppercase

from sheet_ratios.errors import OutOfRange

_ALPHABET = ascii_uppercase
# Two-letter labels only ever start with A..J.
_PREFIXES = _ALPHABET[:10]

MAX_COLUMN: int = len(_ALPHABET) * (1 + len(_PREFIXES))


def column_label(n: int) -> str:
    """Return the letter label of 1-based column *n* (1 -> A, 27 -> AA, 286 -> JZ).

    Raises
    ------
    OutOfRange
        If *n* is outside ``1..MAX_COLUMN``.
    """
    if isinstance(n, bool) or not isinstance(n, Integral):
        raise TypeError("column ordinal must be an integer")
    if n < 1 or n > MAX_COLUMN:
        raise OutOfRange(f"column {n} is outside the supported range 1..{MAX_COLUMN}")

    idx = int(n) - 1
    run, pos = divmod(idx, len(_ALPHABET))
    if run == 0:
        return _ALPHABET[pos]
    return f"{_PREFIXES[run - 1]}{_ALPHABET[pos]}"


def column_labels(count: int) -> list[str]:
    """Return the first *count* labels, ``["A", "B", ...]``."""
    return [column_label(i) for i in range(1, count + 1)]
