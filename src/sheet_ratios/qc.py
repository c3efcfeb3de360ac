"""Run report persistence."""

from __future__ import annotations

from pathlib import Path

from sheet_ratios.io import write_json
from sheet_ratios.models import RunReport


def write_run_report(out_dir: Path, report: RunReport) -> Path:
    """Write ``run_report.json`` into *out_dir* and return the path."""
    return write_json(out_dir / "run_report.json", report.to_dict())
