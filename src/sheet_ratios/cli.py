"""CLI entry point for sheet-ratios."""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table as RichTable

from sheet_ratios import __version__
from sheet_ratios.errors import MissingMarkerRow, PipelineCancelled, PipelineError
from sheet_ratios.io import load_workbook, write_json
from sheet_ratios.models import RunConfig, RunManifest, RunReport, SheetResult
from sheet_ratios.pipeline import process_workbook, retained_columns
from sheet_ratios.qc import write_run_report
from sheet_ratios.report import write_workbooks
from sheet_ratios.utils import RunClock, sha256_file

app = typer.Typer(
    name="sratios",
    help="sheet-ratios — Background-correct, ratio and peak-sort ratiometric workbooks.",
    add_completion=False,
    no_args_is_help=True,
)
console = Console()

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _noop(*_args: object, **_kwargs: object) -> None:
    return None


def _printer(quiet: bool) -> Callable[..., None]:
    return _noop if quiet else console.print


def _err(msg: str) -> None:
    console.print(f"[red]x[/red] {msg}")


# ── Helpers ──────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"sheet-ratios v{__version__}")
        raise typer.Exit()


def _load_profile(profile: Path | None) -> dict[str, str]:
    """Return ``{key: raw value}`` from a profile file of ``key=value`` lines."""
    if not profile:
        return {}
    if not profile.exists():
        raise ValueError(f"Profile not found: {profile} (expected lines like trim=450)")
    if profile.is_dir():
        raise ValueError(f"Profile is a directory, not a file: {profile}")
    try:
        text = profile.read_text(encoding="utf-8")
    except OSError as exc:
        raise ValueError(f"Cannot read profile {profile}: {exc}") from exc

    values: dict[str, str] = {}
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if "=" not in stripped:
            raise ValueError(f"Invalid profile line: {stripped!r}  (expected key=value)")
        key, raw = stripped.split("=", 1)
        values[key.strip().replace("-", "_")] = raw.strip()
    return values


def _coerce_setting(key: str, raw: str, default: Any) -> Any:
    if isinstance(default, bool):
        lowered = raw.lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ValueError(f"Invalid boolean for {key}: {raw!r}")
    try:
        if isinstance(default, int):
            return int(raw)
        if key == "threshold":
            return None if raw.lower() in {"", "none"} else float(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid value for {key}: {raw!r}") from exc
    return raw


def _build_config(profile_values: dict[str, str], overrides: dict[str, Any]) -> RunConfig:
    """Merge defaults < profile < CLI options into a validated config."""
    defaults = RunConfig()
    known = {f.name for f in dataclasses.fields(RunConfig)}
    unknown = sorted(set(profile_values) - known)
    if unknown:
        raise ValueError(f"Unknown profile setting(s): {', '.join(unknown)}")

    settings: dict[str, Any] = {
        key: _coerce_setting(key, raw, getattr(defaults, key))
        for key, raw in profile_values.items()
    }
    settings.update({key: value for key, value in overrides.items() if value is not None})
    try:
        return RunConfig(**settings)
    except TypeError as exc:
        raise ValueError(str(exc)) from exc


def _write_manifest(
    out_dir: Path,
    input_file: Path,
    run_id: str,
    created_at: str,
    report: RunReport,
    *,
    config: RunConfig | None = None,
    outputs: Sequence[Path] = (),
    status: str = "success",
    error_code: int | None = None,
    error_message: str = "",
) -> Path:
    sha256 = ""
    try:
        sha256 = sha256_file(input_file)
    except OSError:
        pass

    manifest = RunManifest(
        version=__version__,
        run_id=run_id,
        input_path=str(input_file.resolve()),
        output_dir=str(out_dir.resolve()),
        created_at_utc=created_at,
        sheets_in=report.sheets_in,
        sheets_ok=report.sheets_ok,
        sha256=sha256,
        status=status,
        error_code=error_code,
        error_message=error_message,
        outputs=[str(path) for path in outputs],
        config=config.to_dict() if config else {},
    )
    return write_json(out_dir / "run_manifest.json", manifest.to_dict())


def _write_failure_artifacts(
    out_dir: Path,
    input_file: Path,
    run_id: str,
    created_at: str,
    *,
    message: str,
    config: RunConfig | None = None,
    error: PipelineError | None = None,
    error_code: int = 2,
    status: str = "failed",
) -> tuple[Path, Path]:
    failed = [error.to_dict()] if error is not None and error.sheet is not None else []
    report = RunReport(
        sheets_in=len(failed),
        sheets_ok=0,
        failed_sheets=failed,
        warnings=[message],
    )
    report_path = write_run_report(out_dir, report)
    manifest_path = _write_manifest(
        out_dir,
        input_file,
        run_id,
        created_at,
        report,
        config=config,
        status=status,
        error_code=error_code,
        error_message=message,
    )
    return report_path, manifest_path


def _fail(
    out_dir: Path,
    input_file: Path,
    run_id: str,
    created_at: str,
    *,
    message: str,
    code: int = 2,
    **kwargs: Any,
) -> typer.Exit:
    report_path, manifest_path = _write_failure_artifacts(
        out_dir, input_file, run_id, created_at, message=message, error_code=code, **kwargs
    )
    _err(message)
    console.print(f"  Run report -> {report_path}")
    console.print(f"  Manifest   -> {manifest_path}")
    return typer.Exit(code=code)


def _print_peak_order(result: SheetResult) -> None:
    tbl = RichTable(title=f"Peak order — {result.name}", show_lines=False)
    tbl.add_column("Rank", justify="right")
    tbl.add_column("Column", style="bold")
    tbl.add_column("Peak", justify="right")
    for rank, idx in enumerate(result.order, start=1):
        tbl.add_row(str(rank), result.ratios.headers[idx], f"{result.peaks[idx]:.4g}")
    console.print(tbl)


# ── Callbacks ────────────────────────────────────────────────────


@app.callback()
def main(
    version: bool | None = typer.Option(
        None, "--version", "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """sheet-ratios CLI."""


# ── run command ──────────────────────────────────────────────────


@app.command()
def run(
    input_file: Path = typer.Option(
        ..., "--input", "-i",
        help="Path to the XLSX (or CSV) workbook with raw readings.",
        exists=True, readable=True,
    ),
    out_dir: Path = typer.Option(
        Path("output"), "--out-dir", "-o",
        help="Output directory for workbooks + run report + manifest.",
    ),
    profile: Path | None = typer.Option(
        None, "--profile",
        help="Profile file with key=value settings (e.g. trim=450, start=30).",
    ),
    trim: int | None = typer.Option(
        None, "--trim",
        help="Keep at most this many measurements per ratio column [default: 450].",
    ),
    start: int | None = typer.Option(
        None, "--start",
        help="First row of the peak-search window [default: 30].",
    ),
    stop: int | None = typer.Option(
        None, "--stop",
        help="Row after the last one of the peak-search window [default: 360].",
    ),
    threshold: float | None = typer.Option(
        None, "--threshold",
        help=(
            "Also write a workbook keeping only ratio columns with a value above "
            "this threshold (0 keeps every column)."
        ),
    ),
    marker_label: str | None = typer.Option(
        None, "--marker-label",
        help="Column-A label of the header row [default: 'Time (sec)'].",
    ),
    workers: int | None = typer.Option(
        None, "--workers", "-w",
        help="Process this many sheets in parallel [default: 1].",
    ),
    print_order: bool | None = typer.Option(
        None, "--print-order/--no-print-order",
        help="Print the peak order of every sheet [default: on].",
    ),
    add_chart: bool | None = typer.Option(
        None, "--add-chart/--no-add-chart",
        help="Add response-profile line charts to the ratio workbook.",
    ),
    skip_failed: bool | None = typer.Option(
        None, "--skip-failed/--fail-fast",
        help="Skip sheets with malformed data instead of aborting the run.",
    ),
    verbose: bool | None = typer.Option(
        None, "--verbose/--no-verbose",
        help="Print per-column details while processing.",
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q",
        help="Suppress informational output; still writes all artifacts.",
    ),
) -> None:
    """Correct, ratio and peak-sort every sheet of a workbook."""
    echo = _printer(quiet)
    clock = RunClock.now()
    created_at = clock.created_at
    run_id = clock.run_id
    out_dir.mkdir(parents=True, exist_ok=True)
    try:
        config = _build_config(
            _load_profile(profile),
            {
                "trim": trim,
                "start": start,
                "stop": stop,
                "threshold": threshold,
                "marker_label": marker_label,
                "workers": workers,
                "print_order": print_order,
                "add_chart": add_chart,
                "skip_failed": skip_failed,
                "verbose": verbose,
            },
        )
    except ValueError as exc:
        raise _fail(out_dir, input_file, run_id, created_at, message=str(exc))

    if not quiet:
        console.print(Panel(
            f"[bold]sheet-ratios[/bold] v{__version__}\n"
            f"Input:  {input_file}\nOutput: {out_dir}",
            title="Pipeline Start", border_style="blue",
        ))
        if profile:
            console.print(f"  Using profile: {profile}")
        console.print(
            f"  Peak window: [{config.start}, {config.stop}), "
            f"trim={config.trim}, workers={config.workers}"
        )

    # ── Load ─────────────────────────────────────────────────────
    echo("[blue]>[/blue] Loading input file …")
    try:
        workbook = load_workbook(input_file)
    except (FileNotFoundError, ValueError, OSError) as exc:
        raise _fail(out_dir, input_file, run_id, created_at, message=str(exc), config=config)

    echo(f"  {len(workbook)} sheet(s): {', '.join(workbook)}")

    try:
        if not workbook:
            raise _fail(
                out_dir, input_file, run_id, created_at,
                message="Input workbook has no sheets.", config=config,
            )

        # ── Transform ────────────────────────────────────────────
        echo("[blue]>[/blue] Processing sheets …")
        detail = echo if config.verbose else _noop
        try:
            results = process_workbook(workbook, config, echo=detail)
        except PipelineCancelled as exc:
            raise _fail(
                out_dir, input_file, run_id, created_at,
                message=str(exc), config=config,
                code=1, status="cancelled",
            )
        except PipelineError as exc:
            raise _fail(
                out_dir, input_file, run_id, created_at,
                message=str(exc), config=config, error=exc,
            )

        report = RunReport.from_results(results)
        if not quiet:
            for w in report.warnings:
                console.print(f"  [yellow]![/yellow] {w}")
            for failed in report.failed_sheets:
                console.print(
                    f"  [red]x[/red] skipped sheet {failed['sheet']!r}: {failed['message']}"
                )
            console.print(f"  {report.sheets_ok} of {report.sheets_in} sheet(s) processed")

        if config.print_order and not quiet:
            for result in results:
                if result.ok and result.order:
                    _print_peak_order(result)

        # ── Write workbooks ──────────────────────────────────────
        echo("[blue]>[/blue] Writing workbooks …")
        outputs = write_workbooks(
            out_dir,
            results,
            clock.stamp,
            add_chart=config.add_chart,
            threshold=config.threshold is not None,
        )
        for path in outputs:
            echo(f"  Workbook -> {path}")

        report_path = write_run_report(out_dir, report)
        echo(f"  Run report -> {report_path}")
        manifest_path = _write_manifest(
            out_dir, input_file, run_id, created_at, report, config=config, outputs=outputs,
        )
        echo(f"  Manifest -> {manifest_path}")

        if not quiet:
            console.print(Panel(
                f"[green]Done[/green] — {report.sheets_ok} sheet(s) -> {out_dir}",
                title="Pipeline Complete", border_style="green",
            ))
    except typer.Exit:
        raise
    except KeyboardInterrupt:
        raise _fail(
            out_dir, input_file, run_id, created_at,
            message="Run cancelled by user", config=config,
            code=130, status="cancelled",
        )
    except Exception as exc:
        raise _fail(
            out_dir, input_file, run_id, created_at,
            message=f"Unexpected internal error: {exc}", config=config,
            code=1,
        )


# ── inspect command ──────────────────────────────────────────────


@app.command()
def inspect(
    input_file: Path = typer.Option(
        ..., "--input", "-i",
        help="Path to the XLSX (or CSV) workbook with raw readings.",
        exists=True, readable=True,
    ),
    marker_label: str = typer.Option(
        RunConfig().marker_label, "--marker-label",
        help="Column-A label of the header row.",
    ),
) -> None:
    """Show the layout of every sheet without writing anything."""
    try:
        workbook = load_workbook(input_file)
    except (FileNotFoundError, ValueError, OSError) as exc:
        _err(str(exc))
        raise typer.Exit(code=2)

    tbl = RichTable(title="Workbook Layout", show_lines=True)
    tbl.add_column("Sheet", style="bold")
    tbl.add_column("Rows x Cols")
    tbl.add_column("Data start")
    tbl.add_column("Corrected")
    tbl.add_column("Ratios")

    for name, sheet in workbook.items():
        n_rows, n_cols = sheet.dimensions()
        try:
            data_start = f"row {sheet.first_row_matching(marker_label) + 1}"
        except MissingMarkerRow:
            data_start = "[yellow]not found[/yellow]"
        n_corrected = len(retained_columns(n_cols))
        tbl.add_row(
            name,
            f"{n_rows} x {n_cols}",
            data_start,
            str(n_corrected),
            str(n_corrected // 2),
        )
    console.print(tbl)
