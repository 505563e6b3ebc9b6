from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer

from .catalog import Catalog, build_default_catalog, category_label
from .config import as_dict as config_as_dict, get_config
from .engine import PrescriptionError
from .env import get_env
from .models import ValidationError
from .services import DataPaths, MicrodoseSession, parse_category, render_prescription
from .storage import cleanup_processed_logs, rollup_sessions

LOGGER = logging.getLogger(__name__)

app = typer.Typer(help="Prescribe short VO2, grease-the-groove and mobility microdoses.")

PROMPT_HELP = "Press Enter when done, 's' to skip, 'h' to mark 'harder next time'"


def _fail(message: str, *, code: int = 1) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """Attach a stderr handler to the package logger; ``level`` falls back to ``MICRODOSE_LOG_LEVEL``."""
    name = (level or get_env("LOG_LEVEL", "WARNING") or "WARNING").upper()
    numeric = getattr(logging, name, None)
    if not isinstance(numeric, int):
        numeric = logging.WARNING

    log = logging.getLogger("microdose_tracker")
    log.setLevel(numeric)
    for handler in list(log.handlers):
        log.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setLevel(numeric)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    log.addHandler(handler)
    return log


def _resolve_paths(data_dir: Optional[Path]) -> DataPaths:
    paths = DataPaths.from_dir((data_dir or get_config().resolved_data_dir).expanduser())
    LOGGER.debug("Using data directory %s", paths.data_dir)
    return paths


def _require_valid_catalog() -> Catalog:
    catalog = build_default_catalog()
    errors = catalog.validate()
    if errors:
        typer.secho("Catalog validation errors:", fg=typer.colors.RED, err=True)
        for error in errors:
            typer.secho(f"  - {error}", fg=typer.colors.RED, err=True)
        _fail("Invalid catalog; refusing to prescribe.")
    return catalog


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show INFO-level log output.",
    ),
) -> None:
    """Run `now` when no sub-command is given."""
    configure_logging("INFO" if verbose else None)
    if ctx.invoked_subcommand is None:
        now(category=None, dry_run=False, auto_complete=False, data_dir=None)


@app.command()
def now(
    category: Optional[str] = typer.Option(
        None,
        "--category",
        "-c",
        help="Force a category (vo2, gtg, mobility).",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Show the prescription without logging anything.",
    ),
    auto_complete: bool = typer.Option(
        False,
        "--auto-complete",
        help="Log the prescription as done without prompting.",
    ),
    data_dir: Optional[Path] = typer.Option(
        None,
        "--data-dir",
        help="Override the data directory.",
    ),
) -> None:
    """
    Show the next microdose and record what you did with it.

    Examples:
        microdose now
        microdose now --category gtg --dry-run
    """
    catalog = _require_valid_catalog()

    target: Optional[str] = None
    try:
        target = parse_category(category)
    except ValidationError as exc:
        typer.secho(f"{exc} Using default selection.", fg=typer.colors.YELLOW, err=True)

    paths = _resolve_paths(data_dir)
    session = MicrodoseSession.load(paths, get_config(), catalog)
    try:
        prescription = session.prescribe(target)
    except PrescriptionError as exc:
        _fail(f"No workout available: {exc}")

    typer.echo(render_prescription(prescription, catalog))

    if dry_run:
        typer.echo("\n[Dry run - not logging session]")
        return

    action = "" if auto_complete else typer.prompt(PROMPT_HELP, default="", show_default=False)
    action = action.strip().lower()

    try:
        if action == "s":
            try:
                following = session.skip()
            except PrescriptionError as exc:
                _fail(f"No workout available: {exc}")
            typer.echo("Session skipped. Next suggestion:\n")
            typer.echo(render_prescription(following, catalog))
        elif action == "h":
            state = session.mark_harder()
            typer.secho("Intensity increased for next time!", fg=typer.colors.GREEN)
            typer.echo(f"  Level: {state.level}")
            typer.echo(f"  Reps: {state.reps}")
            if state.style.label != "Default":
                typer.echo(f"  {state.style.label}")
        else:
            result = session.complete()
            typer.secho(result.confirmation, fg=typer.colors.GREEN)
    except OSError as exc:
        _fail(f"Could not store session: {exc}")


@app.command()
def rollup(
    cleanup: bool = typer.Option(
        False,
        "--cleanup",
        help="Delete archived *.processed logs after rolling up.",
    ),
    data_dir: Optional[Path] = typer.Option(
        None,
        "--data-dir",
        help="Override the data directory.",
    ),
) -> None:
    """Merge the session log into sessions.csv and archive the log."""
    paths = _resolve_paths(data_dir)
    if not paths.log_path.exists():
        typer.echo("No session log found - nothing to roll up.")
        raise typer.Exit(code=0)

    try:
        count = rollup_sessions(paths.log_path, paths.csv_path)
    except (OSError, ValueError) as exc:
        _fail(f"Rollup failed: {exc}")

    typer.echo(f"Rolled up {count} sessions to CSV")
    typer.echo(f"  CSV: {paths.csv_path}")

    if cleanup:
        cleaned = cleanup_processed_logs(paths.wal_dir)
        if cleaned:
            typer.echo(f"Cleaned up {cleaned} processed log files")


@app.command()
def catalog() -> None:
    """List the built-in microdoses and validate the catalog."""
    items = build_default_catalog()
    for definition in sorted(items.microdoses.values(), key=lambda item: (item.category, item.id)):
        minutes = definition.suggested_duration_seconds / 60
        typer.echo(f"{category_label(definition.category):<9} {definition.id:<24} {definition.name} (~{minutes:.0f} min)")

    errors = items.validate()
    if errors:
        for error in errors:
            typer.secho(f"  - {error}", fg=typer.colors.RED, err=True)
        _fail(f"Catalog has {len(errors)} validation error(s).")
    typer.echo(f"{len(items.microdoses)} microdoses, {len(items.movements)} movements; catalog is valid.")


@app.command("config")
def show_config() -> None:
    """Print the effective configuration as JSON."""
    typer.echo(json.dumps(config_as_dict(), indent=2))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
