from __future__ import annotations

from pathlib import Path

import typer

from lexrel.cli.commands._helpers import exit_on_error
from lexrel.cli.context import build_context
from lexrel.core.result import Err
from lexrel.services.release.citation import CitationUpdate, update_citation_file
from lexrel.services.release.tags import ensure_release_date


def citation(
    commit: str = typer.Option(..., "--commit", help="Commit SHA to record"),
    date: str = typer.Option(..., "--date", help="date-generated (YYYY-MM-DD)"),
    date_released: str | None = typer.Option(
        None, "--date-released", help="date-released (YYYY-MM-DD)"
    ),
    file: Path | None = typer.Option(None, "--file", help="Citation file (default: CITATION.cff)"),
) -> None:
    """Upsert commit/date metadata in CITATION.cff."""
    ctx = build_context()

    for value in (date, date_released):
        if value is not None:
            exit_on_error(ensure_release_date(value), ctx)

    path = file if file is not None else ctx.repo_root / ctx.config.paths.citation
    result = update_citation_file(
        path,
        CitationUpdate(commit=commit.strip(), date_generated=date, date_released=date_released),
    )
    exit_on_error(result, ctx)
    if isinstance(result, Err):
        return

    if result.value:
        ctx.console.success(f"Updated {path}")
    else:
        ctx.console.success(f"{path} already up to date")
