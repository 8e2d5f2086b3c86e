from __future__ import annotations

import os
from pathlib import Path

import typer

from lexrel import __version__
from lexrel.cli.commands.citation import citation
from lexrel.cli.commands.cut import cut
from lexrel.cli.commands.doctor import doctor
from lexrel.cli.commands.prepare import prepare
from lexrel.cli.context import REPO_ROOT_ENV
from lexrel.core.errors import ErrorCode

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
)


app.command()(doctor)
app.command()(prepare)
app.command()(cut)
app.command()(citation)


@app.callback()
def _main(  # pyright: ignore[reportUnusedFunction]
    version: bool = typer.Option(False, "--version", help="Show version and exit."),
    repo: Path | None = typer.Option(
        None,
        "--repo",
        help="Repository root (default: current directory)",
    ),
) -> None:
    if version:
        typer.echo(__version__)
        raise typer.Exit(code=0)

    if repo is not None:
        try:
            root = repo.expanduser().resolve()
        except OSError as e:
            typer.echo(f"error: invalid --repo: {e}", err=True)
            raise typer.Exit(code=int(ErrorCode.USAGE))

        if not root.is_dir():
            typer.echo(f"error: --repo '{root}' is not a directory", err=True)
            raise typer.Exit(code=int(ErrorCode.USAGE))

        os.environ[REPO_ROOT_ENV] = str(root)


def main() -> None:
    app()
