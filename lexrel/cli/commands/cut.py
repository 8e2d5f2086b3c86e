from __future__ import annotations

import typer

from lexrel.cli.commands._helpers import ask, exit_on_error
from lexrel.cli.context import build_context
from lexrel.services.release.confirm import ConfirmPolicy
from lexrel.services.release.cut import CutRequest, cut_release


def cut(
    tag: str = typer.Option(..., "--tag", help="Release tag (vX.Y.Z)"),
    remote: str | None = typer.Option(None, "--remote", help="Git remote (default: origin)"),
    dev: str | None = typer.Option(None, "--dev", help="Integration branch (default: dev)"),
    main: str | None = typer.Option(None, "--main", help="Stable branch (default: main)"),
    date: str | None = typer.Option(None, "--date", help="Release date (default: today, UTC)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print actions without mutating"),
    interactive: bool = typer.Option(False, "--interactive", help="Prompt before each step"),
    no_watch_prepare: bool = typer.Option(
        False, "--no-watch-prepare", help="Do not wait for the prep PR to merge"
    ),
    no_watch_main: bool = typer.Option(
        False, "--no-watch-main", help="Do not wait for build-site on main"
    ),
    no_watch_release: bool = typer.Option(
        False, "--no-watch-release", help="Do not watch the release-helper run"
    ),
    watch_timeout: float | None = typer.Option(
        None, "--watch-timeout", min=1, help="Seconds per wait (default: 3600)"
    ),
    no_doctor: bool = typer.Option(False, "--no-doctor", help="Skip the release doctor passes"),
) -> None:
    """Prepare, promote dev to main and dispatch the release helper."""
    ctx = build_context()
    policy = ConfirmPolicy.from_flags(interactive=interactive, dry_run=dry_run, prompt=ask)

    result = cut_release(
        CutRequest(
            tag=tag,
            date=date,
            remote=remote,
            dev=dev,
            main=main,
            watch_prepare=not no_watch_prepare,
            watch_main=not no_watch_main,
            watch_release=not no_watch_release,
            watch_timeout=watch_timeout,
            run_doctor=not no_doctor,
        ),
        repo_root=ctx.repo_root,
        config=ctx.config,
        policy=policy,
        console=ctx.console,
    )
    exit_on_error(result, ctx)
