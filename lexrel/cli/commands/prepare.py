from __future__ import annotations

import typer

from lexrel.cli.commands._helpers import ask, echo_json, exit_on_error
from lexrel.cli.context import build_context
from lexrel.core.result import Err
from lexrel.services.release.confirm import ConfirmPolicy
from lexrel.services.release.prepare import PrepareRequest, prepare_release


def prepare(
    tag: str = typer.Option(..., "--tag", help="Release tag (vX.Y.Z)"),
    date: str | None = typer.Option(None, "--date", help="Release date (default: today, UTC)"),
    remote: str | None = typer.Option(None, "--remote", help="Git remote (default: origin)"),
    dev: str | None = typer.Option(None, "--dev", help="Integration branch (default: dev)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print actions without mutating"),
    no_watch_pr: bool = typer.Option(False, "--no-watch-pr", help="Do not wait for the merge"),
    watch_timeout: float | None = typer.Option(
        None, "--watch-timeout", min=1, help="Seconds to wait for the merge (default: 3600)"
    ),
    json_output: bool = typer.Option(False, "--json", help="Print a JSON summary"),
    interactive: bool = typer.Option(False, "--interactive", help="Prompt before each step"),
    yes: bool = typer.Option(False, "--yes", help="Approve every confirmation"),
    non_interactive: bool = typer.Option(False, "--non-interactive", help="Never prompt"),
) -> None:
    """Open (or refresh) the citation metadata PR for a release."""
    ctx = build_context(json_output=json_output)
    policy = ConfirmPolicy(
        yes=yes or not interactive,
        dry_run=dry_run,
        non_interactive=non_interactive or not interactive,
        prompt=ask,
    )

    result = prepare_release(
        PrepareRequest(
            tag=tag,
            date=date,
            remote=remote,
            dev=dev,
            watch_pr=not no_watch_pr,
            watch_timeout=watch_timeout,
        ),
        repo_root=ctx.repo_root,
        config=ctx.config,
        policy=policy,
        console=ctx.console,
    )
    exit_on_error(result, ctx)
    if isinstance(result, Err):
        return

    if json_output:
        echo_json(result.value.to_json())
