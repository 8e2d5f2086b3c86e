from __future__ import annotations

import typer

from lexrel.cli.commands._helpers import echo_json, exit_with_code
from lexrel.cli.context import build_context
from lexrel.core.errors import ErrorCode
from lexrel.services.release.doctor import print_report, run_doctor


def doctor(
    tag: str | None = typer.Option(None, "--tag", help="Release tag to check (vX.Y.Z)"),
    remote: str | None = typer.Option(None, "--remote", help="Git remote (default: origin)"),
    strict: bool = typer.Option(False, "--strict", help="Treat warnings as failures"),
    json_output: bool = typer.Option(False, "--json", help="Print a JSON report"),
) -> None:
    """Check that the repository is ready for a release."""
    ctx = build_context(json_output=json_output)
    report = run_doctor(
        repo_root=ctx.repo_root,
        config=ctx.config,
        tag=tag,
        remote=remote,
        strict=strict,
    )

    if json_output:
        echo_json(report.to_json())
    else:
        print_report(report, ctx.console)

    if not report.ok:
        exit_with_code(int(ErrorCode.FAILURE))
