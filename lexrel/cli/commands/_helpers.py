"""Shared helpers for CLI commands."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, NoReturn, TypeVar

import typer

from lexrel.core.errors import ErrorCode
from lexrel.core.result import Err, Result
from lexrel.output.console import Style

if TYPE_CHECKING:
    from lexrel.cli.context import CLIContext

T = TypeVar("T")
E = TypeVar("E")


def exit_on_error(
    result: Result[T, E],
    ctx: CLIContext,
    error_code: ErrorCode = ErrorCode.FAILURE,
) -> None:
    """Exit with error if result is Err, otherwise return.

    Expects error objects to have 'message' and optional 'hint' attributes.
    """
    if isinstance(result, Err):
        error = result.error
        message: str = getattr(error, "message", str(error))
        hint: str | None = getattr(error, "hint", None)
        ctx.console.error(message)
        if hint:
            ctx.console.print(f"hint: {hint}", Style.DIM)
        raise typer.Exit(code=int(error_code))


def exit_with_code(code: int) -> NoReturn:
    raise typer.Exit(code=code)


def echo_json(payload: object) -> None:
    """Write one JSON document to stdout, untouched by Rich."""
    typer.echo(json.dumps(payload, indent=2))


def ask(question: str) -> bool:
    return typer.confirm(question, default=False)
