from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import typer

from lexrel.core.config import ReleaseConfig, load_config_or_default
from lexrel.core.errors import ErrorCode
from lexrel.core.result import Err
from lexrel.output.console import ConsoleProtocol, RichConsole

REPO_ROOT_ENV = "LEXREL_REPO_ROOT"


@dataclass(frozen=True, slots=True)
class CLIContext:
    repo_root: Path
    config: ReleaseConfig
    console: ConsoleProtocol


def resolve_repo_root() -> Path:
    override = os.environ.get(REPO_ROOT_ENV)
    if override:
        return Path(override)
    return Path.cwd()


def build_context(*, json_output: bool = False) -> CLIContext:
    """Resolve the repository and its release.toml.

    With ``json_output`` the console writes to stderr so stdout carries only
    the JSON document.
    """
    repo_root = resolve_repo_root()
    config_result = load_config_or_default(repo_root)
    if isinstance(config_result, Err):
        typer.echo(f"error: {config_result.error.message}", err=True)
        raise typer.Exit(code=int(ErrorCode.FAILURE))

    return CLIContext(
        repo_root=repo_root,
        config=config_result.value,
        console=RichConsole(stderr=json_output),
    )
