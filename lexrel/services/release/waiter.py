"""Bounded polling for PR merges and GitHub Actions runs.

Every wait follows the same shape: poll at least once, then sleep
``min(interval, remaining)`` until the monotonic deadline passes. The total
time spent is therefore at most ``timeout`` plus one poll.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from time import monotonic, sleep
from typing import TypeVar

from lexrel.core.config import MIN_POLL_INTERVAL_SECONDS
from lexrel.core.result import Err, Ok, Result
from lexrel.output.console import ConsoleProtocol, Style
from lexrel.services.release.errors import ReleaseError
from lexrel.services.release.gh import list_run_ids, pr_state, watch_run
from lexrel.services.release.timeouts import DISPATCH_SNAPSHOT_LIMIT

T = TypeVar("T")


def _poll(check: Callable[[], T | None], *, timeout: float, interval: float) -> T | None:
    interval = max(interval, MIN_POLL_INTERVAL_SECONDS)
    deadline = monotonic() + max(timeout, 0.0)
    while True:
        found = check()
        if found is not None:
            return found
        remaining = deadline - monotonic()
        if remaining <= 0:
            return None
        sleep(min(interval, remaining))


def wait_for_pr_merged(
    *,
    repo_root: Path,
    pr: int,
    timeout: float,
    interval: float = 5.0,
    console: ConsoleProtocol,
) -> Result[None, ReleaseError]:
    console.print(f"Waiting for PR #{pr} to merge (timeout {timeout:.0f}s)", Style.DIM)

    def check() -> str | None:
        state = pr_state(repo_root=repo_root, pr=pr)
        # A failed query is "unknown": keep polling.
        if isinstance(state, Err) or state.value not in ("MERGED", "CLOSED"):
            return None
        return state.value

    outcome = _poll(check, timeout=timeout, interval=interval)
    if outcome is None:
        return Err(
            ReleaseError(
                kind="workflow_timeout",
                message=f"timed out waiting for PR #{pr} to merge",
                hint="Re-run once the PR has merged; the prepare step is idempotent.",
            )
        )
    if outcome == "CLOSED":
        return Err(
            ReleaseError(
                kind="pr_closed_without_merge",
                message=f"PR #{pr} was closed without merge",
            )
        )
    return Ok(None)


def wait_for_workflow_run_by_commit(
    *,
    repo_root: Path,
    workflow: str,
    branch: str,
    commit: str,
    timeout: float,
    event: str = "push",
    interval: float = 5.0,
    console: ConsoleProtocol,
) -> Result[int, ReleaseError]:
    """Find the run of ``workflow`` for ``commit`` and watch it to completion."""
    console.print(f"Waiting for '{workflow}' on '{branch}' at {commit[:12]}", Style.DIM)

    def check() -> int | None:
        ids = list_run_ids(
            repo_root=repo_root, workflow=workflow, branch=branch, event=event, commit=commit
        )
        if isinstance(ids, Err) or not ids.value:
            return None
        return ids.value[0]

    run_id = _poll(check, timeout=timeout, interval=interval)
    if run_id is None:
        return Err(
            ReleaseError(
                kind="workflow_timeout",
                message=(
                    f"timed out waiting for workflow '{workflow}' on branch '{branch}' "
                    f"for commit '{commit}'"
                ),
            )
        )

    console.print(
        f"Watching workflow '{workflow}' run {run_id} (branch '{branch}', commit {commit})",
        Style.INFO,
    )
    watched = watch_run(repo_root=repo_root, run_id=run_id)
    if isinstance(watched, Err):
        return watched
    return Ok(run_id)


def snapshot_dispatch_runs(
    *, repo_root: Path, workflow_file: str, branch: str
) -> frozenset[int]:
    """Ids of recent dispatch runs; empty if the listing fails."""
    ids = list_run_ids(
        repo_root=repo_root,
        workflow=workflow_file,
        branch=branch,
        event="workflow_dispatch",
        limit=DISPATCH_SNAPSHOT_LIMIT,
    )
    if isinstance(ids, Err):
        return frozenset()
    return frozenset(ids.value)


def wait_for_new_workflow_dispatch_run(
    *,
    repo_root: Path,
    workflow_file: str,
    branch: str,
    known_ids: frozenset[int],
    timeout: float,
    interval: float = 4.0,
    console: ConsoleProtocol,
) -> Result[int, ReleaseError]:
    """First dispatch run id absent from ``known_ids``."""
    console.print(f"Waiting for a new '{workflow_file}' dispatch run on '{branch}'", Style.DIM)

    def check() -> int | None:
        ids = list_run_ids(
            repo_root=repo_root,
            workflow=workflow_file,
            branch=branch,
            event="workflow_dispatch",
            limit=DISPATCH_SNAPSHOT_LIMIT,
        )
        if isinstance(ids, Err):
            return None
        return next((i for i in ids.value if i not in known_ids), None)

    run_id = _poll(check, timeout=timeout, interval=interval)
    if run_id is None:
        return Err(
            ReleaseError(
                kind="workflow_timeout",
                message=f"timed out waiting for new workflow_dispatch run for '{workflow_file}'",
            )
        )
    return Ok(run_id)
