from __future__ import annotations

import json
from pathlib import Path
from time import sleep

from lexrel.core.result import Err, Ok, Result
from lexrel.core.structured import (
    StrDict,
    as_obj_list,
    as_str_dict,
    get_int,
    get_str,
    get_table,
)
from lexrel.platform.process import ProcessError, command_exists, run_inherit
from lexrel.platform.process import run as run_process
from lexrel.services.release.errors import ReleaseError, ReleaseErrorKind
from lexrel.services.release.timeouts import (
    GH_READ_RETRY_ATTEMPTS,
    GH_READ_RETRY_DELAY_SECONDS,
    GH_TIMEOUT_SECONDS,
    GH_WATCH_TIMEOUT_SECONDS,
)


def _is_transient_gh_error(error: ProcessError) -> bool:
    text = f"{error.stderr}\n{error.stdout}".lower()
    markers = (
        "timed out",
        "timeout",
        "connection reset",
        "connection refused",
        "temporarily unavailable",
        "service unavailable",
        "bad gateway",
        "gateway timeout",
        "tls handshake timeout",
        "network is unreachable",
        "http 429",
        "http 500",
        "http 502",
        "http 503",
        "http 504",
    )
    if error.returncode == -1 and "timed out" in text:
        return True
    return any(marker in text for marker in markers)


def run_gh_read(
    *,
    repo_root: Path,
    cmd: list[str],
    kind: ReleaseErrorKind = "unexpected_exit",
    message: str,
    hint: str | None = None,
    timeout: float = GH_TIMEOUT_SECONDS,
    retry_attempts: int = GH_READ_RETRY_ATTEMPTS,
) -> Result[str, ReleaseError]:
    """Run a read-only gh command, retrying transient network failures."""
    attempts = max(1, retry_attempts)
    for attempt in range(attempts):
        result = run_process(cmd, cwd=repo_root, timeout=timeout)
        if isinstance(result, Ok):
            return result

        error = result.error
        if attempt < attempts - 1 and _is_transient_gh_error(error):
            sleep(GH_READ_RETRY_DELAY_SECONDS * (attempt + 1))
            continue

        return Err(ReleaseError(kind=kind, message=message, hint=error.stderr.strip() or hint))

    return Err(ReleaseError(kind=kind, message=message, hint=hint))


def _run_gh_write(
    *,
    repo_root: Path,
    cmd: list[str],
    message: str,
    kind: ReleaseErrorKind = "unexpected_exit",
    timeout: float = GH_TIMEOUT_SECONDS,
) -> Result[None, ReleaseError]:
    # Mutations are never retried: a timed-out `pr create` may have succeeded.
    result = run_inherit(cmd, cwd=repo_root, timeout=timeout)
    if isinstance(result, Err):
        return Err(ReleaseError(kind=kind, message=message, hint=result.error.stderr or None))
    return Ok(None)


def _parse_json(text: str, *, what: str) -> Result[object, ReleaseError]:
    try:
        obj: object = json.loads(text or "null")
    except json.JSONDecodeError as e:
        return Err(ReleaseError(kind="invalid_input", message=f"invalid JSON from {what}: {e}"))
    return Ok(obj)


def ensure_gh_available() -> Result[None, ReleaseError]:
    if not command_exists("gh"):
        return Err(
            ReleaseError(
                kind="missing_tool",
                message="gh: missing",
                hint="Install GitHub CLI: https://cli.github.com/",
            )
        )
    return Ok(None)


def ensure_gh_auth(*, repo_root: Path) -> Result[None, ReleaseError]:
    result = run_process(["gh", "auth", "status"], cwd=repo_root, timeout=GH_TIMEOUT_SECONDS)
    if isinstance(result, Err):
        return Err(
            ReleaseError(
                kind="auth_failure",
                message="gh is not authenticated",
                hint=result.error.detail() if result.error.stderr else "Run: gh auth login",
            )
        )
    return Ok(None)


def gh_api_json(*, repo_root: Path, endpoint: str) -> Result[object, ReleaseError]:
    result = run_gh_read(
        repo_root=repo_root,
        cmd=["gh", "api", endpoint],
        message=f"gh api failed: {endpoint}",
        hint=endpoint,
    )
    if isinstance(result, Err):
        return result
    return _parse_json(result.value, what=f"gh api {endpoint}")


# -- pull requests ------------------------------------------------------------


def find_open_pr(*, repo_root: Path, head: str, base: str) -> Result[int | None, ReleaseError]:
    """Number of the open PR ``head -> base``, or None."""
    result = run_gh_read(
        repo_root=repo_root,
        cmd=[
            "gh", "pr", "list",
            "--head", head,
            "--base", base,
            "--state", "open",
            "--json", "number",
        ],  # fmt: skip
        message=f"failed to list PRs for {head} -> {base}",
    )
    if isinstance(result, Err):
        return result

    obj = _parse_json(result.value, what="gh pr list")
    if isinstance(obj, Err):
        return obj
    items = as_obj_list(obj.value) or []
    for item in items:
        d = as_str_dict(item)
        if d is None:
            continue
        number = get_int(d, "number")
        if number is not None:
            return Ok(number)
    return Ok(None)


def _pr_view(
    *, repo_root: Path, selector: str, fields: str
) -> Result[StrDict, ReleaseError]:
    result = run_gh_read(
        repo_root=repo_root,
        cmd=["gh", "pr", "view", selector, "--json", fields],
        message=f"gh pr view {selector} failed",
    )
    if isinstance(result, Err):
        return result
    obj = _parse_json(result.value, what="gh pr view")
    if isinstance(obj, Err):
        return obj
    data = as_str_dict(obj.value)
    if data is None:
        return Err(ReleaseError(kind="invalid_input", message="unexpected payload from gh pr view"))
    return Ok(data)


def pr_state(*, repo_root: Path, pr: int) -> Result[str, ReleaseError]:
    """``OPEN``, ``MERGED`` or ``CLOSED``."""
    data = _pr_view(repo_root=repo_root, selector=str(pr), fields="state")
    if isinstance(data, Err):
        return data
    state = get_str(data.value, "state")
    if state is None:
        return Err(ReleaseError(kind="invalid_input", message=f"missing state for PR #{pr}"))
    return Ok(state.upper())


def pr_number_for_branch(*, repo_root: Path, branch: str) -> Result[int, ReleaseError]:
    data = _pr_view(repo_root=repo_root, selector=branch, fields="number")
    if isinstance(data, Err):
        return data
    number = get_int(data.value, "number")
    if number is None:
        return Err(ReleaseError(kind="invalid_input", message=f"no PR number for '{branch}'"))
    return Ok(number)


def pr_merge_commit(*, repo_root: Path, pr: int) -> Result[str | None, ReleaseError]:
    data = _pr_view(repo_root=repo_root, selector=str(pr), fields="mergeCommit")
    if isinstance(data, Err):
        return data
    merge_commit = get_table(data.value, "mergeCommit")
    if merge_commit is None:
        return Ok(None)
    return Ok(get_str(merge_commit, "oid"))


def create_pr(
    *, repo_root: Path, head: str, base: str, title: str, body: str
) -> Result[None, ReleaseError]:
    return _run_gh_write(
        repo_root=repo_root,
        cmd=[
            "gh", "pr", "create",
            "--base", base,
            "--head", head,
            "--title", title,
            "--body", body,
        ],  # fmt: skip
        message=f"failed to create PR {head} -> {base}",
    )


def edit_pr(*, repo_root: Path, pr: int, title: str, body: str) -> Result[None, ReleaseError]:
    return _run_gh_write(
        repo_root=repo_root,
        cmd=["gh", "pr", "edit", str(pr), "--title", title, "--body", body],
        message=f"failed to edit PR #{pr}",
    )


def enable_auto_merge(*, repo_root: Path, pr: int) -> Result[None, ReleaseError]:
    return _run_gh_write(
        repo_root=repo_root,
        cmd=["gh", "pr", "merge", str(pr), "--rebase", "--auto"],
        message=f"failed to enable auto-merge on PR #{pr}",
    )


# -- workflow runs ------------------------------------------------------------


def list_run_ids(
    *,
    repo_root: Path,
    workflow: str,
    branch: str,
    event: str,
    commit: str | None = None,
    limit: int | None = None,
) -> Result[list[int], ReleaseError]:
    """Run ids newest first, as ``gh run list`` returns them."""
    cmd = ["gh", "run", "list", "--workflow", workflow, "--branch", branch, "--event", event]
    if commit is not None:
        cmd += ["--commit", commit]
    if limit is not None:
        cmd += ["--limit", str(limit)]
    cmd += ["--json", "databaseId"]

    result = run_gh_read(
        repo_root=repo_root,
        cmd=cmd,
        message=f"failed to list runs for workflow '{workflow}' on '{branch}'",
    )
    if isinstance(result, Err):
        return result

    obj = _parse_json(result.value, what="gh run list")
    if isinstance(obj, Err):
        return obj

    ids: list[int] = []
    for item in as_obj_list(obj.value) or []:
        d = as_str_dict(item)
        if d is None:
            continue
        run_id = get_int(d, "databaseId")
        if run_id is not None:
            ids.append(run_id)
    return Ok(ids)


def watch_run(
    *, repo_root: Path, run_id: int, timeout: float = GH_WATCH_TIMEOUT_SECONDS
) -> Result[None, ReleaseError]:
    """Stream ``gh run watch --exit-status``; a failed run is ``workflow_failed``."""
    result = run_inherit(
        ["gh", "run", "watch", str(run_id), "--exit-status"], cwd=repo_root, timeout=timeout
    )
    if isinstance(result, Err):
        if result.error.launch_failed and "timed out" in result.error.stderr:
            return Err(
                ReleaseError(
                    kind="workflow_timeout",
                    message=f"timed out watching run {run_id}",
                    hint=f"gh run view {run_id}",
                )
            )
        return Err(
            ReleaseError(
                kind="workflow_failed",
                message=f"workflow run {run_id} did not succeed",
                hint=f"gh run view {run_id} --log-failed",
            )
        )
    return Ok(None)


def dispatch_workflow(
    *, repo_root: Path, workflow_file: str, ref: str, inputs: dict[str, str]
) -> Result[None, ReleaseError]:
    cmd = ["gh", "workflow", "run", workflow_file, "--ref", ref]
    for key, value in inputs.items():
        cmd += ["-f", f"{key}={value}"]
    return _run_gh_write(
        repo_root=repo_root,
        cmd=cmd,
        message=f"failed to dispatch {workflow_file} on '{ref}'",
    )


# -- repository listings (doctor) -----------------------------------------------


def workflow_list_text(*, repo_root: Path, slug: str) -> Result[str, ReleaseError]:
    return run_gh_read(
        repo_root=repo_root,
        cmd=["gh", "workflow", "list", "--all", "--repo", slug],
        message="unable to list workflows with gh workflow list",
    )


def secret_list_text(*, repo_root: Path, slug: str) -> Result[str, ReleaseError]:
    return run_gh_read(
        repo_root=repo_root,
        cmd=["gh", "secret", "list", "--repo", slug],
        message="unable to list repository secrets",
    )
