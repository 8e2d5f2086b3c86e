"""Release preparation: land citation metadata on the integration branch.

Flow: validate -> fetch -> tag collision check -> prep branch from
``<remote>/<dev>`` -> upsert CITATION.cff -> commit/push -> open or reuse the
prep PR -> auto-merge -> optionally wait for the merge.

Re-running is safe. A prep branch already pushed with the same content is
reused as is, an open PR is edited rather than duplicated, and a citation
that already carries the metadata is reported as already prepared.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum
from pathlib import Path

from lexrel.core.config import ReleaseConfig
from lexrel.core.result import Err, Ok, Result
from lexrel.git.repository import Repository
from lexrel.output.console import ConsoleProtocol, Style
from lexrel.platform.process import command_exists
from lexrel.services.release.citation import (
    CitationUpdate,
    citation_field,
    ensure_edition_matches,
    update_citation_file,
    upsert_citation_text,
)
from lexrel.services.release.confirm import ConfirmPolicy, require_confirm
from lexrel.services.release.errors import ReleaseError, from_git
from lexrel.services.release.gh import (
    create_pr,
    edit_pr,
    enable_auto_merge,
    ensure_gh_available,
    find_open_pr,
    pr_merge_commit,
    pr_number_for_branch,
)
from lexrel.services.release.tags import (
    ensure_release_date,
    ensure_tag_format,
    prep_branch_name,
    prep_commit_title,
    prep_pr_body,
    today_utc,
)
from lexrel.services.release.waiter import wait_for_pr_merged


class PrepareStatus(StrEnum):
    OK = "ok"
    ALREADY_PREPARED = "already-prepared"
    DRY_RUN = "dry-run"


@dataclass(frozen=True, slots=True)
class PrepareRequest:
    tag: str
    date: str | None = None
    remote: str | None = None
    dev: str | None = None
    watch_pr: bool = True
    watch_timeout: float | None = None


@dataclass(frozen=True, slots=True)
class PrepareOutcome:
    status: PrepareStatus
    tag: str
    date: str
    remote: str
    dev_branch: str
    prep_branch: str
    pr_number: int | None = None
    watched: bool = False
    merge_commit: str | None = None

    def to_json(self) -> dict[str, object]:
        return {
            "status": str(self.status),
            "tag": self.tag,
            "date": self.date,
            "remote": self.remote,
            "devBranch": self.dev_branch,
            "prepBranch": self.prep_branch,
            "prNumber": self.pr_number,
            "watched": self.watched,
        }


def ensure_git_context(repo: Repository, remote: str) -> Result[None, ReleaseError]:
    if not repo.inside_work_tree():
        return Err(ReleaseError(kind="not_in_repo", message="not inside a git repository"))

    clean = repo.clean_tree()
    if isinstance(clean, Err):
        return Err(from_git(clean.error))
    if not clean.value:
        return Err(
            ReleaseError(
                kind="dirty_tree",
                message="working tree is not clean",
                hint="Commit or stash changes first.",
            )
        )

    if not repo.remote_exists(remote):
        return Err(ReleaseError(kind="missing_remote", message=f"remote '{remote}' does not exist"))
    return Ok(None)


def ensure_release_tools() -> Result[None, ReleaseError]:
    if not command_exists("git"):
        return Err(ReleaseError(kind="missing_tool", message="git: missing"))
    return ensure_gh_available()


def ensure_tag_available(repo: Repository, remote: str, tag: str) -> Result[None, ReleaseError]:
    if repo.local_tag_exists(tag):
        return Err(ReleaseError(kind="tag_collision", message=f"tag already exists locally: {tag}"))
    if repo.remote_tag_exists(remote, tag):
        return Err(
            ReleaseError(kind="tag_collision", message=f"tag already exists on {remote}: {tag}")
        )
    return Ok(None)


def _ensure_prep_branch_disposable(
    repo: Repository, *, prep: str, base_ref: str, tag: str
) -> Result[None, ReleaseError]:
    """Refuse to reset a local prep branch that carries hand-made commits."""
    if not repo.local_branch_exists(prep):
        return Ok(None)
    subjects = repo.commit_subjects(f"{base_ref}..{prep}")
    if isinstance(subjects, Err):
        return Err(from_git(subjects.error))
    foreign = [s for s in subjects.value if s != prep_commit_title(tag)]
    if foreign:
        return Err(
            ReleaseError(
                kind="invalid_input",
                message=f"local branch '{prep}' has commits not made by release preparation",
                hint=f"Inspect them ({foreign[0]!r}...), then delete the branch: "
                f"git branch -D {prep}",
            )
        )
    return Ok(None)


def _pushed_prep_matches(
    repo: Repository,
    *,
    remote: str,
    dev: str,
    prep: str,
    citation: str,
    update: CitationUpdate,
) -> bool:
    """True if ``<remote>/<prep>`` is exactly one prep commit on dev with this content."""
    if not repo.remote_ref_exists(remote, prep):
        return False
    div = repo.divergence(f"{remote}/{dev}", f"{remote}/{prep}")
    if isinstance(div, Err) or (div.value.left_only, div.value.right_only) != (0, 1):
        return False
    base = repo.show_file(f"{remote}/{dev}", citation)
    pushed = repo.show_file(f"{remote}/{prep}", citation)
    if isinstance(base, Err) or isinstance(pushed, Err):
        return False
    return upsert_citation_text(base.value, update) == pushed.value.replace("\r\n", "\n")


def prepare_release(
    request: PrepareRequest,
    *,
    repo_root: Path,
    config: ReleaseConfig,
    policy: ConfirmPolicy,
    console: ConsoleProtocol,
) -> Result[PrepareOutcome, ReleaseError]:
    remote = request.remote or config.branches.remote
    dev = request.dev or config.branches.dev
    timeout = request.watch_timeout or config.polling.watch_timeout
    citation = config.paths.citation
    tag = request.tag
    dry_run = policy.dry_run
    repo = Repository(repo_root)

    tools = ensure_release_tools()
    if isinstance(tools, Err):
        return tools
    fmt = ensure_tag_format(tag)
    if isinstance(fmt, Err):
        return fmt
    edition = ensure_edition_matches(tag, repo_root / config.paths.odd)
    if isinstance(edition, Err):
        return edition
    date = ensure_release_date(request.date or today_utc())
    if isinstance(date, Err):
        return date
    release_date = date.value

    ctx = ensure_git_context(repo, remote)
    if isinstance(ctx, Err):
        return ctx

    confirmed = require_confirm(f"Fetch '{remote}'?", policy=policy, console=console)
    if isinstance(confirmed, Err):
        return confirmed
    if dry_run:
        console.print(f"DRY-RUN: would run: git fetch {remote} --tags", Style.DIM)
    else:
        console.print(f"git fetch {remote} --tags", Style.DIM)
        fetched = repo.fetch(remote)
        if isinstance(fetched, Err):
            return Err(from_git(fetched.error))

    available = ensure_tag_available(repo, remote, tag)
    if isinstance(available, Err):
        return available

    base_sha = repo.remote_sha(remote, dev)
    if isinstance(base_sha, Err):
        return Err(from_git(base_sha.error, kind="missing_ref"))

    prep = prep_branch_name(tag)
    console.print(f"Repo remote: {remote}")
    console.print(f"Dev branch: {dev}")
    console.print(f"Release tag: {tag}")
    console.print(f"Release date: {release_date}")
    console.print(f"ODD edition: {edition.value}")
    console.print(f"Prep branch: {prep}")

    outcome = PrepareOutcome(
        status=PrepareStatus.OK,
        tag=tag,
        date=release_date,
        remote=remote,
        dev_branch=dev,
        prep_branch=prep,
        watched=request.watch_pr,
    )

    update = CitationUpdate(
        commit=base_sha.value, date_generated=release_date, date_released=release_date
    )
    landed = _metadata_landed_on_dev(
        repo, remote=remote, dev=dev, citation=citation, tag=tag, date=release_date
    )
    if landed:
        console.print(
            f"{remote}/{dev} already carries the {tag} metadata from a merged prep PR.", Style.DIM
        )

    if dry_run:
        if landed:
            console.print("DRY-RUN: nothing to commit; would only reuse an open prep PR", Style.DIM)
            return Ok(replace(outcome, status=PrepareStatus.DRY_RUN))
        console.print(f"DRY-RUN: would checkout '{prep}' from '{remote}/{dev}'", Style.DIM)
        console.print(
            f"DRY-RUN: would update {citation} with date-generated/date-released={release_date}",
            Style.DIM,
        )
        console.print(
            f"DRY-RUN: would push prep branch and open/reuse PR to {dev} with auto-merge",
            Style.DIM,
        )
        if request.watch_pr:
            console.print(f"DRY-RUN: would wait up to {timeout:.0f}s for PR merge", Style.DIM)
        return Ok(replace(outcome, status=PrepareStatus.DRY_RUN))

    changed = False
    if not landed:
        built = _build_prep_branch(
            repo,
            repo_root=repo_root,
            remote=remote,
            dev=dev,
            prep=prep,
            citation=citation,
            tag=tag,
            update=update,
            policy=policy,
            console=console,
        )
        if isinstance(built, Err):
            return built
        changed = built.value

    existing = find_open_pr(repo_root=repo_root, head=prep, base=dev)
    if isinstance(existing, Err):
        return Err(
            replace(
                existing.error,
                hint=f"Could not tell whether '{prep}' already has an open PR; "
                f"check with: gh pr list --head {prep} --base {dev}",
            )
        )
    pr_number = existing.value

    if pr_number is None:
        if not changed:
            console.success(
                f"No {citation} metadata changes and no open prep PR found. "
                "Release metadata appears already prepared."
            )
            return Ok(replace(outcome, status=PrepareStatus.ALREADY_PREPARED, watched=False))

        confirmed = require_confirm(
            f"Create PR '{prep}' -> '{dev}'?", policy=policy, console=console
        )
        if isinstance(confirmed, Err):
            return confirmed
        console.print(f"gh pr create --base {dev} --head {prep}", Style.DIM)
        created = create_pr(
            repo_root=repo_root,
            head=prep,
            base=dev,
            title=prep_commit_title(tag),
            body=prep_pr_body(tag),
        )
        if isinstance(created, Err):
            return created
        number = pr_number_for_branch(repo_root=repo_root, branch=prep)
        if isinstance(number, Err):
            return number
        pr_number = number.value
    else:
        console.print(f"gh pr edit {pr_number}", Style.DIM)
        edited = edit_pr(
            repo_root=repo_root, pr=pr_number, title=prep_commit_title(tag), body=prep_pr_body(tag)
        )
        if isinstance(edited, Err):
            return edited

    console.print(f"gh pr merge {pr_number} --rebase --auto", Style.DIM)
    merge = enable_auto_merge(repo_root=repo_root, pr=pr_number)
    if isinstance(merge, Err):
        return merge

    outcome = replace(outcome, pr_number=pr_number)
    if not request.watch_pr:
        return Ok(outcome)

    merged = wait_for_pr_merged(
        repo_root=repo_root,
        pr=pr_number,
        timeout=timeout,
        interval=config.polling.pr_interval,
        console=console,
    )
    if isinstance(merged, Err):
        return merged

    oid = pr_merge_commit(repo_root=repo_root, pr=pr_number)
    merge_commit = oid.value if isinstance(oid, Ok) else None
    if merge_commit:
        console.success(f"Merged {dev} commit: {merge_commit}")
    else:
        console.success(f"PR #{pr_number} merged.")
    return Ok(replace(outcome, merge_commit=merge_commit))


def _commit_and_push(
    repo: Repository,
    *,
    remote: str,
    prep: str,
    citation: str,
    tag: str,
    policy: ConfirmPolicy,
    console: ConsoleProtocol,
) -> Result[None, ReleaseError]:
    message = prep_commit_title(tag)
    console.print(f"git add -- {citation}", Style.DIM)
    added = repo.add(citation)
    if isinstance(added, Err):
        return Err(from_git(added.error))
    console.print(f"git commit -m {message}", Style.DIM)
    committed = repo.commit(message)
    if isinstance(committed, Err):
        return Err(from_git(committed.error))

    confirmed = require_confirm(f"Push '{prep}' to '{remote}'?", policy=policy, console=console)
    if isinstance(confirmed, Err):
        return confirmed
    console.print(f"git push --force-with-lease -u {remote} {prep}", Style.DIM)
    pushed = repo.push_force_with_lease(remote, prep)
    if isinstance(pushed, Err):
        return Err(from_git(pushed.error))
    return Ok(None)


def _metadata_landed_on_dev(
    repo: Repository, *, remote: str, dev: str, citation: str, tag: str, date: str
) -> bool:
    """True if the prep commit for ``tag`` was merged and heads ``<remote>/<dev>``.

    After the merge dev has moved past the sha recorded in ``commit:``, so the
    upsert alone would always see a change.
    """
    dev_ref = f"{remote}/{dev}"
    subject = repo.head_subject(dev_ref)
    if isinstance(subject, Err) or subject.value != prep_commit_title(tag):
        return False
    text = repo.show_file(dev_ref, citation)
    if isinstance(text, Err):
        return False
    return (
        citation_field(text.value, "date-generated") == date
        and citation_field(text.value, "date-released") == date
    )


def _build_prep_branch(
    repo: Repository,
    *,
    repo_root: Path,
    remote: str,
    dev: str,
    prep: str,
    citation: str,
    tag: str,
    update: CitationUpdate,
    policy: ConfirmPolicy,
    console: ConsoleProtocol,
) -> Result[bool, ReleaseError]:
    """Check out the prep branch with the metadata applied; True if it carries a change."""
    base_ref = f"{remote}/{dev}"
    confirmed = require_confirm(
        f"Create/update prep branch '{prep}' from '{base_ref}'?", policy=policy, console=console
    )
    if isinstance(confirmed, Err):
        return confirmed

    disposable = _ensure_prep_branch_disposable(repo, prep=prep, base_ref=base_ref, tag=tag)
    if isinstance(disposable, Err):
        return disposable

    if _pushed_prep_matches(
        repo, remote=remote, dev=dev, prep=prep, citation=citation, update=update
    ):
        console.print(f"git checkout -B {prep} {remote}/{prep}", Style.DIM)
        checked_out = repo.checkout_reset(prep, f"{remote}/{prep}")
        if isinstance(checked_out, Err):
            return Err(from_git(checked_out.error))
        console.print(f"{remote}/{prep} already carries the metadata; not pushing", Style.DIM)
        return Ok(True)

    console.print(f"git checkout -B {prep} {base_ref}", Style.DIM)
    checked_out = repo.checkout_reset(prep, base_ref)
    if isinstance(checked_out, Err):
        return Err(from_git(checked_out.error))

    written = update_citation_file(repo_root / citation, update)
    if isinstance(written, Err):
        return written
    diff = repo.file_changed(citation)
    if isinstance(diff, Err):
        return Err(from_git(diff.error))
    if not diff.value:
        return Ok(False)

    pushed = _commit_and_push(
        repo, remote=remote, prep=prep, citation=citation, tag=tag, policy=policy, console=console
    )
    if isinstance(pushed, Err):
        return pushed
    return Ok(True)
