"""Release cut: prepare dev, fast-forward main, dispatch the release helper.

States run strictly in order and every failure aborts with the state it
happened in. Nothing is rolled back; each state is either a read or a write
that is a no-op when already applied, so re-running is the recovery path.

    S0  prereq       tools, auth, tag, edition, clean work tree, remote
    S1  fetch
    S2  ruleset      main accepts a direct fast-forward push
    S3  topology     main...dev is fast-forwardable, then doctor preflight
    S4  prepare      citation metadata PR on dev
    S5  recheck      doctor again, after dev moved
    S6  dev-build    build-site green on the dev head
    S7  promote      checkout main, merge --ff-only
    S8  push
    S9  restore      back to the operator's branch
    S10 main-build   build-site green on the main head
    S11 snapshot     known release-helper dispatch runs
    S12 dispatch
    S13 watch        the new release-helper run
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum
from pathlib import Path

from lexrel.core.config import ReleaseConfig
from lexrel.core.result import Err, Ok, Result
from lexrel.git.repository import Repository
from lexrel.output.console import ConsoleProtocol, Style
from lexrel.services.release.citation import ensure_edition_matches
from lexrel.services.release.confirm import ConfirmPolicy, require_confirm
from lexrel.services.release.doctor import doctor_passed, run_doctor
from lexrel.services.release.errors import ReleaseError, from_git
from lexrel.services.release.gh import dispatch_workflow, ensure_gh_auth, watch_run
from lexrel.services.release.prepare import (
    PrepareOutcome,
    PrepareRequest,
    ensure_git_context,
    ensure_release_tools,
    prepare_release,
)
from lexrel.services.release.rulesets import ensure_main_rules_compatible
from lexrel.services.release.tags import ensure_tag_format
from lexrel.services.release.waiter import (
    snapshot_dispatch_runs,
    wait_for_new_workflow_dispatch_run,
    wait_for_workflow_run_by_commit,
)

# The dev citation is rewritten by S4, so it cannot block the preflight.
_PREFLIGHT_IGNORED = ("citation.dev.",)


class CutState(StrEnum):
    PREREQ = "S0 prereq"
    FETCH = "S1 fetch"
    RULESET = "S2 ruleset"
    TOPOLOGY = "S3 topology"
    PREFLIGHT = "S3 preflight"
    PREPARE = "S4 prepare"
    RECHECK = "S5 recheck"
    DEV_BUILD = "S6 dev-build"
    PROMOTE = "S7 promote"
    PUSH = "S8 push"
    RESTORE = "S9 restore"
    MAIN_BUILD = "S10 main-build"
    SNAPSHOT = "S11 snapshot"
    DISPATCH = "S12 dispatch"
    WATCH = "S13 watch"


@dataclass(frozen=True, slots=True)
class CutRequest:
    tag: str
    date: str | None = None
    remote: str | None = None
    dev: str | None = None
    main: str | None = None
    watch_prepare: bool = True
    watch_main: bool = True
    watch_release: bool = True
    watch_timeout: float | None = None
    run_doctor: bool = True


@dataclass(frozen=True, slots=True)
class CutFailure:
    state: CutState
    error: ReleaseError

    @property
    def message(self) -> str:
        return f"release cut failed at {self.state}: {self.error.message}"

    @property
    def hint(self) -> str | None:
        return self.error.hint


@dataclass(frozen=True, slots=True)
class CutReport:
    tag: str
    remote: str
    dev: str
    main: str
    dry_run: bool
    prepare: PrepareOutcome | None = None
    promoted_sha: str | None = None
    release_run_id: int | None = None


def _at(state: CutState, error: ReleaseError) -> Err[CutFailure]:
    return Err(CutFailure(state=state, error=error))


@dataclass(slots=True)
class _Cut:
    request: CutRequest
    repo_root: Path
    config: ReleaseConfig
    policy: ConfirmPolicy
    console: ConsoleProtocol
    repo: Repository
    remote: str
    dev: str
    main: str
    timeout: float

    @property
    def dry_run(self) -> bool:
        return self.policy.dry_run

    def confirm(self, question: str) -> Result[None, ReleaseError]:
        return require_confirm(question, policy=self.policy, console=self.console)

    def would(self, action: str) -> None:
        self.console.print(f"DRY-RUN: would {action}", Style.DIM)

    def prereq(self) -> Result[str, ReleaseError]:
        tag = self.request.tag
        tools = ensure_release_tools()
        if isinstance(tools, Err):
            return tools
        auth = ensure_gh_auth(repo_root=self.repo_root)
        if isinstance(auth, Err):
            return auth
        fmt = ensure_tag_format(tag)
        if isinstance(fmt, Err):
            return fmt
        edition = ensure_edition_matches(tag, self.repo_root / self.config.paths.odd)
        if isinstance(edition, Err):
            return edition
        ctx = ensure_git_context(self.repo, self.remote)
        if isinstance(ctx, Err):
            return ctx
        return Ok(self.repo.current_branch())

    def fetch(self) -> Result[None, ReleaseError]:
        confirmed = self.confirm(f"Fetch '{self.remote}'?")
        if isinstance(confirmed, Err):
            return confirmed
        if self.dry_run:
            self.would(f"run: git fetch {self.remote} --tags")
            return Ok(None)
        self.console.print(f"git fetch {self.remote} --tags", Style.DIM)
        fetched = self.repo.fetch(self.remote)
        if isinstance(fetched, Err):
            return Err(from_git(fetched.error))
        return Ok(None)

    def rulesets(self) -> Result[None, ReleaseError]:
        slug = self.repo.repo_slug(self.remote)
        if isinstance(slug, Err):
            return Err(from_git(slug.error, kind="missing_remote"))
        if self.dry_run:
            self.would(f"verify {self.main} ruleset compatibility for {slug.value}")
            return Ok(None)
        compatible = ensure_main_rules_compatible(
            repo_root=self.repo_root, slug=slug.value, main_branch=self.main
        )
        if isinstance(compatible, Err):
            return compatible
        return Ok(None)

    def topology(self) -> Result[None, ReleaseError]:
        if self.dry_run:
            self.would(f"verify {self.remote}/{self.main}...{self.remote}/{self.dev} is FF-only")
            return Ok(None)
        main_ref = f"{self.remote}/{self.main}"
        dev_ref = f"{self.remote}/{self.dev}"
        div = self.repo.divergence(main_ref, dev_ref)
        if isinstance(div, Err):
            return Err(from_git(div.error, kind="missing_ref"))

        d = div.value
        counts = f"{self.main}-only={d.left_only}, {self.dev}-only={d.right_only}"
        if d.diverged:
            return Err(
                ReleaseError(
                    kind="diverged_branches",
                    message=f"cannot fast-forward: {main_ref} and {dev_ref} diverged ({counts})",
                )
            )
        if d.left_only > 0:
            return Err(
                ReleaseError(
                    kind="diverged_branches",
                    message=f"stable is ahead of dev: {main_ref} has commits not on {dev_ref}",
                    hint=counts,
                )
            )
        if d.identical:
            return Err(
                ReleaseError(
                    kind="nothing_to_promote",
                    message=f"{dev_ref} has no new commits for {self.main}",
                    hint="If only the dispatch is missing, run: gh workflow run "
                    f"{self.config.workflows.release_helper_file} --ref {self.main} "
                    f"-f tag={self.request.tag}",
                )
            )
        self.console.print(f"Fast-forwardable: {counts}", Style.DIM)
        return Ok(None)

    def doctor(self, *, ignore: tuple[str, ...] = ()) -> Result[None, ReleaseError]:
        if self.dry_run:
            self.would(f"run release doctor for {self.request.tag}")
            return Ok(None)
        report = run_doctor(
            repo_root=self.repo_root,
            config=self.config,
            tag=self.request.tag,
            remote=self.remote,
            dev=self.dev,
            main=self.main,
        )
        s = report.summary
        self.console.print(f"doctor: pass={s.passed} warn={s.warned} fail={s.failed}", Style.DIM)
        return doctor_passed(report, ignore=ignore)

    def prepare(self) -> Result[PrepareOutcome, ReleaseError]:
        return prepare_release(
            PrepareRequest(
                tag=self.request.tag,
                date=self.request.date,
                remote=self.remote,
                dev=self.dev,
                watch_pr=self.request.watch_prepare,
                watch_timeout=self.timeout,
            ),
            repo_root=self.repo_root,
            config=self.config,
            policy=self.policy,
            console=self.console,
        )

    def wait_build(self, branch: str) -> Result[str, ReleaseError]:
        sha = self.repo.remote_sha(self.remote, branch)
        if isinstance(sha, Err):
            return Err(from_git(sha.error, kind="missing_ref"))
        waited = wait_for_workflow_run_by_commit(
            repo_root=self.repo_root,
            workflow=self.config.workflows.build_site,
            branch=branch,
            commit=sha.value,
            timeout=self.timeout,
            interval=self.config.polling.run_interval,
            console=self.console,
        )
        if isinstance(waited, Err):
            return waited
        return Ok(sha.value)

    def dev_build(self) -> Result[None, ReleaseError]:
        # dev moved when the prep PR merged.
        self.console.print(f"git fetch {self.remote} --tags", Style.DIM)
        fetched = self.repo.fetch(self.remote)
        if isinstance(fetched, Err):
            return Err(from_git(fetched.error))
        topology = self.topology()
        if isinstance(topology, Err):
            return topology
        built = self.wait_build(self.dev)
        if isinstance(built, Err):
            return built
        return Ok(None)

    def promote(self) -> Result[None, ReleaseError]:
        steps = (
            (f"git checkout {self.main}", lambda: self.repo.checkout(self.main)),
            (
                f"git merge --ff-only {self.remote}/{self.main}",
                lambda: self.repo.merge_ff_only(f"{self.remote}/{self.main}"),
            ),
            (
                f"git merge --ff-only {self.remote}/{self.dev}",
                lambda: self.repo.merge_ff_only(f"{self.remote}/{self.dev}"),
            ),
        )
        for label, step in steps:
            self.console.print(label, Style.DIM)
            result = step()
            if isinstance(result, Err):
                return Err(from_git(result.error))
        return Ok(None)

    def push(self) -> Result[None, ReleaseError]:
        confirmed = self.confirm(f"Push '{self.main}' to '{self.remote}'?")
        if isinstance(confirmed, Err):
            return confirmed
        self.console.print(f"git push {self.remote} {self.main}", Style.DIM)
        pushed = self.repo.push(self.remote, self.main)
        if isinstance(pushed, Err):
            return Err(from_git(pushed.error))
        return Ok(None)

    def restore(self, original_branch: str) -> Result[None, ReleaseError]:
        if not original_branch or original_branch == self.main:
            return Ok(None)
        self.console.print(f"git checkout {original_branch}", Style.DIM)
        restored = self.repo.checkout(original_branch)
        if isinstance(restored, Err):
            return Err(from_git(restored.error))
        return Ok(None)

    def dispatch(self) -> Result[None, ReleaseError]:
        wf = self.config.workflows.release_helper_file
        self.console.print(
            f"gh workflow run {wf} --ref {self.main} -f tag={self.request.tag}", Style.DIM
        )
        return dispatch_workflow(
            repo_root=self.repo_root,
            workflow_file=wf,
            ref=self.main,
            inputs={"tag": self.request.tag},
        )

    def watch_release(self, known_ids: frozenset[int]) -> Result[int, ReleaseError]:
        polling = self.config.polling
        run_id = wait_for_new_workflow_dispatch_run(
            repo_root=self.repo_root,
            workflow_file=self.config.workflows.release_helper_file,
            branch=self.main,
            known_ids=known_ids,
            timeout=min(self.timeout, polling.dispatch_timeout_cap),
            interval=polling.dispatch_interval,
            console=self.console,
        )
        if isinstance(run_id, Err):
            return run_id
        self.console.print(
            f"Watching {self.config.workflows.release_helper} run {run_id.value}", Style.INFO
        )
        watched = watch_run(repo_root=self.repo_root, run_id=run_id.value)
        if isinstance(watched, Err):
            return watched
        return Ok(run_id.value)


def cut_release(
    request: CutRequest,
    *,
    repo_root: Path,
    config: ReleaseConfig,
    policy: ConfirmPolicy,
    console: ConsoleProtocol,
) -> Result[CutReport, CutFailure]:
    branches = config.branches
    cut = _Cut(
        request=request,
        repo_root=repo_root,
        config=config,
        policy=policy,
        console=console,
        repo=Repository(repo_root),
        remote=request.remote or branches.remote,
        dev=request.dev or branches.dev,
        main=request.main or branches.main,
        timeout=request.watch_timeout or config.polling.watch_timeout,
    )
    report = CutReport(
        tag=request.tag, remote=cut.remote, dev=cut.dev, main=cut.main, dry_run=cut.dry_run
    )

    original = cut.prereq()
    if isinstance(original, Err):
        return _at(CutState.PREREQ, original.error)
    original_branch = original.value

    console.print(f"Release tag: {request.tag}")
    console.print(f"Remote: {cut.remote}")
    console.print(f"Promotion: {cut.dev} -> {cut.main}")

    for state, stage in (
        (CutState.FETCH, cut.fetch),
        (CutState.RULESET, cut.rulesets),
        (CutState.TOPOLOGY, cut.topology),
    ):
        result = stage()
        if isinstance(result, Err):
            return _at(state, result.error)

    if request.run_doctor:
        preflight = cut.doctor(ignore=_PREFLIGHT_IGNORED)
        if isinstance(preflight, Err):
            return _at(CutState.PREFLIGHT, preflight.error)

    console.header(f"Step 1/3: release preparation on {cut.dev}")
    prepared = cut.prepare()
    if isinstance(prepared, Err):
        return _at(CutState.PREPARE, prepared.error)
    report = replace(report, prepare=prepared.value)

    if request.run_doctor:
        console.header("Step 1.5/3: release doctor re-check")
        recheck = cut.doctor()
        if isinstance(recheck, Err):
            return _at(CutState.RECHECK, recheck.error)

    console.header(f"Step 2/3: fast-forward promote {cut.dev} -> {cut.main}")
    promoted_sha: str | None = None
    if cut.dry_run:
        cut.would(f"wait for {config.workflows.build_site} on {cut.dev}")
        cut.would(f"fast-forward {cut.main} to {cut.remote}/{cut.dev} and push it")
    else:
        for state, stage in (
            (CutState.DEV_BUILD, cut.dev_build),
            (CutState.PROMOTE, cut.promote),
            (CutState.PUSH, cut.push),
            (CutState.RESTORE, lambda: cut.restore(original_branch)),
        ):
            result = stage()
            if isinstance(result, Err):
                return _at(state, result.error)

        if request.watch_main:
            built = cut.wait_build(cut.main)
            if isinstance(built, Err):
                return _at(CutState.MAIN_BUILD, built.error)
            promoted_sha = built.value

    console.header("Step 3/3: trigger release-helper")
    wf = config.workflows.release_helper_file
    if cut.dry_run:
        cut.would(f"run: gh workflow run {wf} --ref {cut.main} -f tag={request.tag}")
        return Ok(report)

    confirmed = cut.confirm(f"Trigger {wf} on '{cut.main}' for '{request.tag}'?")
    if isinstance(confirmed, Err):
        return _at(CutState.SNAPSHOT, confirmed.error)
    known_ids = snapshot_dispatch_runs(repo_root=repo_root, workflow_file=wf, branch=cut.main)

    dispatched = cut.dispatch()
    if isinstance(dispatched, Err):
        return _at(CutState.DISPATCH, dispatched.error)

    release_run_id: int | None = None
    if request.watch_release:
        watched = cut.watch_release(known_ids)
        if isinstance(watched, Err):
            return _at(CutState.WATCH, watched.error)
        release_run_id = watched.value

    console.success("release cut completed.")
    return Ok(replace(report, promoted_sha=promoted_sha, release_run_id=release_run_id))
