"""Release readiness checks.

``run_doctor`` inspects the local clone and the GitHub repository and returns
a ``DoctorReport``. The only side effect is ``git fetch <remote> --tags``.

Checks are independent except for a few prerequisites (tools, work tree,
auth, remote, slug, remote refs): when one of those fails, nothing after it
can be evaluated, so the battery stops there.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from lexrel.core.config import ReleaseConfig
from lexrel.core.result import Err, Ok, Result
from lexrel.git.repository import Repository
from lexrel.output.console import ConsoleProtocol, Style
from lexrel.platform.process import command_exists
from lexrel.services.release.citation import citation_date_released, read_odd_edition
from lexrel.services.release.errors import ReleaseError, ReleaseErrorKind
from lexrel.services.release.gh import (
    ensure_gh_auth,
    secret_list_text,
    workflow_list_text,
)
from lexrel.services.release.rulesets import Ruleset, load_rulesets
from lexrel.services.release.tags import ensure_tag_format, tag_version

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_PUSH_TRIGGER_RE = re.compile(r"(^|\n)\s*push:\s*", re.MULTILINE)
_DISPATCH_TRIGGER_RE = re.compile(r"(^|\n)\s*workflow_dispatch:\s*", re.MULTILINE)
_PUSH_MAIN_RE = re.compile(r"git\s+push\s+origin\s+main", re.MULTILINE)
_DATE_GUARD_RES = (
    re.compile(r"date-released:[^\n]*\[0-9\]\{4\}-\[0-9\]\{2\}-\[0-9\]\{2\}"),
    re.compile(r"CITATION\.cff on tag .*date-released", re.MULTILINE),
)


class CheckStatus(StrEnum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


@dataclass(frozen=True, slots=True)
class Check:
    id: str
    status: CheckStatus
    message: str
    details: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "status": str(self.status),
            "message": self.message,
            "details": self.details,
        }


@dataclass(frozen=True, slots=True)
class DoctorSummary:
    passed: int
    warned: int
    failed: int
    strict: bool

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> dict[str, object]:
        return {
            "pass": self.passed,
            "warn": self.warned,
            "fail": self.failed,
            "strict": self.strict,
            "ok": self.ok,
        }


@dataclass(frozen=True, slots=True)
class DoctorReport:
    checks: tuple[Check, ...]
    strict: bool = False

    @property
    def summary(self) -> DoctorSummary:
        passed = sum(1 for c in self.checks if c.status is CheckStatus.PASS)
        warned = sum(1 for c in self.checks if c.status is CheckStatus.WARN)
        failed = sum(1 for c in self.checks if c.status is CheckStatus.FAIL)
        if self.strict:
            failed += warned
            warned = 0
        return DoctorSummary(passed=passed, warned=warned, failed=failed, strict=self.strict)

    @property
    def ok(self) -> bool:
        return self.summary.ok

    def get(self, check_id: str) -> Check | None:
        return next((c for c in self.checks if c.id == check_id), None)

    def failures(self) -> list[Check]:
        """Checks that make the report fail, hard fails before promoted warns."""
        blocking = {CheckStatus.FAIL, CheckStatus.WARN} if self.strict else {CheckStatus.FAIL}
        failures = [c for c in self.checks if c.status in blocking]
        failures.sort(key=lambda c: c.status is not CheckStatus.FAIL)
        return failures

    def to_json(self) -> dict[str, object]:
        return {
            "summary": self.summary.to_dict(),
            "checks": [c.to_dict() for c in self.checks],
        }


@dataclass(slots=True)
class _Battery:
    repo_root: Path
    config: ReleaseConfig
    remote: str
    dev: str
    main: str
    tag: str | None
    checks: list[Check] = field(default_factory=list)

    def add(self, check_id: str, status: CheckStatus, message: str, details: str = "") -> None:
        self.checks.append(Check(id=check_id, status=status, message=message, details=details))

    def verdict(
        self, check_id: str, ok: bool, passed: str, missed: str, *, miss: CheckStatus
    ) -> None:
        if ok:
            self.add(check_id, CheckStatus.PASS, passed)
        else:
            self.add(check_id, miss, missed)

    def run(self) -> None:
        repo = Repository(self.repo_root)
        slug = self._prerequisites(repo)
        if slug is None:
            return
        self._working_copy(repo)
        if not self._remote_state(repo):
            return
        if self.tag:
            self._tag(repo, self.tag)
        else:
            self.add("tag.input", CheckStatus.WARN, "No --tag provided; skipping tag checks.")
        self._rulesets(slug)
        self._workflows(slug)
        self._workflow_files(repo)
        self._secrets(slug)
        self._dev_citation(repo)

    # -- prerequisites --------------------------------------------------------

    def _prerequisites(self, repo: Repository) -> str | None:
        missing = False
        for tool in ("git", "gh"):
            if command_exists(tool):
                self.add(f"prereq.{tool}", CheckStatus.PASS, f"{tool} is available.")
            else:
                self.add(f"prereq.{tool}", CheckStatus.FAIL, f"{tool} is not available in PATH.")
                missing = True
        if missing:
            return None

        if not repo.inside_work_tree():
            self.add("repo.inside", CheckStatus.FAIL, "Not inside a git repository.")
            return None
        self.add("repo.inside", CheckStatus.PASS, "Inside a git repository.")

        auth = ensure_gh_auth(repo_root=self.repo_root)
        if isinstance(auth, Err):
            self.add("auth.gh", CheckStatus.FAIL, "gh is not authenticated.", auth.error.hint or "")
            return None
        self.add("auth.gh", CheckStatus.PASS, "gh authentication is configured.")

        url = repo.remote_url(self.remote)
        if isinstance(url, Err) or not url.value:
            self.add("repo.remote", CheckStatus.FAIL, f"Remote '{self.remote}' does not exist.")
            return None
        self.add("repo.remote", CheckStatus.PASS, f"Remote '{self.remote}' exists.")

        slug = repo.repo_slug(self.remote)
        if isinstance(slug, Err):
            self.add(
                "repo.slug",
                CheckStatus.FAIL,
                f"Remote '{self.remote}' is not a GitHub URL: {url.value}",
            )
            return None
        self.add("repo.slug", CheckStatus.PASS, f"Resolved repository slug: {slug.value}")
        return slug.value

    def _working_copy(self, repo: Repository) -> None:
        clean = repo.clean_tree()
        if isinstance(clean, Err):
            self.add("repo.clean", CheckStatus.FAIL, "Unable to evaluate working tree cleanliness.")
        elif not clean.value:
            self.add(
                "repo.clean",
                CheckStatus.WARN,
                "Working tree is not clean.",
                "release commands stop on a dirty tree.",
            )
        else:
            self.add("repo.clean", CheckStatus.PASS, "Working tree is clean.")

        branch = repo.current_branch()
        if not branch:
            self.add(
                "repo.branch",
                CheckStatus.WARN,
                "Unable to determine current branch (possibly detached HEAD).",
            )
        elif branch == self.dev:
            self.add("repo.branch", CheckStatus.PASS, f"Current branch is '{self.dev}'.")
        else:
            self.add(
                "repo.branch",
                CheckStatus.WARN,
                f"Current branch is '{branch}', not '{self.dev}'.",
            )

    def _remote_state(self, repo: Repository) -> bool:
        fetched = repo.fetch(self.remote)
        if isinstance(fetched, Err):
            self.add(
                "doctor.runtime",
                CheckStatus.FAIL,
                "release doctor encountered an unexpected error.",
                f"git fetch {self.remote} --tags failed: {fetched.error.message}",
            )
            return False
        self.add("repo.fetch", CheckStatus.PASS, f"Fetched '{self.remote}' branches/tags.")

        main_ref = f"{self.remote}/{self.main}"
        dev_ref = f"{self.remote}/{self.dev}"
        missing = [
            ref
            for ref, branch in ((main_ref, self.main), (dev_ref, self.dev))
            if not repo.remote_ref_exists(self.remote, branch)
        ]
        if missing:
            self.add("repo.refs", CheckStatus.FAIL, f"Missing remote refs: {' '.join(missing)}")
            return False
        self.add("repo.refs", CheckStatus.PASS, f"Found remote refs '{main_ref}' and '{dev_ref}'.")

        div = repo.divergence(main_ref, dev_ref)
        if isinstance(div, Err):
            self.add(
                "doctor.runtime",
                CheckStatus.FAIL,
                "release doctor encountered an unexpected error.",
                div.error.message,
            )
            return False
        d = div.value
        counts = f"{self.main}-only={d.left_only}, {self.dev}-only={d.right_only}"
        if d.diverged:
            self.add("topology.ff", CheckStatus.FAIL, f"Branches diverged: {counts}.")
        elif d.right_only == 0:
            self.add(
                "topology.ff",
                CheckStatus.WARN,
                f"No new commits to promote from {self.dev} to {self.main}.",
                counts,
            )
        else:
            self.add("topology.ff", CheckStatus.PASS, f"Fast-forwardable: {counts}.")
        return True

    # -- tag ------------------------------------------------------------------

    def _tag(self, repo: Repository, tag: str) -> None:
        fmt = ensure_tag_format(tag)
        if isinstance(fmt, Err):
            self.add(
                "tag.format", CheckStatus.FAIL, f"Invalid tag format '{tag}' (expected vX.Y.Z)."
            )
        else:
            self.add("tag.format", CheckStatus.PASS, f"Tag format is valid: {tag}.")

        if repo.local_tag_exists(tag):
            self.add("tag.local", CheckStatus.FAIL, f"Tag already exists locally: {tag}.")
        else:
            self.add("tag.local", CheckStatus.PASS, f"Tag not present locally: {tag}.")

        if repo.remote_tag_exists(self.remote, tag):
            self.add("tag.remote", CheckStatus.FAIL, f"Tag already exists on {self.remote}: {tag}.")
        else:
            self.add("tag.remote", CheckStatus.PASS, f"Tag not present on {self.remote}: {tag}.")

        odd = self.config.paths.odd
        edition = read_odd_edition(self.repo_root / odd)
        if isinstance(edition, Err):
            self.add(
                "tag.odd_edition_match",
                CheckStatus.FAIL,
                f"Unable to validate tag against {odd} edition.",
                edition.error.message,
            )
        elif tag_version(tag) == edition.value:
            self.add(
                "tag.odd_edition_match",
                CheckStatus.PASS,
                f"Tag version matches {odd} edition n='{edition.value}'.",
            )
        else:
            self.add(
                "tag.odd_edition_match",
                CheckStatus.FAIL,
                f"Tag version '{tag_version(tag)}' does not match {odd} "
                f"edition n='{edition.value}'.",
            )

    # -- GitHub configuration -------------------------------------------------

    def _rulesets(self, slug: str) -> None:
        loaded = load_rulesets(repo_root=self.repo_root, slug=slug)
        if isinstance(loaded, Err):
            self.add(
                "rulesets.read",
                CheckStatus.FAIL,
                "Unable to read rulesets via GitHub API.",
                loaded.error.hint or loaded.error.message,
            )
            return

        dev_rules = Ruleset.for_branch(loaded.value, self.dev)
        if dev_rules is None:
            self.add(
                "rules.dev.exists",
                CheckStatus.FAIL,
                f"No active branch ruleset found for {self.dev}.",
            )
        else:
            self._dev_rules(dev_rules)

        main_rules = Ruleset.for_branch(loaded.value, self.main)
        if main_rules is None:
            self.add(
                "rules.main.exists",
                CheckStatus.FAIL,
                f"No active branch ruleset found for {self.main}.",
            )
        else:
            self._main_rules(main_rules)

    def _dev_rules(self, rs: Ruleset) -> None:
        dev = self.dev
        required = self.config.checks.dev_required
        recommended = self.config.checks.dev_recommended
        self.add("rules.dev.exists", CheckStatus.PASS, f"Found {dev} ruleset '{rs.name}'.")
        self.verdict(
            "rules.dev.pr",
            rs.has_rule("pull_request"),
            f"{dev} requires PRs.",
            f"{dev} does not require PRs.",
            miss=CheckStatus.FAIL,
        )
        checks = rs.required_checks()
        self.verdict(
            "rules.dev.check_citation",
            required in checks,
            f"{dev} requires '{required}'.",
            f"{dev} is missing required status check '{required}'.",
            miss=CheckStatus.FAIL,
        )
        self.verdict(
            "rules.dev.pr_check",
            recommended in checks,
            f"{dev} requires '{recommended}' check.",
            f"{dev} does not require '{recommended}' check.",
            miss=CheckStatus.WARN,
        )

    def _main_rules(self, rs: Ruleset) -> None:
        main = self.main
        self.add("rules.main.exists", CheckStatus.PASS, f"Found {main} ruleset '{rs.name}'.")
        self.verdict(
            "rules.main.no_pr",
            not rs.has_rule("pull_request"),
            f"{main} does not require PRs (FF-only compatible).",
            f"{main} still requires PRs (breaks FF-only promotion).",
            miss=CheckStatus.FAIL,
        )
        checks = rs.required_checks()
        self.verdict(
            "rules.main.no_required_checks",
            not checks,
            f"{main} has no required status checks (FF-only compatible).",
            f"{main} has required checks: {', '.join(checks)}",
            miss=CheckStatus.FAIL,
        )
        self.verdict(
            "rules.main.non_ff_block",
            rs.has_rule("non_fast_forward"),
            f"{main} blocks non-fast-forward pushes.",
            f"{main} does not block non-fast-forward pushes.",
            miss=CheckStatus.WARN,
        )
        self.verdict(
            "rules.main.linear",
            rs.has_rule("required_linear_history"),
            f"{main} requires linear history.",
            f"{main} does not require linear history.",
            miss=CheckStatus.WARN,
        )

    def _workflows(self, slug: str) -> None:
        listed = workflow_list_text(repo_root=self.repo_root, slug=slug)
        if isinstance(listed, Err):
            self.add(
                "workflows.list",
                CheckStatus.WARN,
                "Unable to list workflows with gh workflow list.",
            )
            return

        wf = self.config.workflows
        listing = listed.value

        def visible(name: str) -> bool:
            return re.search(rf"\b{re.escape(name)}\b", listing) is not None

        self.verdict(
            "workflows.build_site",
            visible(wf.build_site),
            f"Workflow {wf.build_site} exists.",
            f"Workflow {wf.build_site} is missing.",
            miss=CheckStatus.FAIL,
        )
        self.verdict(
            "workflows.citation_metadata",
            visible(wf.citation_metadata),
            f"Workflow {wf.citation_metadata} exists.",
            f"Workflow {wf.citation_metadata} is missing (manual fallback unavailable).",
            miss=CheckStatus.WARN,
        )
        self.verdict(
            "workflows.release_helper",
            visible(wf.release_helper),
            f"Workflow {wf.release_helper} is visible to GitHub.",
            f"Workflow {wf.release_helper} not visible (may be absent on default branch).",
            miss=CheckStatus.WARN,
        )

    def _workflow_files(self, repo: Repository) -> None:
        wf = self.config.workflows
        dev_ref = f"{self.remote}/{self.dev}"

        text = repo.show_file(dev_ref, wf.citation_metadata_path)
        if isinstance(text, Err):
            self.add(
                "wf.citation_metadata.file",
                CheckStatus.FAIL,
                f"Cannot read {wf.citation_metadata} workflow from {dev_ref}.",
            )
        else:
            self.verdict(
                "wf.citation_metadata.manual_only",
                _PUSH_TRIGGER_RE.search(text.value) is None,
                f"{wf.citation_metadata} is not triggered on every {self.dev} push.",
                f"{wf.citation_metadata} still has push trigger enabled.",
                miss=CheckStatus.WARN,
            )
            self.verdict(
                "wf.citation_metadata.dispatch",
                _DISPATCH_TRIGGER_RE.search(text.value) is not None,
                f"{wf.citation_metadata} supports manual dispatch.",
                f"{wf.citation_metadata} has no workflow_dispatch trigger.",
                miss=CheckStatus.WARN,
            )

        text = repo.show_file(dev_ref, wf.release_helper_path)
        if isinstance(text, Err):
            self.add(
                "wf.release_helper.file",
                CheckStatus.FAIL,
                f"Cannot read {wf.release_helper} workflow from {dev_ref}.",
            )
        else:
            self.verdict(
                "wf.release_helper.dispatch",
                "workflow_dispatch:" in text.value,
                f"{wf.release_helper} supports manual dispatch.",
                f"{wf.release_helper} lacks workflow_dispatch.",
                miss=CheckStatus.FAIL,
            )
            self.verdict(
                "wf.release_helper.no_main_write",
                _PUSH_MAIN_RE.search(text.value) is None,
                f"{wf.release_helper} does not push {self.main} directly.",
                f"{wf.release_helper} still pushes {self.main} directly.",
                miss=CheckStatus.FAIL,
            )

        text = repo.show_file(dev_ref, wf.site_build_path)
        if isinstance(text, Err):
            self.add(
                "wf.site_build.file",
                CheckStatus.FAIL,
                f"Cannot read site-build workflow from {dev_ref}.",
            )
        else:
            self.verdict(
                "wf.site_build.date_released_guard",
                any(p.search(text.value) for p in _DATE_GUARD_RES),
                "site-build contains date-released guard for tags.",
                "site-build date-released guard not detected.",
                miss=CheckStatus.WARN,
            )

    def _secrets(self, slug: str) -> None:
        listed = secret_list_text(repo_root=self.repo_root, slug=slug)
        if isinstance(listed, Err):
            self.add("secrets.list", CheckStatus.WARN, "Unable to list repository secrets.")
            return
        name = self.config.checks.citation_token_secret
        self.verdict(
            "secrets.citation_bot_token",
            re.search(rf"^{re.escape(name)}\b", listed.value, re.MULTILINE) is not None,
            f"{name} exists (manual citation workflow available).",
            f"{name} missing (manual citation workflow cannot push PRs).",
            miss=CheckStatus.WARN,
        )

    def _dev_citation(self, repo: Repository) -> None:
        dev_ref = f"{self.remote}/{self.dev}"
        citation = self.config.paths.citation
        text = repo.show_file(dev_ref, citation)
        if isinstance(text, Err):
            self.add(
                "citation.dev.file", CheckStatus.FAIL, f"Cannot read {citation} from {dev_ref}."
            )
            return

        value = citation_date_released(text.value)
        if value is None:
            self.add(
                "citation.dev.date_released",
                CheckStatus.FAIL,
                f"{dev_ref} {citation} is missing date-released.",
            )
        elif _DATE_RE.match(value):
            self.add(
                "citation.dev.date_released",
                CheckStatus.PASS,
                f"{dev_ref} date-released is set ({value}).",
            )
        else:
            self.add(
                "citation.dev.date_released",
                CheckStatus.FAIL,
                f"{dev_ref} date-released is invalid ({value}).",
            )


def run_doctor(
    *,
    repo_root: Path,
    config: ReleaseConfig,
    tag: str | None = None,
    remote: str | None = None,
    dev: str | None = None,
    main: str | None = None,
    strict: bool = False,
) -> DoctorReport:
    battery = _Battery(
        repo_root=repo_root,
        config=config,
        remote=remote or config.branches.remote,
        dev=dev or config.branches.dev,
        main=main or config.branches.main,
        tag=tag or None,
    )
    battery.run()
    return DoctorReport(checks=tuple(battery.checks), strict=strict)


_STATUS_STYLE = {
    CheckStatus.PASS: Style.SUCCESS,
    CheckStatus.WARN: Style.WARNING,
    CheckStatus.FAIL: Style.ERROR,
}


def print_report(report: DoctorReport, console: ConsoleProtocol) -> None:
    for check in report.checks:
        label = str(check.status).upper().ljust(4)
        console.print(f"[{label}] {check.id} - {check.message}", _STATUS_STYLE[check.status])
        if check.details:
            console.print(f"       {check.details}", Style.DIM)

    s = report.summary
    console.newline()
    suffix = " (strict mode)" if s.strict else ""
    line = f"Summary: pass={s.passed} warn={s.warned} fail={s.failed}{suffix}"
    console.print(line, Style.SUCCESS if s.ok else Style.ERROR)


_KIND_BY_CHECK: dict[str, ReleaseErrorKind] = {
    "prereq.git": "missing_tool",
    "prereq.gh": "missing_tool",
    "repo.inside": "not_in_repo",
    "auth.gh": "auth_failure",
    "repo.remote": "missing_remote",
    "repo.refs": "missing_ref",
    "repo.clean": "dirty_tree",
    "topology.ff": "diverged_branches",
    "tag.format": "bad_tag",
    "tag.local": "tag_collision",
    "tag.remote": "tag_collision",
    "tag.odd_edition_match": "edition_mismatch",
}


def doctor_error(report: DoctorReport, *, ignore: tuple[str, ...] = ()) -> ReleaseError | None:
    """The release error a failing report stands for, keyed by its first failure.

    Checks whose id starts with one of ``ignore`` do not count.
    """
    failures = [c for c in report.failures() if not c.id.startswith(ignore)]
    if not failures:
        return None
    check = failures[0]

    kind = _KIND_BY_CHECK.get(check.id)
    if kind is None:
        kind = "ruleset_incompatible" if check.id.startswith("rules.main.") else "doctor_failed"
    return ReleaseError(
        kind=kind,
        message=f"release doctor failed: {check.id} - {check.message}",
        hint=check.details or "Run: lexrel doctor --tag <tag> for the full report.",
    )


def doctor_passed(
    report: DoctorReport, *, ignore: tuple[str, ...] = ()
) -> Result[None, ReleaseError]:
    error = doctor_error(report, ignore=ignore)
    if error is not None:
        return Err(error)
    return Ok(None)
