from __future__ import annotations

import json
from pathlib import Path

import pytest

from lexrel.core.config import ReleaseConfig
from lexrel.core.result import Err, Ok
from lexrel.output.console import MockConsole
from lexrel.services.release.citation import CitationUpdate, upsert_citation_text
from lexrel.services.release.confirm import ConfirmPolicy
from lexrel.services.release.prepare import (
    PrepareOutcome,
    PrepareRequest,
    PrepareStatus,
    prepare_release,
)
from lexrel.test.services._fakes import (
    CITATION,
    DEV_SHA,
    MERGE_SHA,
    PREP,
    TAG,
    FakeClock,
    FakeShell,
    prepare_shell,
    write_repo_files,
)

_DATE = "2026-10-19"
_UPDATE = CitationUpdate(commit=DEV_SHA, date_generated=_DATE, date_released=_DATE)
_AUTO = ConfirmPolicy(yes=True, non_interactive=True)


def _shell(monkeypatch: pytest.MonkeyPatch, *, pr_state: str = "MERGED") -> FakeShell:
    FakeClock().install(monkeypatch)
    return prepare_shell(FakeShell(), pr_state=pr_state).install(monkeypatch)


def _prepare(
    tmp_path: Path,
    *,
    policy: ConfirmPolicy = _AUTO,
    watch_pr: bool = True,
    console: MockConsole | None = None,
):
    return prepare_release(
        PrepareRequest(tag=TAG, date=_DATE, watch_pr=watch_pr),
        repo_root=tmp_path,
        config=ReleaseConfig(),
        policy=policy,
        console=console or MockConsole(),
    )


def test_first_run_opens_pr_and_waits_for_merge(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    shell = _shell(monkeypatch)
    write_repo_files(tmp_path)
    console = MockConsole()

    result = _prepare(tmp_path, console=console)

    assert isinstance(result, Ok)
    outcome = result.value
    assert outcome.status is PrepareStatus.OK
    assert outcome.pr_number == 42
    assert outcome.merge_commit == MERGE_SHA
    assert outcome.prep_branch == PREP

    text = (tmp_path / "CITATION.cff").read_text(encoding="utf-8")
    assert f"commit: {DEV_SHA}" in text
    assert f"date-released: {_DATE}" in text
    assert f"date-generated: {_DATE}" in text

    assert shell.ran(f"git checkout -B {PREP} origin/dev")
    assert shell.ran(f"git push --force-with-lease -u origin {PREP}")
    assert shell.ran(f"gh pr create --base dev --head {PREP}")
    assert shell.ran("gh pr merge 42 --rebase --auto")
    assert not shell.ran("gh pr edit")
    assert console.find(f"Merged dev commit: {MERGE_SHA}")


def test_pr_closed_without_merge(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _shell(monkeypatch, pr_state="CLOSED")
    write_repo_files(tmp_path)

    result = _prepare(tmp_path)

    assert isinstance(result, Err)
    assert result.error.kind == "pr_closed_without_merge"
    assert result.error.message == "PR #42 was closed without merge"


def test_already_prepared_is_a_noop(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    shell = _shell(monkeypatch).on("git diff --quiet --", "")
    write_repo_files(tmp_path, citation=upsert_citation_text(CITATION, _UPDATE))
    console = MockConsole()

    result = _prepare(tmp_path, console=console)

    assert isinstance(result, Ok)
    assert result.value.status is PrepareStatus.ALREADY_PREPARED
    assert result.value.watched is False
    assert result.value.pr_number is None
    assert not shell.ran("git commit")
    assert not shell.ran("git push")
    assert not shell.ran("gh pr create")
    assert console.find("Release metadata appears already prepared.")


def test_existing_open_pr_is_edited(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    shell = _shell(monkeypatch).on("gh pr list", json.dumps([{"number": 42}]))
    write_repo_files(tmp_path)

    result = _prepare(tmp_path)

    assert isinstance(result, Ok)
    assert result.value.pr_number == 42
    assert shell.ran("gh pr edit 42")
    assert not shell.ran("gh pr create")


def test_pushed_prep_branch_is_reused(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    shell = (
        _shell(monkeypatch)
        .on(f"git show-ref --verify --quiet refs/remotes/origin/{PREP}", "")
        .on(f"git rev-list --left-right --count origin/dev...origin/{PREP}", "0\t1")
        .on("git show origin/dev:CITATION.cff", CITATION)
        .on(f"git show origin/{PREP}:CITATION.cff", upsert_citation_text(CITATION, _UPDATE))
    )
    write_repo_files(tmp_path)

    result = _prepare(tmp_path)

    assert isinstance(result, Ok)
    assert result.value.status is PrepareStatus.OK
    assert shell.ran(f"git checkout -B {PREP} origin/{PREP}")
    assert not shell.ran(f"git checkout -B {PREP} origin/dev")
    assert not shell.ran("git commit")
    assert not shell.ran("git push")
    assert shell.ran("gh pr create")


def test_stale_pushed_prep_branch_is_rebuilt(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    shell = (
        _shell(monkeypatch)
        .on(f"git show-ref --verify --quiet refs/remotes/origin/{PREP}", "")
        .on(f"git rev-list --left-right --count origin/dev...origin/{PREP}", "2\t1")
    )
    write_repo_files(tmp_path)

    result = _prepare(tmp_path)

    assert isinstance(result, Ok)
    assert shell.ran(f"git checkout -B {PREP} origin/dev")
    assert shell.ran(f"git push --force-with-lease -u origin {PREP}")


def test_local_prep_branch_with_foreign_commits_is_refused(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    shell = (
        _shell(monkeypatch)
        .on(f"git show-ref --verify --quiet refs/heads/{PREP}", "")
        .on(
            f"git log --format=%s origin/dev..{PREP}",
            f"wip: fix authors\nchore: prepare citation metadata for {TAG}",
        )
    )
    write_repo_files(tmp_path)

    result = _prepare(tmp_path)

    assert isinstance(result, Err)
    assert result.error.kind == "invalid_input"
    assert not shell.ran("git checkout")


def test_local_prep_branch_from_a_previous_run_is_reset(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    shell = (
        _shell(monkeypatch)
        .on(f"git show-ref --verify --quiet refs/heads/{PREP}", "")
        .on(
            f"git log --format=%s origin/dev..{PREP}",
            f"chore: prepare citation metadata for {TAG}",
        )
    )
    write_repo_files(tmp_path)

    result = _prepare(tmp_path)

    assert isinstance(result, Ok)
    assert shell.ran(f"git checkout -B {PREP} origin/dev")


def test_dry_run_mutates_nothing(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    shell = _shell(monkeypatch)
    write_repo_files(tmp_path)
    console = MockConsole()

    result = _prepare(tmp_path, policy=ConfirmPolicy(dry_run=True), console=console)

    assert isinstance(result, Ok)
    assert result.value.status is PrepareStatus.DRY_RUN
    assert (tmp_path / "CITATION.cff").read_text(encoding="utf-8") == CITATION
    for mutation in ("git fetch", "git checkout", "git commit", "git push", "gh pr"):
        assert not shell.ran(mutation), mutation
    assert console.find("DRY-RUN: would run: git fetch origin --tags")


def test_no_watch_returns_after_auto_merge(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    shell = _shell(monkeypatch)
    write_repo_files(tmp_path)

    result = _prepare(tmp_path, watch_pr=False)

    assert isinstance(result, Ok)
    assert result.value.pr_number == 42
    assert result.value.watched is False
    assert not shell.ran("gh pr view 42 --json state")


def test_existing_tag_is_rejected(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    shell = _shell(monkeypatch).on(f"git rev-parse -q --verify refs/tags/{TAG}", "f" * 40)
    write_repo_files(tmp_path)

    result = _prepare(tmp_path)

    assert isinstance(result, Err)
    assert result.error.kind == "tag_collision"
    assert not shell.ran("git checkout")


def test_edition_mismatch_stops_before_git(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    shell = _shell(monkeypatch)
    write_repo_files(tmp_path, edition="1.3.0")

    result = _prepare(tmp_path)

    assert isinstance(result, Err)
    assert result.error.kind == "edition_mismatch"
    assert shell.calls == []


def test_dirty_tree_is_rejected(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _shell(monkeypatch).on("git status --porcelain=v1", "?? notes.txt")
    write_repo_files(tmp_path)

    result = _prepare(tmp_path)

    assert isinstance(result, Err)
    assert result.error.kind == "dirty_tree"


def test_non_interactive_without_yes_aborts(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    shell = _shell(monkeypatch)
    write_repo_files(tmp_path)

    result = _prepare(tmp_path, policy=ConfirmPolicy(non_interactive=True))

    assert isinstance(result, Err)
    assert result.error.kind == "operator_aborted"
    assert not shell.ran("git fetch")


def test_outcome_json_keys() -> None:
    outcome = PrepareOutcome(
        status=PrepareStatus.OK,
        tag=TAG,
        date=_DATE,
        remote="origin",
        dev_branch="dev",
        prep_branch=PREP,
        pr_number=42,
        watched=True,
    )

    assert outcome.to_json() == {
        "status": "ok",
        "tag": TAG,
        "date": _DATE,
        "remote": "origin",
        "devBranch": "dev",
        "prepBranch": PREP,
        "prNumber": 42,
        "watched": True,
    }


_MERGED_DEV_HEAD = "f" * 40
_PREP_TITLE = f"chore: prepare citation metadata for {TAG}"


def _merged_prep(shell: FakeShell) -> FakeShell:
    """dev after the prep PR landed: head moved past the recorded ``commit:``."""
    return (
        shell.on("git rev-parse --verify --quiet origin/dev^{commit}", _MERGED_DEV_HEAD)
        .on("git log -1 --format=%s origin/dev", _PREP_TITLE)
        .on("git show origin/dev:CITATION.cff", upsert_citation_text(CITATION, _UPDATE))
    )


def test_rerun_after_prep_pr_merged_is_already_prepared(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    shell = _merged_prep(_shell(monkeypatch))
    write_repo_files(tmp_path, citation=upsert_citation_text(CITATION, _UPDATE))

    result = _prepare(tmp_path)

    assert isinstance(result, Ok)
    assert result.value.status is PrepareStatus.ALREADY_PREPARED
    assert result.value.pr_number is None
    for mutation in ("git checkout", "git commit", "git push", "gh pr create", "gh pr merge"):
        assert not shell.ran(mutation), mutation
    assert (tmp_path / "CITATION.cff").read_text(encoding="utf-8").count(DEV_SHA) == 1


def test_merged_prep_for_another_date_is_prepared_again(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    earlier = CitationUpdate(
        commit=DEV_SHA, date_generated="2026-10-01", date_released="2026-10-01"
    )
    shell = _merged_prep(_shell(monkeypatch)).on(
        "git show origin/dev:CITATION.cff", upsert_citation_text(CITATION, earlier)
    )
    write_repo_files(tmp_path)

    result = _prepare(tmp_path)

    assert isinstance(result, Ok)
    assert result.value.status is PrepareStatus.OK
    assert shell.ran("git commit")
    assert shell.ran("gh pr create")
    text = (tmp_path / "CITATION.cff").read_text(encoding="utf-8")
    assert f"commit: {_MERGED_DEV_HEAD}" in text


def test_dry_run_after_prep_pr_merged(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    shell = _merged_prep(_shell(monkeypatch))
    write_repo_files(tmp_path)
    console = MockConsole()

    result = _prepare(tmp_path, policy=ConfirmPolicy(dry_run=True), console=console)

    assert isinstance(result, Ok)
    assert result.value.status is PrepareStatus.DRY_RUN
    assert console.find("DRY-RUN: nothing to commit")
    assert not shell.ran("git checkout")


def test_failed_pr_listing_stops_before_create(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    shell = _shell(monkeypatch).on("gh pr list", 1)
    write_repo_files(tmp_path)

    result = _prepare(tmp_path)

    assert isinstance(result, Err)
    assert result.error.hint is not None
    assert f"gh pr list --head {PREP} --base dev" in result.error.hint
    assert shell.ran("git push --force-with-lease")
    assert not shell.ran("gh pr create")
    assert not shell.ran("gh pr merge")
