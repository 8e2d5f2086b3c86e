"""Scripted git/gh for release service tests.

``FakeShell`` answers commands by longest token prefix. Each rule holds a
queue of responses; the last one is sticky so a poll can see "not yet" a
few times and then settle. A string answer succeeds with that stdout, an
int answer fails with that exit code. Unmatched commands fail with exit 1,
which reads as "absent" for git existence checks.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from lexrel.core.result import Err, Ok, Result
from lexrel.platform.process import ProcessError

Answer = str | int | ProcessError

REMOTE_URL = "git@github.com:lex-project/lex-0.git"
SLUG = "lex-project/lex-0"
DEV_SHA = "d" * 40
MAIN_SHA = "a" * 40
MERGE_SHA = "e" * 40
TAG = "v1.4.0"
PREP = f"chore/release-prep-{TAG}"

CITATION = """cff-version: 1.2.0
title: "LEX-0"
type: dataset
date-released: 2026-01-15
authors:
  - name: LEX-0 Team
"""

ODD = """<?xml version="1.0" encoding="UTF-8"?>
<TEI xmlns="http://www.tei-c.org/ns/1.0">
  <teiHeader>
    <fileDesc>
      <editionStmt>
        <edition n="1.4.0">LEX-0 1.4.0</edition>
      </editionStmt>
    </fileDesc>
  </teiHeader>
</TEI>
"""


def _normalize(cmd: list[str]) -> list[str]:
    if len(cmd) >= 3 and cmd[0] == "git" and cmd[1] == "-C":
        return ["git", *cmd[3:]]
    return list(cmd)


@dataclass
class FakeShell:
    rules: dict[tuple[str, ...], list[Answer]] = field(default_factory=dict)
    calls: list[list[str]] = field(default_factory=list)
    missing_tools: set[str] = field(default_factory=set)

    def on(self, prefix: str, *answers: Answer) -> FakeShell:
        self.rules[tuple(prefix.split())] = list(answers)
        return self

    def _answer(self, cmd: list[str]) -> Result[str, ProcessError]:
        argv = _normalize(cmd)
        self.calls.append(argv)
        best: tuple[str, ...] | None = None
        for prefix in self.rules:
            if tuple(argv[: len(prefix)]) == prefix and (best is None or len(prefix) > len(best)):
                best = prefix
        if best is None:
            return Err(ProcessError(command=tuple(argv), returncode=1, stdout="", stderr=""))

        queue = self.rules[best]
        answer = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(answer, ProcessError):
            return Err(answer)
        if isinstance(answer, int):
            return Err(ProcessError(command=tuple(argv), returncode=answer, stdout="", stderr=""))
        return Ok(answer)

    def run(
        self,
        cmd: list[str],
        cwd: Path,
        env: dict[str, str] | None = None,
        *,
        timeout: float | None = None,
        trim: bool = True,
    ) -> Result[str, ProcessError]:
        del cwd, env, timeout, trim
        return self._answer(cmd)

    def run_inherit(
        self,
        cmd: list[str],
        cwd: Path,
        env: dict[str, str] | None = None,
        *,
        timeout: float | None = None,
    ) -> Result[None, ProcessError]:
        del cwd, env, timeout
        result = self._answer(cmd)
        if isinstance(result, Err):
            return result
        return Ok(None)

    def command_exists(self, name: str) -> bool:
        return name not in self.missing_tools

    def ran(self, prefix: str) -> bool:
        return self.count(prefix) > 0

    def count(self, prefix: str) -> int:
        tokens = prefix.split()
        return sum(1 for c in self.calls if c[: len(tokens)] == tokens)

    def install(self, monkeypatch: pytest.MonkeyPatch) -> FakeShell:
        import lexrel.git.repository as repository_mod
        import lexrel.services.release.doctor as doctor_mod
        import lexrel.services.release.gh as gh_mod
        import lexrel.services.release.prepare as prepare_mod

        monkeypatch.setattr(repository_mod, "run_process", self.run)
        monkeypatch.setattr(repository_mod, "run_inherit", self.run_inherit)
        monkeypatch.setattr(gh_mod, "run_process", self.run)
        monkeypatch.setattr(gh_mod, "run_inherit", self.run_inherit)
        monkeypatch.setattr(gh_mod, "command_exists", self.command_exists)
        monkeypatch.setattr(gh_mod, "sleep", lambda seconds: None)
        monkeypatch.setattr(doctor_mod, "command_exists", self.command_exists)
        monkeypatch.setattr(prepare_mod, "command_exists", self.command_exists)
        return self


@dataclass
class FakeClock:
    """Stands in for ``monotonic``/``sleep``: sleeping advances time."""

    now: float = 0.0
    sleeps: list[float] = field(default_factory=list)

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def install(self, monkeypatch: pytest.MonkeyPatch) -> FakeClock:
        import lexrel.services.release.waiter as waiter_mod

        monkeypatch.setattr(waiter_mod, "monotonic", self.monotonic)
        monkeypatch.setattr(waiter_mod, "sleep", self.sleep)
        return self


def write_repo_files(root: Path, *, citation: str = CITATION, edition: str = "1.4.0") -> None:
    (root / "CITATION.cff").write_text(citation, encoding="utf-8")
    (root / "odd").mkdir(exist_ok=True)
    (root / "odd" / "lex-0.odd").write_text(
        ODD.replace('n="1.4.0"', f'n="{edition}"'), encoding="utf-8"
    )


def runs(*ids: int) -> str:
    return json.dumps([{"databaseId": i} for i in ids])


def ruleset_payload(
    ruleset_id: int, branch: str, rules: list[dict[str, object]]
) -> str:
    return json.dumps(
        {
            "id": ruleset_id,
            "name": f"{branch} protection",
            "target": "branch",
            "enforcement": "active",
            "conditions": {"ref_name": {"include": [f"refs/heads/{branch}"], "exclude": []}},
            "rules": rules,
        }
    )


MAIN_RULES: list[dict[str, object]] = [
    {"type": "non_fast_forward"},
    {"type": "required_linear_history"},
]

DEV_RULES: list[dict[str, object]] = [
    {"type": "pull_request", "parameters": {"required_approving_review_count": 0}},
    {
        "type": "required_status_checks",
        "parameters": {
            "required_status_checks": [{"context": "check_citation"}, {"context": "pr"}]
        },
    },
]


def git_context(shell: FakeShell, *, branch: str = "dev") -> FakeShell:
    """A clean clone on ``branch`` with an ``origin`` GitHub remote."""
    return (
        shell.on("git rev-parse --is-inside-work-tree", "true")
        .on("git status --porcelain=v1", "")
        .on("git remote get-url origin", REMOTE_URL)
        .on("git branch --show-current", branch)
        .on("git fetch origin --tags", "")
        .on("gh auth status", "")
    )


def prepare_shell(shell: FakeShell, *, pr_state: str = "MERGED") -> FakeShell:
    """Everything a first, successful prepare run needs."""
    return (
        git_context(shell)
        .on("git rev-parse --verify --quiet origin/dev^{commit}", DEV_SHA)
        .on("git checkout -B", "")
        .on("git diff --quiet --", 1)
        .on("git add --", "")
        .on("git commit -m", "")
        .on("git push --force-with-lease", "")
        .on("gh pr list", "[]")
        .on("gh pr create", "")
        .on(f"gh pr view {PREP} --json number", json.dumps({"number": 42}))
        .on("gh pr edit", "")
        .on("gh pr merge 42 --rebase --auto", "")
        .on("gh pr view 42 --json state", json.dumps({"state": pr_state}))
        .on(
            "gh pr view 42 --json mergeCommit",
            json.dumps({"mergeCommit": {"oid": MERGE_SHA}}),
        )
    )


def cut_shell(shell: FakeShell) -> FakeShell:
    """A complete, green release cut of ``TAG``."""
    helper_runs = (
        "gh run list --workflow release-helper.yml --branch main --event workflow_dispatch"
    )
    return (
        prepare_shell(shell)
        .on(f"gh api repos/{SLUG}/rulesets", json.dumps([{"id": 1}, {"id": 2}]))
        .on(f"gh api repos/{SLUG}/rulesets/1", ruleset_payload(1, "main", MAIN_RULES))
        .on(f"gh api repos/{SLUG}/rulesets/2", ruleset_payload(2, "dev", DEV_RULES))
        .on("git rev-list --left-right --count origin/main...origin/dev", "0\t3")
        .on("git rev-parse --verify --quiet origin/main^{commit}", MAIN_SHA)
        .on("gh run list --workflow build-site --branch dev", runs(100))
        .on("gh run list --workflow build-site --branch main", runs(101))
        .on("gh run watch", "")
        .on("git checkout", "")
        .on("git merge --ff-only", "")
        .on("git push origin main", "")
        .on(helper_runs, runs(7), runs(8, 7))
        .on("gh workflow run release-helper.yml", "")
    )
