"""Tests for git/repository.py.

Most tests drive a real git binary against a throwaway clone whose
``origin`` is a bare repository under tmp_path.
"""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from lexrel.core.result import Err, Ok
from lexrel.git.repository import Divergence, Repository, parse_repo_slug

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def _git(cwd: Path, *args: str) -> str:
    proc = subprocess.run(
        ["git", *args], cwd=cwd, check=True, capture_output=True, text=True
    )
    return proc.stdout.strip()


def _commit(cwd: Path, name: str, content: str, message: str) -> None:
    (cwd / name).write_text(content, encoding="utf-8")
    _git(cwd, "add", name)
    _git(cwd, "commit", "-q", "-m", message)


@pytest.fixture
def clone(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Work tree on ``dev`` two commits ahead of ``main``, both pushed."""
    gitconfig = tmp_path / "gitconfig"
    gitconfig.write_text("", encoding="utf-8")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(gitconfig))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for role in ("AUTHOR", "COMMITTER"):
        monkeypatch.setenv(f"GIT_{role}_NAME", "Release Bot")
        monkeypatch.setenv(f"GIT_{role}_EMAIL", "release@example.org")

    bare = tmp_path / "origin.git"
    bare.mkdir()
    _git(bare, "init", "-q", "--bare")

    work = tmp_path / "work"
    work.mkdir()
    _git(work, "init", "-q")
    _git(work, "checkout", "-q", "-b", "main")
    _git(work, "remote", "add", "origin", str(bare))
    _commit(work, "CITATION.cff", "cff-version: 1.2.0\ntitle: LEX-0\n", "initial")
    _git(work, "push", "-q", "origin", "main")

    _git(work, "checkout", "-q", "-b", "dev")
    _commit(work, "CITATION.cff", "cff-version: 1.2.0\ntitle: LEX-0\ntype: dataset\n", "type")
    _commit(work, "README.md", "# LEX-0\n", "readme")
    _git(work, "push", "-q", "origin", "dev")
    _git(work, "fetch", "-q", "origin")
    return work


@requires_git
class TestQueries:
    def test_inside_work_tree(self, clone: Path, tmp_path: Path) -> None:
        assert Repository(clone).inside_work_tree()
        outside = tmp_path / "elsewhere"
        outside.mkdir()
        assert not Repository(outside).inside_work_tree()

    def test_clean_tree(self, clone: Path) -> None:
        repo = Repository(clone)
        assert repo.clean_tree() == Ok(True)

        (clone / "notes.txt").write_text("draft", encoding="utf-8")
        assert repo.clean_tree() == Ok(False)

    def test_current_branch(self, clone: Path) -> None:
        assert Repository(clone).current_branch() == "dev"

    def test_remote_queries(self, clone: Path) -> None:
        repo = Repository(clone)
        assert repo.remote_exists("origin")
        assert not repo.remote_exists("upstream")
        assert repo.remote_ref_exists("origin", "main")
        assert not repo.remote_ref_exists("origin", "stable")

        sha = repo.remote_sha("origin", "dev")
        assert sha == Ok(_git(clone, "rev-parse", "HEAD"))

        missing = repo.remote_sha("origin", "stable")
        assert isinstance(missing, Err)
        assert missing.error.message == "ref not found: origin/stable"

    def test_local_path_remote_has_no_slug(self, clone: Path) -> None:
        result = Repository(clone).repo_slug("origin")
        assert isinstance(result, Err)
        assert "cannot derive owner/name" in result.error.message

    def test_divergence(self, clone: Path) -> None:
        repo = Repository(clone)
        assert repo.divergence("origin/main", "origin/dev") == Ok(Divergence(0, 2))

        _git(clone, "checkout", "-q", "main")
        _commit(clone, "HOTFIX.md", "fix\n", "hotfix")
        _git(clone, "push", "-q", "origin", "main")
        assert isinstance(repo.fetch("origin"), Ok)

        result = repo.divergence("origin/main", "origin/dev")
        assert isinstance(result, Ok)
        assert result.value == Divergence(1, 2)
        assert result.value.diverged

    def test_show_file(self, clone: Path) -> None:
        repo = Repository(clone)
        assert repo.show_file("origin/main", "CITATION.cff") == Ok(
            "cff-version: 1.2.0\ntitle: LEX-0\n"
        )
        assert isinstance(repo.show_file("origin/main", "README.md"), Err)

    def test_commit_subjects(self, clone: Path) -> None:
        assert Repository(clone).commit_subjects("origin/main..dev") == Ok(["readme", "type"])

    def test_head_subject(self, clone: Path) -> None:
        repo = Repository(clone)
        assert repo.head_subject("dev") == Ok("readme")
        assert isinstance(repo.head_subject("origin/missing"), Err)

    def test_file_changed(self, clone: Path) -> None:
        repo = Repository(clone)
        assert repo.file_changed("CITATION.cff") == Ok(False)

        (clone / "CITATION.cff").write_text("cff-version: 1.2.0\n", encoding="utf-8")
        assert repo.file_changed("CITATION.cff") == Ok(True)

    def test_tags(self, clone: Path) -> None:
        repo = Repository(clone)
        assert not repo.local_tag_exists("v1.4.0")
        assert not repo.remote_tag_exists("origin", "v1.4.0")

        _git(clone, "tag", "v1.4.0")
        _git(clone, "push", "-q", "origin", "v1.4.0")
        assert repo.local_tag_exists("v1.4.0")
        assert repo.remote_tag_exists("origin", "v1.4.0")


@requires_git
class TestMutations:
    def test_fast_forward_main(self, clone: Path) -> None:
        repo = Repository(clone)

        assert repo.checkout("main") == Ok(None)
        assert repo.merge_ff_only("origin/dev") == Ok(None)
        assert repo.push("origin", "main") == Ok(None)
        assert repo.fetch("origin") == Ok(None)
        assert repo.divergence("origin/main", "origin/dev") == Ok(Divergence(0, 0))

    def test_merge_ff_only_refuses_divergence(self, clone: Path) -> None:
        repo = Repository(clone)
        _git(clone, "checkout", "-q", "main")
        _commit(clone, "HOTFIX.md", "fix\n", "hotfix")

        result = repo.merge_ff_only("origin/dev")
        assert isinstance(result, Err)
        assert result.error.command.startswith("merge --ff-only")

    def test_prep_branch_commit_and_push(self, clone: Path) -> None:
        repo = Repository(clone)
        prep = "chore/release-prep-v1.4.0"

        assert repo.checkout_reset(prep, "origin/dev") == Ok(None)
        (clone / "CITATION.cff").write_text("cff-version: 1.2.0\ncommit: abc\n", encoding="utf-8")
        assert repo.add("CITATION.cff") == Ok(None)
        assert repo.commit("chore: prepare citation metadata for v1.4.0") == Ok(None)
        assert repo.push_force_with_lease("origin", prep) == Ok(None)

        assert repo.local_branch_exists(prep)
        assert repo.remote_ref_exists("origin", prep)
        assert repo.divergence("origin/dev", f"origin/{prep}") == Ok(Divergence(0, 1))


class TestParseRepoSlug:
    @pytest.mark.parametrize(
        ("url", "slug"),
        [
            ("git@github.com:lex-project/lex-0.git", "lex-project/lex-0"),
            ("git@github.com:lex-project/lex-0", "lex-project/lex-0"),
            ("https://github.com/lex-project/lex-0.git", "lex-project/lex-0"),
            ("https://github.com/lex-project/lex-0/", "lex-project/lex-0"),
            ("  https://github.com/lex-project/lex-0\n", "lex-project/lex-0"),
        ],
    )
    def test_github_urls(self, url: str, slug: str) -> None:
        assert parse_repo_slug(url) == slug

    @pytest.mark.parametrize("url", ["/srv/git/lex-0.git", "file:///tmp/x", ""])
    def test_unsupported(self, url: str) -> None:
        assert parse_repo_slug(url) is None


class TestDivergence:
    def test_flags(self) -> None:
        assert Divergence(0, 3).fast_forwardable
        assert not Divergence(0, 3).diverged
        assert Divergence(1, 2).diverged
        assert not Divergence(2, 0).fast_forwardable
        assert Divergence(0, 0).identical
