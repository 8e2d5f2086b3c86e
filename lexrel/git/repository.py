"""Local working-copy queries and the few mutations a release needs.

Usage:
    repo = Repository(Path.cwd())

    if not repo.remote_exists("origin"):
        ...

    match repo.divergence("origin/main", "origin/dev"):
        case Ok(d) if d.diverged:
            print(f"main-only={d.left_only}, dev-only={d.right_only}")
        case Err(e):
            print(e.message)

Queries capture output. Mutations (fetch, checkout, merge, commit, push)
inherit stdio so the operator sees git's own progress and prompts.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from lexrel.core.result import Err, Ok, Result
from lexrel.platform.process import ProcessError
from lexrel.platform.process import run as run_process
from lexrel.platform.process import run_inherit

_GIT_TIMEOUT_SECONDS = 30.0
_GIT_NETWORK_TIMEOUT_SECONDS = 3 * 60.0
_NETWORK_COMMANDS = frozenset({"fetch", "push", "ls-remote"})

_HTTPS_RE = re.compile(r"^https://[^/]+/([^/]+)/([^/]+?)(?:\.git)?/?$")
_SCP_RE = re.compile(r"^git@[^:]+:([^/]+)/([^/]+?)(?:\.git)?$")

__all__ = [
    "Divergence",
    "GitError",
    "Repository",
    "parse_repo_slug",
]


@dataclass(frozen=True, slots=True)
class GitError:
    """Error from a git operation.

    Attributes:
        command: The git subcommand that failed (e.g. "rev-parse origin/dev")
        message: git's stderr, or a description when it printed nothing
        returncode: Process return code (-1 if git could not be launched)
    """

    command: str
    message: str
    returncode: int = 1


@dataclass(frozen=True, slots=True)
class Divergence:
    """Commit counts reachable from only one side of ``left...right``."""

    left_only: int
    right_only: int

    @property
    def fast_forwardable(self) -> bool:
        """True if right can be fast-forwarded onto left (left has nothing extra)."""
        return self.left_only == 0

    @property
    def diverged(self) -> bool:
        return self.left_only > 0 and self.right_only > 0

    @property
    def identical(self) -> bool:
        return self.left_only == 0 and self.right_only == 0


def parse_repo_slug(remote_url: str) -> str | None:
    """Extract ``owner/name`` from an https or scp-style git URL.

    >>> parse_repo_slug("git@github.com:lex-project/lex-0.git")
    'lex-project/lex-0'
    """
    url = remote_url.strip()
    for pattern in (_HTTPS_RE, _SCP_RE):
        m = pattern.match(url)
        if m is not None:
            return f"{m.group(1)}/{m.group(2)}"
    return None


class Repository:
    """A git working copy rooted at ``path``."""

    def __init__(self, path: Path) -> None:
        self.path = path

    # -- queries --------------------------------------------------------------

    def inside_work_tree(self) -> bool:
        result = self._run(["rev-parse", "--is-inside-work-tree"])
        return isinstance(result, Ok) and result.value == "true"

    def clean_tree(self) -> Result[bool, GitError]:
        """True iff ``status --porcelain=v1`` lists nothing."""
        result = self._run(["status", "--porcelain=v1"], trim=False)
        if isinstance(result, Err):
            return Err(_git_error("status", result.error))
        return Ok(result.value.strip() == "")

    def current_branch(self) -> str:
        """Checked-out branch name; empty on detached HEAD or error."""
        result = self._run(["branch", "--show-current"])
        if isinstance(result, Err):
            return ""
        return result.value.strip()

    def remote_url(self, remote: str) -> Result[str, GitError]:
        result = self._run(["remote", "get-url", remote])
        if isinstance(result, Err):
            return Err(_git_error(f"remote get-url {remote}", result.error))
        return Ok(result.value.strip())

    def remote_exists(self, remote: str) -> bool:
        return isinstance(self.remote_url(remote), Ok)

    def repo_slug(self, remote: str) -> Result[str, GitError]:
        url = self.remote_url(remote)
        if isinstance(url, Err):
            return url
        slug = parse_repo_slug(url.value)
        if slug is None:
            return Err(
                GitError(
                    command=f"remote get-url {remote}",
                    message=f"cannot derive owner/name from remote '{remote}' URL '{url.value}'",
                )
            )
        return Ok(slug)

    def remote_sha(self, remote: str, branch: str) -> Result[str, GitError]:
        ref = f"{remote}/{branch}"
        result = self._run(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"])
        if isinstance(result, Err):
            return Err(
                GitError(
                    command=f"rev-parse {ref}",
                    message=f"ref not found: {ref}",
                    returncode=result.error.returncode,
                )
            )
        return Ok(result.value.strip())

    def remote_ref_exists(self, remote: str, branch: str) -> bool:
        result = self._run(["show-ref", "--verify", "--quiet", f"refs/remotes/{remote}/{branch}"])
        return isinstance(result, Ok)

    def local_branch_exists(self, branch: str) -> bool:
        result = self._run(["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"])
        return isinstance(result, Ok)

    def local_tag_exists(self, tag: str) -> bool:
        result = self._run(["rev-parse", "-q", "--verify", f"refs/tags/{tag}"])
        return isinstance(result, Ok)

    def remote_tag_exists(self, remote: str, tag: str) -> bool:
        result = self._run(["ls-remote", "--tags", remote, tag])
        return isinstance(result, Ok) and result.value.strip() != ""

    def divergence(self, left: str, right: str) -> Result[Divergence, GitError]:
        """Run ``rev-list --left-right --count left...right``."""
        result = self._run(["rev-list", "--left-right", "--count", f"{left}...{right}"])
        if isinstance(result, Err):
            return Err(_git_error(f"rev-list {left}...{right}", result.error))

        parts = result.value.split()
        if len(parts) != 2 or not all(p.isdigit() for p in parts):
            return Err(
                GitError(
                    command=f"rev-list {left}...{right}",
                    message=f"unexpected rev-list output: {result.value!r}",
                )
            )
        return Ok(Divergence(left_only=int(parts[0]), right_only=int(parts[1])))

    def show_file(self, ref: str, path: str) -> Result[str, GitError]:
        """Content of ``path`` at ``ref`` (``git show ref:path``), untrimmed."""
        result = self._run(["show", f"{ref}:{path}"], trim=False)
        if isinstance(result, Err):
            return Err(_git_error(f"show {ref}:{path}", result.error))
        return Ok(result.value)

    def commit_subjects(self, revision_range: str) -> Result[list[str], GitError]:
        result = self._run(["log", "--format=%s", revision_range])
        if isinstance(result, Err):
            return Err(_git_error(f"log {revision_range}", result.error))
        return Ok([line for line in result.value.splitlines() if line.strip()])

    def head_subject(self, ref: str) -> Result[str, GitError]:
        """Subject line of the commit ``ref`` points at."""
        result = self._run(["log", "-1", "--format=%s", ref])
        if isinstance(result, Err):
            return Err(_git_error(f"log -1 {ref}", result.error))
        return Ok(result.value.strip())

    def file_changed(self, path: str) -> Result[bool, GitError]:
        """True if the working-tree copy of ``path`` differs from the index."""
        result = self._run(["diff", "--quiet", "--", path])
        if isinstance(result, Ok):
            return Ok(False)
        if result.error.returncode == 1:
            return Ok(True)
        return Err(_git_error(f"diff -- {path}", result.error))

    # -- mutations ------------------------------------------------------------

    def fetch(self, remote: str) -> Result[None, GitError]:
        return self._mutate(["fetch", remote, "--tags"])

    def checkout(self, branch: str) -> Result[None, GitError]:
        return self._mutate(["checkout", branch])

    def checkout_reset(self, branch: str, start_point: str) -> Result[None, GitError]:
        """Create or reset ``branch`` at ``start_point`` and check it out."""
        return self._mutate(["checkout", "-B", branch, start_point])

    def merge_ff_only(self, ref: str) -> Result[None, GitError]:
        return self._mutate(["merge", "--ff-only", ref])

    def add(self, path: str) -> Result[None, GitError]:
        result = self._run(["add", "--", path])
        if isinstance(result, Err):
            return Err(_git_error(f"add {path}", result.error))
        return Ok(None)

    def commit(self, message: str) -> Result[None, GitError]:
        return self._mutate(["commit", "-m", message])

    def push(self, remote: str, branch: str) -> Result[None, GitError]:
        return self._mutate(["push", remote, branch])

    def push_force_with_lease(self, remote: str, branch: str) -> Result[None, GitError]:
        """Push ``branch`` with upstream tracking, refusing to clobber unseen commits."""
        return self._mutate(["push", "--force-with-lease", "-u", remote, branch])

    # -- plumbing -------------------------------------------------------------

    def _timeout(self, args: list[str]) -> float:
        command = args[0] if args else ""
        if command in _NETWORK_COMMANDS:
            return _GIT_NETWORK_TIMEOUT_SECONDS
        return _GIT_TIMEOUT_SECONDS

    def _run(self, args: list[str], *, trim: bool = True) -> Result[str, ProcessError]:
        return run_process(
            ["git", "-C", str(self.path), *args],
            cwd=self.path,
            timeout=self._timeout(args),
            trim=trim,
        )

    def _mutate(self, args: list[str]) -> Result[None, GitError]:
        result = run_inherit(
            ["git", "-C", str(self.path), *args],
            cwd=self.path,
            timeout=self._timeout(args),
        )
        if isinstance(result, Err):
            return Err(_git_error(" ".join(args[:3]), result.error))
        return Ok(None)


def _git_error(command: str, error: ProcessError) -> GitError:
    return GitError(
        command=command,
        message=error.stderr.strip() or error.stdout.strip() or f"git {command} failed",
        returncode=error.returncode,
    )
