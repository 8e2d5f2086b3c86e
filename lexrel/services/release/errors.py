from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from lexrel.git.repository import GitError

ReleaseErrorKind = Literal[
    "missing_tool",
    "not_in_repo",
    "dirty_tree",
    "missing_remote",
    "missing_ref",
    "bad_tag",
    "edition_mismatch",
    "diverged_branches",
    "nothing_to_promote",
    "ruleset_incompatible",
    "tag_collision",
    "workflow_timeout",
    "workflow_failed",
    "pr_closed_without_merge",
    "auth_failure",
    "operator_aborted",
    "doctor_failed",
    "invalid_input",
    "unexpected_exit",
]


@dataclass(frozen=True, slots=True)
class ReleaseError:
    kind: ReleaseErrorKind
    message: str
    hint: str | None = None


def from_git(error: GitError, *, kind: ReleaseErrorKind = "unexpected_exit") -> ReleaseError:
    return ReleaseError(kind=kind, message=f"git {error.command} failed", hint=error.message)
