"""Git working-copy access.

Usage:
    from lexrel.git import Repository

    repo = Repository(Path.cwd())
    slug = repo.repo_slug("origin")
"""

from lexrel.git.repository import (
    Divergence,
    GitError,
    Repository,
    parse_repo_slug,
)

__all__ = [
    "Divergence",
    "GitError",
    "Repository",
    "parse_repo_slug",
]
