"""Process exit codes for the lexrel commands.

Every fatal release failure exits with ``FAILURE`` so that CI wrappers and
shell scripts only need to test for zero. ``USAGE`` is reserved for argument
errors detected before any git or gh call is made (typer uses 2 as well).
"""

from enum import IntEnum

__all__ = ["ErrorCode"]


class ErrorCode(IntEnum):
    """Exit codes for lexrel commands."""

    OK = 0
    FAILURE = 1
    USAGE = 2

    def __str__(self) -> str:
        return self.name.lower()
