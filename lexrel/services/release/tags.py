from __future__ import annotations

import re
from datetime import UTC, datetime

from lexrel.core.result import Err, Ok, Result
from lexrel.services.release.errors import ReleaseError

_TAG_RE = re.compile(r"^v\d+\.\d+\.\d+$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

PREP_BRANCH_PREFIX = "chore/release-prep-"


def ensure_tag_format(tag: str) -> Result[str, ReleaseError]:
    if not _TAG_RE.match(tag):
        return Err(
            ReleaseError(
                kind="bad_tag",
                message=f"invalid tag '{tag}'",
                hint="Expected format vX.Y.Z (e.g. v1.4.0).",
            )
        )
    return Ok(tag)


def tag_version(tag: str) -> str:
    """``v1.2.3`` -> ``1.2.3``."""
    return tag.removeprefix("v")


def today_utc() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%d")


def ensure_release_date(date: str) -> Result[str, ReleaseError]:
    if not _DATE_RE.match(date):
        return Err(
            ReleaseError(
                kind="invalid_input",
                message=f"invalid date '{date}'",
                hint="Expected YYYY-MM-DD.",
            )
        )
    try:
        datetime.strptime(date, "%Y-%m-%d")
    except ValueError:
        return Err(ReleaseError(kind="invalid_input", message=f"not a calendar date: '{date}'"))
    return Ok(date)


def prep_branch_name(tag: str) -> str:
    return f"{PREP_BRANCH_PREFIX}{tag}"


def prep_commit_title(tag: str) -> str:
    return f"chore: prepare citation metadata for {tag}"


def prep_pr_body(tag: str) -> str:
    return f"Automated release preparation for {tag} (sets date-released)."
