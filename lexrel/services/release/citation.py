"""CITATION.cff metadata upsert and ODD edition lookup.

The citation edit is line-oriented on purpose: a YAML round-trip would
reorder keys and drop comments in a file that humans maintain. Only the
upserted ``key: value`` lines change; every other byte is kept.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from lexrel.core.result import Err, Ok, Result
from lexrel.services.release.errors import ReleaseError
from lexrel.services.release.tags import tag_version

_EDITION_RE = re.compile(r"""<edition\b[^>]*\bn=(["'])([^"']+)\1""")

# New keys go after the first of these, in priority order.
_ANCHOR_KEYS = ("type", "title", "cff-version")


@dataclass(frozen=True, slots=True)
class CitationUpdate:
    commit: str
    date_generated: str
    date_released: str | None = None

    def pairs(self) -> list[tuple[str, str]]:
        out = [("commit", self.commit), ("date-generated", self.date_generated)]
        if self.date_released is not None:
            out.append(("date-released", self.date_released))
        return out


def read_odd_edition(odd_path: Path) -> Result[str, ReleaseError]:
    """Return ``n`` of the first ``<edition n="...">`` in the ODD source."""
    if not odd_path.is_file():
        return Err(ReleaseError(kind="invalid_input", message=f"missing ODD file: {odd_path}"))
    try:
        xml = odd_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        return Err(ReleaseError(kind="invalid_input", message=f"cannot read {odd_path}: {e}"))

    m = _EDITION_RE.search(xml)
    if m is None:
        return Err(
            ReleaseError(
                kind="invalid_input",
                message=f'could not find <edition n="..."> in {odd_path}',
            )
        )
    return Ok(m.group(2))


def ensure_edition_matches(tag: str, odd_path: Path) -> Result[str, ReleaseError]:
    """Check ``Version(tag) == Edition``; returns the edition."""
    edition = read_odd_edition(odd_path)
    if isinstance(edition, Err):
        return edition
    if tag_version(tag) != edition.value:
        return Err(
            ReleaseError(
                kind="edition_mismatch",
                message=f"tag '{tag}' does not match {odd_path.name} edition n='{edition.value}'",
                hint=f"Bump <edition n=...> in the ODD to {tag_version(tag)} or pick tag "
                f"v{edition.value}.",
            )
        )
    return Ok(edition.value)


def _anchor_index(lines: list[str]) -> int:
    for key in _ANCHOR_KEYS:
        for i, line in enumerate(lines):
            if line.startswith(f"{key}:"):
                return i
    return 0


def upsert_citation_text(text: str, update: CitationUpdate) -> str:
    """Apply ``update`` to CITATION.cff content and return the new content.

    Existing ``key:`` lines are rewritten in place. Missing keys are inserted
    one after another below the anchor line (``type:``, else ``title:``, else
    ``cff-version:``, else the first line). The result ends with exactly one
    newline.
    """
    lines = text.replace("\r\n", "\n").split("\n")
    insert_after = _anchor_index(lines)

    for key, value in update.pairs():
        entry = f"{key}: {value}"
        idx = next((i for i, line in enumerate(lines) if line.startswith(f"{key}:")), -1)
        if idx != -1:
            lines[idx] = entry
            continue
        lines.insert(insert_after + 1, entry)
        insert_after += 1

    return "\n".join(lines).rstrip("\n") + "\n"


def update_citation_file(path: Path, update: CitationUpdate) -> Result[bool, ReleaseError]:
    """Upsert metadata in ``path``; returns True if the file was rewritten."""
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return Err(ReleaseError(kind="invalid_input", message=f"missing citation file: {path}"))
    except (OSError, UnicodeDecodeError) as e:
        return Err(ReleaseError(kind="invalid_input", message=f"cannot read {path}: {e}"))

    original = raw.replace("\r\n", "\n")
    updated = upsert_citation_text(original, update)
    if updated == original:
        return Ok(False)

    try:
        # newline="" keeps the normalized "\n" endings on every platform.
        with path.open("w", encoding="utf-8", newline="") as f:
            f.write(updated)
    except OSError as e:
        return Err(ReleaseError(kind="invalid_input", message=f"cannot write {path}: {e}"))
    return Ok(True)


def citation_field(text: str, key: str) -> str | None:
    """Top-level ``key`` value with surrounding quotes removed."""
    m = re.search(rf"^{re.escape(key)}:[ \t]*(.+)$", text.replace("\r\n", "\n"), re.MULTILINE)
    if m is None:
        return None
    return m.group(1).strip().strip("\"'")


def citation_date_released(text: str) -> str | None:
    return citation_field(text, "date-released")
