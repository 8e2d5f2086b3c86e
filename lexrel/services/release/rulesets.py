"""GitHub branch rulesets, read through ``gh api``.

Only the parts the release flow relies on are modelled: the target, the
``ref_name.include`` condition and the rule types (plus required status
check contexts).
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from lexrel.core.result import Err, Ok, Result
from lexrel.core.structured import (
    StrDict,
    as_obj_list,
    as_str_dict,
    get_int,
    get_list,
    get_str,
    get_table,
)
from lexrel.services.release.errors import ReleaseError
from lexrel.services.release.gh import gh_api_json


@dataclass(frozen=True, slots=True)
class Rule:
    type: str
    parameters: StrDict


@dataclass(frozen=True, slots=True)
class Ruleset:
    id: int
    name: str
    target: str
    include: tuple[str, ...]
    rules: tuple[Rule, ...]

    @classmethod
    def from_payload(cls, obj: object) -> Ruleset | None:
        data = as_str_dict(obj)
        if data is None:
            return None
        ruleset_id = get_int(data, "id")
        if ruleset_id is None:
            return None

        include: list[str] = []
        conditions = get_table(data, "conditions")
        ref_name = get_table(conditions, "ref_name") if conditions is not None else None
        if ref_name is not None:
            include = [x for x in get_list(ref_name, "include") or [] if isinstance(x, str)]

        rules: list[Rule] = []
        for item in get_list(data, "rules") or []:
            rule = as_str_dict(item)
            if rule is None:
                continue
            rule_type = get_str(rule, "type")
            if rule_type is None:
                continue
            rules.append(Rule(type=rule_type, parameters=get_table(rule, "parameters") or {}))

        return cls(
            id=ruleset_id,
            name=get_str(data, "name") or f"ruleset {ruleset_id}",
            target=get_str(data, "target") or "",
            include=tuple(include),
            rules=tuple(rules),
        )

    def has_rule(self, rule_type: str) -> bool:
        return any(r.type == rule_type for r in self.rules)

    def required_checks(self) -> list[str]:
        """Contexts of the ``required_status_checks`` rule, if any."""
        for rule in self.rules:
            if rule.type != "required_status_checks":
                continue
            out: list[str] = []
            for item in get_list(rule.parameters, "required_status_checks") or []:
                d = as_str_dict(item)
                context = get_str(d, "context") if d is not None else None
                if context:
                    out.append(context)
            return out
        return []

    def applies_to(self, branch: str) -> bool:
        return self.target == "branch" and f"refs/heads/{branch}" in self.include

    @staticmethod
    def for_branch(rulesets: Sequence[Ruleset], branch: str) -> Ruleset | None:
        return next((rs for rs in rulesets if rs.applies_to(branch)), None)


def load_rulesets(*, repo_root: Path, slug: str) -> Result[list[Ruleset], ReleaseError]:
    """List rulesets and fetch each one's detail.

    The listing must succeed. A ruleset whose detail cannot be read is skipped.
    """
    listing = gh_api_json(repo_root=repo_root, endpoint=f"repos/{slug}/rulesets")
    if isinstance(listing, Err):
        return listing

    items = as_obj_list(listing.value)
    if items is None:
        return Err(
            ReleaseError(kind="invalid_input", message=f"unexpected rulesets payload: {slug}")
        )

    out: list[Ruleset] = []
    for item in items:
        summary = as_str_dict(item)
        ruleset_id = get_int(summary, "id") if summary is not None else None
        if ruleset_id is None:
            continue
        detail = gh_api_json(repo_root=repo_root, endpoint=f"repos/{slug}/rulesets/{ruleset_id}")
        if isinstance(detail, Err):
            continue
        ruleset = Ruleset.from_payload(detail.value)
        if ruleset is not None:
            out.append(ruleset)
    return Ok(out)


def ensure_main_rules_compatible(
    *, repo_root: Path, slug: str, main_branch: str
) -> Result[Ruleset, ReleaseError]:
    """Stable must accept a direct fast-forward push: no PR rule, no required checks."""
    rulesets = load_rulesets(repo_root=repo_root, slug=slug)
    if isinstance(rulesets, Err):
        return rulesets

    ruleset = Ruleset.for_branch(rulesets.value, main_branch)
    if ruleset is None:
        return Err(
            ReleaseError(
                kind="ruleset_incompatible",
                message=f"no {main_branch} ruleset found; cannot verify FF-only policy",
            )
        )
    if ruleset.has_rule("pull_request"):
        return Err(
            ReleaseError(
                kind="ruleset_incompatible",
                message=f"{main_branch} ruleset '{ruleset.name}' still requires pull requests",
                hint="FF-only promotion would be rejected by GitHub.",
            )
        )
    checks = ruleset.required_checks()
    if checks:
        return Err(
            ReleaseError(
                kind="ruleset_incompatible",
                message=f"{main_branch} ruleset has required checks ({', '.join(checks)})",
                hint="FF-only promotion may be blocked.",
            )
        )
    return Ok(ruleset)
