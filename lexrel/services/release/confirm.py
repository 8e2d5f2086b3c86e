from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from lexrel.core.result import Err, Ok, Result
from lexrel.output.console import ConsoleProtocol, Style
from lexrel.services.release.errors import ReleaseError

Prompt = Callable[[str], bool]


@dataclass(frozen=True, slots=True)
class ConfirmPolicy:
    """How mutating steps are gated.

    Attributes:
        yes: Auto-approve every confirmation.
        dry_run: Nothing is mutated; confirmations auto-approve.
        non_interactive: Never prompt. Without ``yes`` a confirmation fails.
        prompt: Asks the operator; only used when interactive.
    """

    yes: bool = False
    dry_run: bool = False
    non_interactive: bool = False
    prompt: Prompt | None = None

    @classmethod
    def from_flags(
        cls, *, interactive: bool, dry_run: bool, prompt: Prompt | None
    ) -> ConfirmPolicy:
        # Release commands default to --yes --non-interactive; --interactive turns both off.
        return cls(
            yes=not interactive,
            dry_run=dry_run,
            non_interactive=not interactive,
            prompt=prompt,
        )


def require_confirm(
    question: str,
    *,
    policy: ConfirmPolicy,
    console: ConsoleProtocol,
) -> Result[None, ReleaseError]:
    if policy.dry_run:
        console.print(f"OK (--dry-run): {question}", Style.DIM)
        return Ok(None)
    if policy.yes:
        console.print(f"OK (--yes): {question}", Style.DIM)
        return Ok(None)
    if policy.non_interactive or policy.prompt is None:
        return Err(
            ReleaseError(
                kind="operator_aborted",
                message=f"confirmation required in non-interactive mode: {question}",
                hint="Re-run with --yes or --interactive.",
            )
        )
    if not policy.prompt(question):
        return Err(ReleaseError(kind="operator_aborted", message=f"aborted: {question}"))
    return Ok(None)
