from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping

from services.snapshot_service import InviteSnapshot


VANITY_PLACEHOLDER_CODE = "vanity"


class AttributionOutcome(str, Enum):
    ATTRIBUTED = "attributed"
    VANITY_URL = "vanity_url"
    UNDETERMINED = "undetermined"


@dataclass(frozen=True, slots=True)
class AttributionResult:
    outcome: AttributionOutcome
    invite_code: str | None = None
    inviter_id: str | None = None
    ambiguous: bool = False
    candidates: tuple[str, ...] = ()

    @classmethod
    def undetermined(cls) -> "AttributionResult":
        return cls(outcome=AttributionOutcome.UNDETERMINED)


def _pick_candidate(codes: list[str], pre_uses: Mapping[str, int]) -> str:
    # smallest pre-event use count wins, then the lexically smallest code
    return min(codes, key=lambda code: (pre_uses.get(code, 0), code))


def _inviter_for(code: str, post: Mapping[str, InviteSnapshot]) -> str | None:
    # only the live invite names an inviter; without one the join is booked as unknown
    live = post.get(code)
    if live is not None and live.inviter_id:
        return live.inviter_id
    return None


def increased_codes(pre: Mapping[str, InviteSnapshot], post: Mapping[str, InviteSnapshot]) -> list[str]:
    return sorted(code for code, after in post.items() if code in pre and after.uses - pre[code].uses > 0)


def attribute(
    pre: Mapping[str, InviteSnapshot],
    post: Mapping[str, InviteSnapshot],
    *,
    vanity_code_present: bool = False,
    vanity_code: str | None = None,
) -> AttributionResult:
    """Infers which invite a newly joined member consumed.

    ``pre`` is the cached snapshot from before the join and ``post`` the list
    fetched right after it. Codes whose use counter grew are attributed first;
    when several grew (two joins raced) the code with the fewest prior uses is
    chosen and the result is marked ambiguous. A code that only exists in
    ``post`` and already has uses counts as consumed when nothing grew. Without
    any of that, the vanity URL or an undetermined outcome is reported.
    """
    candidates = increased_codes(pre, post)
    pre_uses = {code: snapshot.uses for code, snapshot in pre.items()}

    if not candidates:
        candidates = sorted(code for code, after in post.items() if code not in pre and after.uses > 0)

    if candidates:
        code = candidates[0] if len(candidates) == 1 else _pick_candidate(candidates, pre_uses)
        return AttributionResult(
            outcome=AttributionOutcome.ATTRIBUTED,
            invite_code=code,
            inviter_id=_inviter_for(code, post),
            ambiguous=len(candidates) > 1,
            candidates=tuple(candidates),
        )

    if vanity_code_present:
        return AttributionResult(
            outcome=AttributionOutcome.VANITY_URL,
            invite_code=vanity_code or VANITY_PLACEHOLDER_CODE,
        )

    return AttributionResult.undetermined()
