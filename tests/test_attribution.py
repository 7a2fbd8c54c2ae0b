from __future__ import annotations

from types import MappingProxyType

from services.attribution_service import (
    VANITY_PLACEHOLDER_CODE,
    AttributionOutcome,
    attribute,
    increased_codes,
)
from services.ledger_service import UNKNOWN_INVITER, build_ledger_entry
from services.snapshot_service import InviteSnapshot


def _snap(*invites: InviteSnapshot):
    return MappingProxyType({invite.code: invite for invite in invites})


def test_single_use_increase_is_attributed_to_invite_owner():
    pre = _snap(InviteSnapshot("A", 5, "U1"))
    post = _snap(InviteSnapshot("A", 6, "U1"))

    result = attribute(pre, post)

    assert result.outcome is AttributionOutcome.ATTRIBUTED
    assert result.invite_code == "A"
    assert result.inviter_id == "U1"
    assert result.ambiguous is False


def test_only_the_changed_code_is_picked_among_many():
    pre = _snap(InviteSnapshot("A", 1, "U1"), InviteSnapshot("B", 9, "U2"), InviteSnapshot("C", 0, "U3"))
    post = _snap(InviteSnapshot("A", 1, "U1"), InviteSnapshot("B", 10, "U2"), InviteSnapshot("C", 0, "U3"))

    result = attribute(pre, post)

    assert (result.invite_code, result.inviter_id) == ("B", "U2")


def test_no_change_without_vanity_is_undetermined():
    snapshot = _snap(InviteSnapshot("A", 5, "U1"))

    result = attribute(snapshot, snapshot)

    assert result.outcome is AttributionOutcome.UNDETERMINED
    assert result.invite_code is None
    assert result.inviter_id is None


def test_no_change_with_vanity_is_vanity_url():
    snapshot = _snap(InviteSnapshot("A", 5, "U1"))

    result = attribute(snapshot, snapshot, vanity_code_present=True, vanity_code="bitcraft")

    assert result.outcome is AttributionOutcome.VANITY_URL
    assert result.invite_code == "bitcraft"
    assert result.inviter_id is None


def test_vanity_without_known_code_uses_placeholder():
    result = attribute(_snap(), _snap(), vanity_code_present=True)

    assert result.invite_code == VANITY_PLACEHOLDER_CODE


def test_increase_wins_over_vanity_flag():
    pre = _snap(InviteSnapshot("A", 0, "U1"))
    post = _snap(InviteSnapshot("A", 1, "U1"))

    result = attribute(pre, post, vanity_code_present=True, vanity_code="bitcraft")

    assert result.outcome is AttributionOutcome.ATTRIBUTED


def test_concurrent_increases_pick_smallest_prior_uses_and_flag_ambiguity():
    pre = _snap(InviteSnapshot("ZZZ", 2, "U1"), InviteSnapshot("AAA", 7, "U2"))
    post = _snap(InviteSnapshot("ZZZ", 3, "U1"), InviteSnapshot("AAA", 8, "U2"))

    result = attribute(pre, post)

    assert result.invite_code == "ZZZ"
    assert result.inviter_id == "U1"
    assert result.ambiguous is True
    assert result.candidates == ("AAA", "ZZZ")


def test_tie_on_prior_uses_falls_back_to_code_order():
    pre = _snap(InviteSnapshot("beta", 4, "U2"), InviteSnapshot("alpha", 4, "U1"))
    post = _snap(InviteSnapshot("beta", 5, "U2"), InviteSnapshot("alpha", 5, "U1"))

    reordered_pre = _snap(InviteSnapshot("alpha", 4, "U1"), InviteSnapshot("beta", 4, "U2"))
    reordered_post = _snap(InviteSnapshot("alpha", 5, "U1"), InviteSnapshot("beta", 5, "U2"))

    first = attribute(pre, post)
    second = attribute(reordered_pre, reordered_post)

    assert first.invite_code == "alpha"
    assert second == first


def test_new_code_consumed_immediately_is_attributed():
    pre = _snap(InviteSnapshot("A", 3, "U1"))
    post = _snap(InviteSnapshot("A", 3, "U1"), InviteSnapshot("NEW", 1, "U9"))

    result = attribute(pre, post)

    assert result.outcome is AttributionOutcome.ATTRIBUTED
    assert (result.invite_code, result.inviter_id) == ("NEW", "U9")


def test_new_code_without_uses_is_ignored():
    pre = _snap(InviteSnapshot("A", 3, "U1"))
    post = _snap(InviteSnapshot("A", 3, "U1"), InviteSnapshot("NEW", 0, "U9"))

    assert attribute(pre, post).outcome is AttributionOutcome.UNDETERMINED


def test_inviter_comes_from_live_list_before_cached_one():
    pre = _snap(InviteSnapshot("A", 1, None))
    post = _snap(InviteSnapshot("A", 2, "U7"))

    assert attribute(pre, post).inviter_id == "U7"


def test_missing_live_inviter_is_not_filled_from_the_cached_snapshot():
    pre = _snap(InviteSnapshot("A", 1, "U7"))
    post = _snap(InviteSnapshot("A", 2, None))

    result = attribute(pre, post)
    entry = build_ledger_entry(guild_id=1, result=result, member_id=5, member_display_name="m")

    assert (result.outcome, result.invite_code, result.inviter_id) == (AttributionOutcome.ATTRIBUTED, "A", None)
    assert entry.inviter_id == UNKNOWN_INVITER


def test_deleted_code_and_decreased_uses_do_not_count():
    pre = _snap(InviteSnapshot("A", 4, "U1"), InviteSnapshot("GONE", 2, "U2"))
    post = _snap(InviteSnapshot("A", 3, "U1"))

    assert increased_codes(pre, post) == []
    assert attribute(pre, post).outcome is AttributionOutcome.UNDETERMINED


def test_attribute_does_not_mutate_inputs():
    raw_pre = {"A": InviteSnapshot("A", 1, "U1")}
    raw_post = {"A": InviteSnapshot("A", 2, "U1")}

    attribute(raw_pre, raw_post)

    assert raw_pre == {"A": InviteSnapshot("A", 1, "U1")}
    assert raw_post == {"A": InviteSnapshot("A", 2, "U1")}
