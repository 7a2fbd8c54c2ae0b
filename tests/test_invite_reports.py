from __future__ import annotations

from datetime import UTC, datetime

import pytest

from db.repository import LedgerEntryRecord
from services.invite_query_service import ActiveInvitesReport, InviterReport
from services.invite_report_service import (
    active_invites_embed,
    general_help_embed,
    invite_help_embed,
    inviter_report_embed,
    join_history_embed,
    leaderboard_embed,
    log_channel_ready_embed,
    resolve_names,
)
from services.ledger_service import HistoryPage, LeaderboardRow
from services.snapshot_service import InviteSnapshot


JOINED = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)


def _record(inviter: str, member: str) -> LedgerEntryRecord:
    return LedgerEntryRecord(
        id=1,
        guild_id=1,
        inviter_id=inviter,
        member_id=9,
        member_display_name=member,
        invite_code="abc",
        outcome="attributed",
        joined_at=JOINED,
    )


@pytest.mark.asyncio
async def test_resolve_names_falls_back_to_unknown_user():
    calls: list[str] = []

    async def resolver(user_id: str):
        calls.append(user_id)
        if user_id == "boom":
            raise RuntimeError("Unknown User")
        return {"U1": "Alice"}.get(user_id)

    names = await resolve_names(["U1", "U2", "boom", "U1"], resolver)

    assert names == {"U1": "Alice", "U2": "Unknown User", "boom": "Unknown User"}
    assert calls == ["U1", "U2", "boom"]


def test_leaderboard_lines_are_ranked_and_pluralized():
    embed = leaderboard_embed(
        [LeaderboardRow("U1", 3), LeaderboardRow("U2", 1)],
        {"U1": "Alice", "U2": "Bob"},
    )

    assert embed.title == "Server Invite Leaderboard"
    assert embed.description == "1. **Alice**: 3 invites\n2. **Bob**: 1 invite"


def test_empty_leaderboard_has_placeholder():
    assert leaderboard_embed([], {}).description == "No invite data has been recorded yet."


def test_inviter_report_lists_recent_joins_in_display_time():
    embed = inviter_report_embed(
        InviterReport(inviter_id="U1", total_invites=4, recent=[_record("U1", "Newbie")]),
        target_name="Alice",
    )

    fields = {field.name: field.value for field in embed.fields}
    assert embed.title == "Invite Information for Alice"
    assert fields["Total Invites"] == "4"
    assert fields["Recent Invites"] == "• Newbie (joined: 1 October 2026, 05:30:00 PM IST) using code: abc"


def test_inviter_report_without_joins():
    embed = inviter_report_embed(InviterReport(inviter_id="U1", total_invites=0, recent=[]), target_name="Alice")

    assert embed.description == "Alice hasn't invited anyone yet."


def test_active_invites_marks_stale_snapshot():
    report = ActiveInvitesReport(invites=[InviteSnapshot("abc", 2, "U1", inviter_name="Alice")], stale=True)

    embed = active_invites_embed(report)

    assert embed.description == "• Code: **abc** by Alice (2 uses)"
    assert embed.footer.text == "Live invite list unavailable; showing last known snapshot."


def test_no_active_invites():
    embed = active_invites_embed(ActiveInvitesReport(invites=[]))

    assert embed.description == "No active invites found."
    assert embed.footer.text is None


def test_join_history_footer_shows_paging():
    page = HistoryPage(entries=[_record("U1", "Newbie")], page=2, total_pages=3, total_entries=21)

    embed = join_history_embed(page, {"U1": "Alice"}, timezone_name="UTC")

    assert embed.title == "All Server Invites"
    assert embed.description.startswith("• **Alice** invited **Newbie** (1 October 2026, 12:00:00 PM UTC)")
    assert embed.footer.text == "Page 2/3 • Total: 21 invites"


def test_help_embeds_use_the_given_prefix():
    invite_help = invite_help_embed("!")
    general = general_help_embed(["?", "!"], [("invites", "Leaderboard"), ("remind", "Reminders")])

    assert invite_help.fields[0].name == "!invites"
    assert general.description.startswith("Prefixes: `?`, `!`.")
    assert general.fields[0].value == "**invites**: Leaderboard\n**remind**: Reminders"


def test_general_help_splits_long_command_lists_across_fields():
    commands = [(f"command{index}", "x" * 90) for index in range(40)]

    embed = general_help_embed(["?"], commands)

    assert [field.name for field in embed.fields][:2] == ["Commands", "More Commands"]
    assert all(len(field.value) <= 1024 for field in embed.fields)
    assert sum(field.value.count("**command") for field in embed.fields) == 40


def test_log_channel_ready_embed():
    embed = log_channel_ready_embed()

    assert embed.title == "Invite Logging System Activated"
    assert embed.timestamp is not None
