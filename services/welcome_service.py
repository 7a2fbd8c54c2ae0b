from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

import discord

from utils.text import ordinal


log = logging.getLogger("bitcraft.runtime")

WELCOME_COLOUR = 0xF9A825
WELCOME_TITLE = "Welcome to BitCraft Network!"
WELCOME_LINES = (
    "Hold onto your bits, a new crafter has entered the server!",
    "Another pixel artist joins the canvas of BitCraft!",
    "A wild new member appeared! BitCraft used Welcome... It's super effective!",
    "Breaking news: BitCraft Network just got more awesome!",
    "Looks like someone found the secret entrance to BitCraft!",
    "Alert! Alert! Cool person detected in the BitCraft Network!",
    "The BitCraft family just grew by one amazing human!",
    "Plot twist: BitCraft Network just gained an awesome new character!",
    "The BitCraft Council has approved your application. Welcome aboard!",
    "New member unlocked! Achievement: Joining the best community ever!",
)


@dataclass(frozen=True, slots=True)
class RoleAssignmentPlan:
    roles: list[Any]
    allowed: bool
    reason: str | None = None


def pick_welcome_line(rng: random.Random | None = None) -> str:
    return (rng or random).choice(WELCOME_LINES)


def build_welcome_embed(
    *,
    member_id: int,
    member_count: int,
    avatar_url: str | None = None,
    line: str | None = None,
) -> discord.Embed:
    embed = discord.Embed(
        title=WELCOME_TITLE,
        description=f"{line or pick_welcome_line()}\n\nHey <@{member_id}>, you are the **{ordinal(member_count)}** member!",
        colour=discord.Colour(WELCOME_COLOUR),
    )
    if avatar_url:
        embed.set_thumbnail(url=avatar_url)
    return embed


def plan_default_roles(
    *,
    available_roles: Iterable[Any],
    default_role_ids: Sequence[int],
    bot_can_manage_roles: bool,
    bot_top_position: int,
) -> RoleAssignmentPlan:
    """Picks the configured default roles and decides whether the bot may hand them out."""
    wanted = {int(role_id) for role_id in default_role_ids}
    roles = [role for role in available_roles if int(getattr(role, "id", 0) or 0) in wanted]
    if not roles:
        return RoleAssignmentPlan(roles=[], allowed=False, reason="default roles not found")
    if not bot_can_manage_roles:
        return RoleAssignmentPlan(roles=roles, allowed=False, reason="missing Manage Roles permission")
    highest_target = max(int(getattr(role, "position", 0) or 0) for role in roles)
    if int(bot_top_position) <= highest_target:
        return RoleAssignmentPlan(roles=roles, allowed=False, reason="bot role is not above the default roles")
    return RoleAssignmentPlan(roles=roles, allowed=True)
