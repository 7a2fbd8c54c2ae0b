from __future__ import annotations

import random
from types import SimpleNamespace

from services.welcome_service import (
    WELCOME_LINES,
    WELCOME_TITLE,
    build_welcome_embed,
    pick_welcome_line,
    plan_default_roles,
)


def _role(role_id: int, position: int):
    return SimpleNamespace(id=role_id, position=position)


def test_welcome_embed_mentions_member_and_position():
    embed = build_welcome_embed(member_id=7, member_count=23, avatar_url="https://cdn.example/a.png", line="Hi!")

    assert embed.title == WELCOME_TITLE
    assert embed.description == "Hi!\n\nHey <@7>, you are the **23rd** member!"
    assert embed.thumbnail.url == "https://cdn.example/a.png"


def test_welcome_line_comes_from_the_pool():
    assert pick_welcome_line(random.Random(3)) in WELCOME_LINES


def test_default_roles_assigned_when_bot_outranks_them():
    plan = plan_default_roles(
        available_roles=[_role(1, 2), _role(2, 3), _role(3, 9)],
        default_role_ids=[1, 2],
        bot_can_manage_roles=True,
        bot_top_position=5,
    )

    assert plan.allowed is True
    assert [role.id for role in plan.roles] == [1, 2]


def test_default_roles_blocked_by_hierarchy_or_permission():
    roles = [_role(1, 6)]

    hierarchy = plan_default_roles(available_roles=roles, default_role_ids=[1], bot_can_manage_roles=True, bot_top_position=6)
    permission = plan_default_roles(available_roles=roles, default_role_ids=[1], bot_can_manage_roles=False, bot_top_position=10)
    missing = plan_default_roles(available_roles=roles, default_role_ids=[99], bot_can_manage_roles=True, bot_top_position=10)

    assert (hierarchy.allowed, hierarchy.reason) == (False, "bot role is not above the default roles")
    assert (permission.allowed, permission.reason) == (False, "missing Manage Roles permission")
    assert (missing.allowed, missing.reason) == (False, "default roles not found")
