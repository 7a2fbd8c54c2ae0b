from __future__ import annotations

import logging
from typing import Any


log = logging.getLogger("bitcraft.gateway")

_RESPONSE_ERRORS = {
    "InteractionResponded",
    "HTTPException",
    "NotFound",
    "Forbidden",
}


def is_response_error(exc: BaseException) -> bool:
    return exc.__class__.__name__ in _RESPONSE_ERRORS


def _log_wrapper_error(action: str, exc: Exception) -> None:
    if is_response_error(exc):
        log.debug("Gateway call '%s' rejected: %s", action, exc)
        return
    log.warning("Gateway call '%s' failed: %s", action, exc, exc_info=True)


async def safe_defer(interaction: Any, *, ephemeral: bool = False) -> bool:
    response = getattr(interaction, "response", None)
    if response is None:
        return False
    is_done = getattr(response, "is_done", None)
    if callable(is_done) and is_done():
        return False

    try:
        await response.defer(ephemeral=ephemeral)
        return True
    except Exception as exc:
        _log_wrapper_error("defer", exc)
        return False


async def safe_followup(interaction: Any, content: str | None = None, *, ephemeral: bool = False, **kwargs: Any) -> bool:
    followup = getattr(interaction, "followup", None)
    if followup is None:
        return False

    try:
        await followup.send(content, ephemeral=ephemeral, **kwargs)
        return True
    except Exception as exc:
        _log_wrapper_error("followup.send", exc)
        return False


async def safe_send_initial(
    interaction: Any,
    content: str | None = None,
    *,
    ephemeral: bool = False,
    **kwargs: Any,
) -> bool:
    response = getattr(interaction, "response", None)
    if response is None:
        return False

    is_done = getattr(response, "is_done", None)
    if callable(is_done) and is_done():
        return await safe_followup(interaction, content, ephemeral=ephemeral, **kwargs)

    try:
        await response.send_message(content, ephemeral=ephemeral, **kwargs)
        return True
    except Exception as exc:
        _log_wrapper_error("response.send_message", exc)
        return await safe_followup(interaction, content, ephemeral=ephemeral, **kwargs)


async def safe_send_channel_message(channel: Any, **kwargs: Any) -> Any | None:
    send_fn = getattr(channel, "send", None)
    if send_fn is None:
        return None
    try:
        return await send_fn(**kwargs)
    except Exception as exc:
        _log_wrapper_error("channel.send", exc)
        return None


async def safe_reply(message: Any, content: str | None = None, **kwargs: Any) -> Any | None:
    reply_fn = getattr(message, "reply", None)
    if reply_fn is None:
        return await safe_send_channel_message(getattr(message, "channel", None), content=content, **kwargs)
    try:
        return await reply_fn(content, **kwargs)
    except Exception as exc:
        _log_wrapper_error("message.reply", exc)
        return None


async def safe_delete_message(message: Any, *, delay: float | None = None) -> bool:
    delete_fn = getattr(message, "delete", None)
    if delete_fn is None:
        return False
    try:
        if delay is None:
            await delete_fn()
        else:
            await delete_fn(delay=delay)
        return True
    except Exception as exc:
        _log_wrapper_error("message.delete", exc)
        return False


async def safe_add_roles(member: Any, roles: list[Any], *, reason: str | None = None) -> bool:
    if not roles:
        return False
    add_fn = getattr(member, "add_roles", None)
    if add_fn is None:
        return False
    try:
        await add_fn(*roles, reason=reason)
        return True
    except Exception as exc:
        _log_wrapper_error("member.add_roles", exc)
        return False


async def safe_edit_message(message: Any, **kwargs: Any) -> bool:
    edit_fn = getattr(message, "edit", None)
    if edit_fn is None:
        return False
    try:
        await edit_fn(**kwargs)
        return True
    except Exception as exc:
        _log_wrapper_error("message.edit", exc)
        return False


async def safe_update_message(interaction: Any, **kwargs: Any) -> bool:
    """Edits the message a component interaction came from."""
    response = getattr(interaction, "response", None)
    if response is None:
        return False
    try:
        await response.edit_message(**kwargs)
        return True
    except Exception as exc:
        _log_wrapper_error("response.edit_message", exc)
        return False


async def safe_rename_channel(channel: Any, name: str) -> bool:
    if channel is None or getattr(channel, "name", None) == name:
        return False
    try:
        await channel.edit(name=name)
        return True
    except Exception as exc:
        _log_wrapper_error("channel.edit", exc)
        return False
