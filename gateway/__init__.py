from gateway.safety import (
    is_response_error,
    safe_add_roles,
    safe_defer,
    safe_delete_message,
    safe_followup,
    safe_reply,
    safe_send_channel_message,
    safe_send_initial,
)
from gateway.task_registry import GuildLockRegistry, SingletonTaskRegistry

__all__ = [
    "is_response_error",
    "safe_add_roles",
    "safe_defer",
    "safe_delete_message",
    "safe_followup",
    "safe_reply",
    "safe_send_channel_message",
    "safe_send_initial",
    "GuildLockRegistry",
    "SingletonTaskRegistry",
]
