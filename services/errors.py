from __future__ import annotations


class InviteTrackerError(Exception):
    """Base class for invite tracking failures."""


class FetchFailure(InviteTrackerError):
    """The gateway invite list could not be fetched (network, rate limit, timeout)."""

    def __init__(self, guild_id: int, message: str, *, attempts: int = 1) -> None:
        super().__init__(f"guild {guild_id}: {message} (attempts={attempts})")
        self.guild_id = guild_id
        self.attempts = attempts


class PersistenceFailure(InviteTrackerError):
    """A ledger write did not reach stable storage."""

    def __init__(self, guild_id: int, message: str) -> None:
        super().__init__(f"guild {guild_id}: {message}")
        self.guild_id = guild_id


class NotificationFailure(InviteTrackerError):
    pass


class AuthorizationError(InviteTrackerError):
    def __init__(self, required: str, actual: str) -> None:
        super().__init__(f"requires {required}, caller has {actual}")
        self.required = required
        self.actual = actual
