"""Error taxonomy shared by the services and the dispatcher.

Each error carries a short machine code (the same style the services use for
``ValueError("not_found")``) plus an optional human message that is safe to
show to the chat participant.
"""
from __future__ import annotations


class BotError(Exception):
    code = "error"
    retryable = False

    def __init__(self, message: str | None = None, *, code: str | None = None):
        super().__init__(message or code or self.code)
        if code:
            self.code = code
        self.message = message


class ValidationFailed(BotError):
    """Bad input from the user. Reported back, never logged as a failure."""

    code = "invalid_input"


class NotAuthorized(BotError):
    code = "not_authorized"


class NotFound(BotError):
    code = "not_found"


class AlreadyDecided(BotError):
    code = "already_decided"


class ConcurrentUpdate(BotError):
    """A guarded UPDATE matched no row: another event changed the record first."""

    code = "concurrent_update"
    retryable = True


class StoreUnavailable(BotError):
    code = "store_unavailable"
    retryable = True
