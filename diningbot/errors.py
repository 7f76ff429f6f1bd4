"""Errors raised by the event, economy and menu layers.

Command handlers catch ``BotError`` and show ``str(exc)`` to the user in an
ephemeral reply; anything else is logged and reported generically.
"""


class BotError(Exception):
    pass


class InvalidInput(BotError):
    """Bad date/time, time outside the meal window, unknown hall, bad amount."""


class DuplicateActiveEvent(BotError):
    pass


class Forbidden(BotError):
    """A creator-only action attempted by someone else."""


class NotFound(BotError):
    pass


class StoreFailure(BotError):
    def __init__(self, message: str = "Something went wrong talking to the database. Please try again."):
        super().__init__(message)


class InsufficientFunds(BotError):
    pass


class Cooldown(BotError):
    def __init__(self, message: str, remaining_seconds: float):
        super().__init__(message)
        self.remaining_seconds = remaining_seconds


class MenuUnavailable(BotError):
    def __init__(self, message: str = "Unable to fetch menu data at this time. Please try again later."):
        super().__init__(message)
