"""Exception taxonomy for the update pipeline.

Every error the pipeline reports derives from BotError. Handlers raise
BotError subclasses (usually HandlerError) for expected failures; any other
exception escaping a handler is treated as a fault and wrapped in
HandlerPanic by the dispatcher.
"""
from typing import Any, Optional


class BotError(Exception):
    """Base class for all errors raised or reported by the bot."""


class ConfigError(BotError, ValueError):
    """Invalid bot options."""


class CommandConfigError(BotError, ValueError):
    """A command could not be registered (empty fields, duplicate name)."""


class CommandRegistrationError(BotError):
    """Registering the command menu with the remote API failed."""


class TelegramAPIError(BotError):
    """The Bot API rejected a request or could not be reached.

    Attributes:
        method: Bot API method name
        error_code: Error code reported by the API, if any
        description: Human readable description from the API
    """

    def __init__(
        self,
        method: str,
        description: str,
        error_code: Optional[int] = None,
    ) -> None:
        super().__init__(f"{method}: {description} (error_code={error_code})")
        self.method = method
        self.description = description
        self.error_code = error_code


class PollError(BotError):
    """Retrieving a batch of updates failed."""


class UpdateParseError(BotError):
    """An update from getUpdates could not be parsed and was skipped."""

    def __init__(self, update_id: int, reason: str) -> None:
        super().__init__(f"malformed update {update_id}: {reason}")
        self.update_id = update_id
        self.reason = reason


class HandlerError(BotError):
    """Raised by handlers to report an expected failure."""


class HandlerTimeout(BotError):
    """A handler ran past the per-update deadline and was cancelled."""

    def __init__(self, update_id: int, timeout: float) -> None:
        super().__init__(f"update {update_id} timed out after {timeout}s")
        self.update_id = update_id
        self.timeout = timeout


class HandlerPanic(BotError):
    """An unexpected exception escaped a handler.

    Attributes:
        value: The original exception
        stack: Formatted traceback of the original exception
    """

    def __init__(self, value: Any, stack: str) -> None:
        super().__init__(f"tgbot panic: {value!r}, stack: {stack}")
        self.value = value
        self.stack = stack


class PoolClosedError(BotError):
    """Work was submitted to a task pool that has been closed."""


class PoolOverloadError(BotError):
    """A non-blocking task pool had no free slot."""
