"""Immutable bot configuration.

BotOptions is validated once at construction; use dataclasses.replace() to
derive a modified copy.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Optional,
    Tuple,
)

import trio

from tgbot.errors import ConfigError

if TYPE_CHECKING:
    from tgbot.context import Context
    from tgbot.workers import TaskPool

logger = logging.getLogger(__name__)

MAX_POLL_TIMEOUT = 50
MAX_LIMIT = 100

CommandHandler = Callable[["Context"], Awaitable[None]]
UpdatesHandler = Callable[["Context"], Awaitable[None]]
ErrorHandler = Callable[[Exception], None]
PanicHandler = Callable[["Context", BaseException], Awaitable[None]]
PollErrorHandler = Callable[[Exception], None]


def log_error(err: Exception) -> None:
    """Default error handler: log and otherwise discard."""
    logger.warning("%s", err)


def _default_workers_num() -> int:
    return os.cpu_count() or 1


@dataclass(frozen=True)
class BotOptions:  # pylint: disable=too-many-instance-attributes
    """Options controlling polling, concurrency and handlers.

    Attributes:
        cancel_scope: Root cancel scope; a fresh one is created when omitted
        timeout: Per-update deadline in seconds, None or 0 disables it
        limit: Maximum updates per getUpdates call (1-100)
        poll_timeout: Long-poll timeout in seconds (0-50)
        buffer_size: Queue capacity, defaults to limit
        workers_num: Number of worker loops
        task_pool: External pool receiving dispatches, enables pool mode
        unlimited_concurrency: Start one task per update
        auto_setup_commands: Publish the command menu on run
        drain_on_stop: Dispatch queued updates after stop
        undefined_command_handler: Called for unknown commands
        updates_handler: Called for every non-command update
        error_handler: Receives every reported BotError
        panic_handler: Receives unexpected handler exceptions
        poll_error_handler: Receives retrieval failures
        poll_retry_delay: Pause in seconds after a retrieval failure
        allowed_updates: Update kinds requested from the server
        offset: Initial offset, to resume from a known update id
        pool_contexts: Reuse execution contexts between updates
    """
    cancel_scope: Optional[trio.CancelScope] = None
    timeout: Optional[float] = None
    limit: int = MAX_LIMIT
    poll_timeout: int = MAX_POLL_TIMEOUT
    buffer_size: Optional[int] = None
    workers_num: int = field(default_factory=_default_workers_num)
    task_pool: Optional["TaskPool"] = None
    unlimited_concurrency: bool = False
    auto_setup_commands: bool = True
    drain_on_stop: bool = True
    undefined_command_handler: Optional[CommandHandler] = None
    updates_handler: Optional[UpdatesHandler] = None
    error_handler: ErrorHandler = log_error
    panic_handler: Optional[PanicHandler] = None
    poll_error_handler: Optional[PollErrorHandler] = None
    poll_retry_delay: float = 3.0
    allowed_updates: Tuple[str, ...] = ()
    offset: int = 0
    pool_contexts: bool = True

    def __post_init__(self) -> None:
        if self.timeout is not None and self.timeout < 0:
            raise ConfigError(f"timeout must be >= 0, got {self.timeout}")
        if not 1 <= self.limit <= MAX_LIMIT:
            raise ConfigError(f"limit must be within 1..{MAX_LIMIT}, got {self.limit}")
        if not 0 <= self.poll_timeout <= MAX_POLL_TIMEOUT:
            raise ConfigError(
                f"poll_timeout must be within 0..{MAX_POLL_TIMEOUT}, got {self.poll_timeout}"
            )
        if self.buffer_size is not None and self.buffer_size < 0:
            raise ConfigError(f"buffer_size must be >= 0, got {self.buffer_size}")
        if self.workers_num < 1:
            raise ConfigError(f"workers_num must be positive, got {self.workers_num}")
        if self.task_pool is not None and self.unlimited_concurrency:
            raise ConfigError("task_pool and unlimited_concurrency are exclusive")
        if self.poll_retry_delay < 0:
            raise ConfigError("poll_retry_delay must be >= 0")
        if self.offset < 0:
            raise ConfigError(f"offset must be >= 0, got {self.offset}")
        if not callable(self.error_handler):
            raise ConfigError("error_handler must be callable")
        object.__setattr__(self, "allowed_updates", tuple(self.allowed_updates))

    @property
    def queue_size(self) -> int:
        return self.limit if self.buffer_size is None else self.buffer_size

    @property
    def concurrency_mode(self) -> str:
        """One of "workers", "pool" or "unlimited"."""
        if self.task_pool is not None:
            return "pool"
        if self.unlimited_concurrency:
            return "unlimited"
        return "workers"

    def describe(self) -> dict:
        """Loggable summary without handlers."""
        summary: dict = {
            "mode": self.concurrency_mode,
            "workers_num": self.workers_num,
            "queue_size": self.queue_size,
            "limit": self.limit,
            "poll_timeout": self.poll_timeout,
            "timeout": self.timeout,
            "drain_on_stop": self.drain_on_stop,
        }
        return summary


def options_from_mapping(data: Any, **overrides: Any) -> BotOptions:
    """Build BotOptions from a plain mapping (e.g. a YAML section).

    Only scalar options are read from the mapping; handlers and pools must be
    passed as keyword overrides.

    Raises:
        ConfigError: On unknown keys or invalid values
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"bot options must be a mapping, got {type(data).__name__}")
    scalar_keys = {
        "timeout",
        "limit",
        "poll_timeout",
        "buffer_size",
        "workers_num",
        "unlimited_concurrency",
        "auto_setup_commands",
        "drain_on_stop",
        "poll_retry_delay",
        "allowed_updates",
        "offset",
        "pool_contexts",
    }
    unknown = set(data) - scalar_keys
    if unknown:
        raise ConfigError(f"unknown bot options: {', '.join(sorted(unknown))}")
    kwargs = {k: v for k, v in data.items() if v is not None}
    if "allowed_updates" in kwargs:
        kwargs["allowed_updates"] = tuple(kwargs["allowed_updates"])
    kwargs.update(overrides)
    try:
        return BotOptions(**kwargs)
    except TypeError as e:
        raise ConfigError(str(e)) from e
