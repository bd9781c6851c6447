"""Per-update execution context and its reuse pool.

A Context wraps exactly one Update while its handler runs. It exposes the
update, the per-update cancel scope, and reply helpers bound to the chat the
update came from. Contexts are recycled through a ContextPool; pooling only
saves allocations and can be switched off without changing behavior.
"""
import copy
import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

import trio

from tgbot.client import ReplyTransport
from tgbot.errors import HandlerError
from tgbot.models import Chat, Message, Update, User

if TYPE_CHECKING:
    from tgbot.bot import Bot

logger = logging.getLogger(__name__)

MessageOption = Callable[[Dict[str, Any]], None]


def with_html() -> MessageOption:
    """Set the parse mode to HTML."""
    def _apply(params: Dict[str, Any]) -> None:
        params["parse_mode"] = "HTML"
    return _apply


def with_markdown() -> MessageOption:
    """Set the parse mode to legacy Markdown."""
    def _apply(params: Dict[str, Any]) -> None:
        params["parse_mode"] = "Markdown"
    return _apply


def with_markdown_v2() -> MessageOption:
    """Set the parse mode to MarkdownV2."""
    def _apply(params: Dict[str, Any]) -> None:
        params["parse_mode"] = "MarkdownV2"
    return _apply


def with_disable_web_page_preview(disable: bool) -> MessageOption:
    def _apply(params: Dict[str, Any]) -> None:
        params["disable_web_page_preview"] = disable
    return _apply


def with_chat_id(chat_id: int) -> MessageOption:
    """Send to another chat than the one the update came from."""
    def _apply(params: Dict[str, Any]) -> None:
        params["chat_id"] = chat_id
    return _apply


def with_reply_to(message_id: int) -> MessageOption:
    def _apply(params: Dict[str, Any]) -> None:
        params["reply_to_message_id"] = message_id
    return _apply


class Context:
    """Execution context handed to every handler.

    Attributes:
        api: Transport used to answer
        bot: Bot that dispatched the update, if any
        cancel_scope: Scope cancelled on per-update timeout or bot shutdown
    """

    def __init__(self, api: ReplyTransport, bot: Optional["Bot"] = None) -> None:
        self.api = api
        self.bot = bot
        self.cancel_scope: Optional[trio.CancelScope] = None
        self._update: Optional[Update] = None

    @property
    def update(self) -> Update:
        if self._update is None:
            raise RuntimeError("context is not bound to an update")
        return self._update

    def bind(self, update: Update, cancel_scope: Optional[trio.CancelScope] = None) -> None:
        self._update = update
        self.cancel_scope = cancel_scope

    def reset(self) -> None:
        """Drop the update and the cancel scope before the context is reused."""
        self._update = None
        self.cancel_scope = None

    def clone(self) -> "Context":
        """Return a detached copy that stays valid after the dispatch ends."""
        return copy.copy(self)

    @property
    def deadline(self) -> float:
        """Per-update deadline on the trio clock, inf when unbounded."""
        if self.cancel_scope is None:
            return float("inf")
        return self.cancel_scope.deadline

    @property
    def cancelled(self) -> bool:
        """Whether the per-update scope, or an enclosing one, was cancelled."""
        if self.cancel_scope is not None and self.cancel_scope.cancel_called:
            return True
        return trio.current_effective_deadline() == float("-inf")

    def message(self) -> Optional[Message]:
        return self.update.effective_message()

    def is_command(self) -> bool:
        msg = self.message()
        return msg is not None and msg.is_command()

    def command(self) -> str:
        msg = self.message()
        return msg.command() if msg is not None else ""

    def command_args(self) -> str:
        msg = self.message()
        return msg.command_arguments() if msg is not None else ""

    def sent_from(self) -> Optional[User]:
        return self.update.sent_from()

    def from_chat(self) -> Optional[Chat]:
        return self.update.from_chat()

    async def reply_text(self, text: str, *opts: MessageOption) -> Any:
        """Reply to the current chat with plain text."""
        return await self._reply(text, list(opts))

    async def reply_markdown(self, text: str, *opts: MessageOption) -> Any:
        """Reply to the current chat, text format is Markdown."""
        defaults = [with_markdown(), with_disable_web_page_preview(True)]
        return await self._reply(text, defaults + list(opts))

    async def reply_html(self, text: str, *opts: MessageOption) -> Any:
        """Reply to the current chat, text format is HTML."""
        defaults = [with_html(), with_disable_web_page_preview(True)]
        return await self._reply(text, defaults + list(opts))

    async def send_reply(self, method: str, params: Dict[str, Any]) -> Any:
        """Send any Bot API request through the context's transport."""
        return await self.api.request(method, params)

    async def _reply(self, text: str, opts: List[MessageOption]) -> Any:
        chat = self.from_chat()
        if chat is None:
            raise HandlerError("no chat currently")
        params: Dict[str, Any] = {"chat_id": chat.id, "text": text}
        for opt in opts:
            opt(params)
        return await self.send_reply("sendMessage", params)


class ContextPool:
    """Free list of reusable contexts.

    The pool grows without bound: a miss allocates a new Context. Released
    contexts must already be reset. With enabled=False every acquire
    allocates and release drops the object.
    """

    def __init__(
        self,
        api: ReplyTransport,
        bot: Optional["Bot"] = None,
        *,
        enabled: bool = True,
    ) -> None:
        self.api = api
        self.bot = bot
        self.enabled = enabled
        self.allocated = 0
        self._free: List[Context] = []

    def __len__(self) -> int:
        return len(self._free)

    def acquire(self, update: Update) -> Context:
        if self.enabled and self._free:
            ctx = self._free.pop()
        else:
            ctx = Context(self.api, self.bot)
            self.allocated += 1
        ctx.bind(update)
        return ctx

    def release(self, ctx: Context) -> None:
        ctx.reset()
        if self.enabled:
            self._free.append(ctx)
