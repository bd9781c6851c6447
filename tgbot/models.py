"""Data models for Telegram updates.

Defines the immutable value objects the pipeline passes around and the
parsing utilities that build them from raw Bot API dictionaries.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

BOT_COMMAND = "bot_command"


@dataclass(frozen=True)
class User:
    """A Telegram user or bot account."""
    id: int
    is_bot: bool = False
    first_name: str = ""
    username: Optional[str] = None
    language_code: Optional[str] = None


@dataclass(frozen=True)
class Chat:
    """A private chat, group, supergroup or channel."""
    id: int
    type: str = "private"
    title: Optional[str] = None
    username: Optional[str] = None


@dataclass(frozen=True)
class MessageEntity:
    """A special span of a message text (command, mention, url, ...).

    Offsets and lengths are expressed in UTF-16 code units, like the Bot API.
    """
    type: str
    offset: int
    length: int


@dataclass(frozen=True)
class Message:  # pylint: disable=too-many-instance-attributes
    """Represents a parsed Telegram message.

    Attributes:
        message_id: Message ID, unique inside the chat
        chat: Chat the message belongs to
        from_user: Sender, empty for channel posts
        text: Message text (or caption for media)
        entities: Special entities found in the text
        date: Unix timestamp of the message
        raw: Original message dictionary from the Bot API
    """
    message_id: int
    chat: Chat
    from_user: Optional[User] = None
    text: str = ""
    entities: Tuple[MessageEntity, ...] = ()
    date: int = 0
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def is_command(self) -> bool:
        """Report whether the message starts with a bot command."""
        if not self.entities:
            return False
        first = self.entities[0]
        return first.offset == 0 and first.type == BOT_COMMAND

    def command_with_at(self) -> str:
        """Return the command including any @botname suffix, without the slash."""
        if not self.is_command():
            return ""
        entity = self.entities[0]
        return _utf16_slice(self.text, 1, entity.length)

    def command(self) -> str:
        """Return the command name without the slash and @botname suffix."""
        name = self.command_with_at()
        if "@" in name:
            name = name[: name.index("@")]
        return name

    def command_arguments(self) -> str:
        """Return the text following the command, with leading spaces removed."""
        if not self.is_command():
            return ""
        entity = self.entities[0]
        return _utf16_slice(self.text, entity.length, None).lstrip(" ")


@dataclass(frozen=True)
class CallbackQuery:
    """An inline keyboard button press."""
    id: str
    from_user: User
    message: Optional[Message] = None
    data: Optional[str] = None


@dataclass(frozen=True)
class Update:  # pylint: disable=too-many-instance-attributes
    """One inbound event from the Bot API.

    At most one of the payload fields is set.
    """
    update_id: int
    message: Optional[Message] = None
    edited_message: Optional[Message] = None
    channel_post: Optional[Message] = None
    edited_channel_post: Optional[Message] = None
    callback_query: Optional[CallbackQuery] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)
    # set when the payload was malformed; such updates are skipped, not dispatched
    parse_error: Optional[str] = field(default=None, compare=False)

    def effective_message(self) -> Optional[Message]:
        """Return the message-like payload of this update, if any."""
        for msg in (
            self.message,
            self.edited_message,
            self.channel_post,
            self.edited_channel_post,
        ):
            if msg is not None:
                return msg
        return None

    def sent_from(self) -> Optional[User]:
        """Return the user that triggered this update."""
        msg = self.effective_message()
        if msg is not None:
            return msg.from_user
        if self.callback_query is not None:
            return self.callback_query.from_user
        return None

    def from_chat(self) -> Optional[Chat]:
        """Return the chat this update happened in."""
        msg = self.effective_message()
        if msg is not None:
            return msg.chat
        if self.callback_query is not None and self.callback_query.message is not None:
            return self.callback_query.message.chat
        return None


def _utf16_slice(text: str, start: int, end: Optional[int]) -> str:
    encoded = text.encode("utf-16-le")
    stop = None if end is None else end * 2
    return encoded[start * 2 : stop].decode("utf-16-le", errors="ignore")


def parse_user(data: Optional[Dict[str, Any]]) -> Optional[User]:
    if not data:
        return None
    return User(
        id=data["id"],
        is_bot=data.get("is_bot", False),
        first_name=data.get("first_name", ""),
        username=data.get("username"),
        language_code=data.get("language_code"),
    )


def parse_message(data: Optional[Dict[str, Any]]) -> Optional[Message]:
    """Parse a Bot API message dictionary into a Message.

    Args:
        data: Raw message dictionary, may be None

    Returns:
        Message, or None when no message is present
    """
    if not data:
        return None
    chat = data.get("chat", {})
    text = data.get("text")
    entities_raw: List[Dict[str, Any]] = data.get("entities", [])
    if text is None:
        text = data.get("caption") or ""
        entities_raw = data.get("caption_entities", [])
    return Message(
        message_id=data["message_id"],
        chat=Chat(
            id=chat["id"],
            type=chat.get("type", "private"),
            title=chat.get("title"),
            username=chat.get("username"),
        ),
        from_user=parse_user(data.get("from")),
        text=text,
        entities=tuple(
            MessageEntity(type=e["type"], offset=e["offset"], length=e["length"])
            for e in entities_raw
        ),
        date=data.get("date", 0),
        raw=data,
    )


def parse_update(data: Dict[str, Any]) -> Update:
    """Parse a Bot API update dictionary into an Update.

    Unknown payload kinds (polls, chat member changes, ...) still produce an
    Update carrying only its id and raw dictionary, so the offset advances
    past them.

    Args:
        data: Raw update dictionary from getUpdates

    Returns:
        Parsed Update
    """
    callback = data.get("callback_query")
    return Update(
        update_id=data["update_id"],
        message=parse_message(data.get("message")),
        edited_message=parse_message(data.get("edited_message")),
        channel_post=parse_message(data.get("channel_post")),
        edited_channel_post=parse_message(data.get("edited_channel_post")),
        callback_query=(
            CallbackQuery(
                id=callback["id"],
                from_user=parse_user(callback.get("from")) or User(id=0),
                message=parse_message(callback.get("message")),
                data=callback.get("data"),
            )
            if callback
            else None
        ),
        raw=data,
    )


def parse_updates(items: Iterable[Dict[str, Any]]) -> List[Update]:
    """Parse a getUpdates result one update at a time.

    A malformed update does not fail the batch: it comes back as a bare
    Update with parse_error set, so the poller can report it and move the
    offset past it. Items without a usable update_id are dropped.
    """
    updates = []
    for data in items:
        try:
            updates.append(parse_update(data))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            update_id = data.get("update_id") if isinstance(data, dict) else None
            if not isinstance(update_id, int):
                logger.warning("Dropping update without an id: %r", data)
                continue
            logger.warning("Update %s is malformed: %r", update_id, e)
            updates.append(Update(update_id=update_id, raw=data, parse_error=repr(e)))
    return updates
