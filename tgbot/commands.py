"""Command table and command scopes.

Commands are registered once during setup. Invalid or duplicate commands are
programming errors and raise CommandConfigError immediately. Each command is
filed under every scope it declares so the menu can be published per scope;
commands without scopes go to the NO_SCOPE bucket, which is published
without a scope argument.

The table is not synchronized. It must be fully populated before the bot
starts and is treated as read-only while updates are dispatched.
"""
import enum
import logging
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Tuple,
)

from tgbot.client import CommandRegistrar
from tgbot.errors import CommandConfigError

if TYPE_CHECKING:
    from tgbot.context import Context

logger = logging.getLogger(__name__)

Handler = Callable[["Context"], Awaitable[None]]


class ScopeType(enum.Enum):
    DEFAULT = "default"
    ALL_PRIVATE_CHATS = "all_private_chats"
    ALL_GROUP_CHATS = "all_group_chats"
    ALL_CHAT_ADMINISTRATORS = "all_chat_administrators"
    CHAT = "chat"
    CHAT_ADMINISTRATORS = "chat_administrators"
    CHAT_MEMBER = "chat_member"
    NONE = "none"


@dataclass(frozen=True)
class CommandScope:
    """Selects which chats and users a command menu applies to.

    Attributes:
        type: Scope kind
        chat_id: Target chat for the chat-bound kinds
        user_id: Target user for CHAT_MEMBER
        language_code: Optional two-letter language qualifier
    """
    type: ScopeType
    chat_id: Optional[int] = None
    user_id: Optional[int] = None
    language_code: Optional[str] = None

    @classmethod
    def default(cls, language_code: Optional[str] = None) -> "CommandScope":
        return cls(ScopeType.DEFAULT, language_code=language_code)

    @classmethod
    def all_private_chats(cls, language_code: Optional[str] = None) -> "CommandScope":
        return cls(ScopeType.ALL_PRIVATE_CHATS, language_code=language_code)

    @classmethod
    def all_group_chats(cls, language_code: Optional[str] = None) -> "CommandScope":
        return cls(ScopeType.ALL_GROUP_CHATS, language_code=language_code)

    @classmethod
    def all_chat_administrators(
        cls, language_code: Optional[str] = None
    ) -> "CommandScope":
        return cls(ScopeType.ALL_CHAT_ADMINISTRATORS, language_code=language_code)

    @classmethod
    def chat(cls, chat_id: int, language_code: Optional[str] = None) -> "CommandScope":
        return cls(ScopeType.CHAT, chat_id=chat_id, language_code=language_code)

    @classmethod
    def chat_administrators(
        cls, chat_id: int, language_code: Optional[str] = None
    ) -> "CommandScope":
        return cls(
            ScopeType.CHAT_ADMINISTRATORS, chat_id=chat_id, language_code=language_code
        )

    @classmethod
    def chat_member(
        cls, chat_id: int, user_id: int, language_code: Optional[str] = None
    ) -> "CommandScope":
        return cls(
            ScopeType.CHAT_MEMBER,
            chat_id=chat_id,
            user_id=user_id,
            language_code=language_code,
        )

    def to_api(self) -> Optional[Dict[str, Any]]:
        """Render the BotCommandScope object, None for NO_SCOPE."""
        if self.type is ScopeType.NONE:
            return None
        scope: Dict[str, Any] = {"type": self.type.value}
        if self.chat_id is not None:
            scope["chat_id"] = self.chat_id
        if self.user_id is not None:
            scope["user_id"] = self.user_id
        return scope


NO_SCOPE = CommandScope(ScopeType.NONE)


@dataclass(frozen=True)
class Command:
    """A bot command.

    Attributes:
        name: Command name without the leading slash
        description: Text shown in the command menu
        handler: Coroutine function called with the execution context
        hidden: Keep the command out of the published menu
        scopes: Scopes the command is published under
    """
    name: str
    description: str
    handler: Handler
    hidden: bool = False
    scopes: Tuple[CommandScope, ...] = ()

    def __post_init__(self) -> None:
        # dedupe, keep declaration order
        object.__setattr__(self, "scopes", tuple(dict.fromkeys(self.scopes)))

    def __str__(self) -> str:
        return f"/{self.name} - {self.description}"


def new_command(
    name: str,
    description: str,
    handler: Handler,
    *,
    hidden: bool = False,
    scopes: Iterable[CommandScope] = (),
) -> Command:
    """Build a Command, accepting any iterable of scopes."""
    return Command(
        name=name,
        description=description,
        handler=handler,
        hidden=hidden,
        scopes=tuple(scopes),
    )


class CommandTable:
    """Maps command names to commands and groups them by scope."""

    def __init__(self) -> None:
        self._by_name: Dict[str, Command] = {}
        self._by_scope: Dict[CommandScope, List[Command]] = {}

    def __len__(self) -> int:
        return len(self._by_name)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def add(self, *commands: Command) -> None:
        """Register commands.

        The whole batch is validated before anything is stored.

        Raises:
            CommandConfigError: On an empty name or description, a
                non-callable handler, or a duplicate name
        """
        seen = set(self._by_name)
        for cmd in commands:
            if not cmd.name:
                raise CommandConfigError("command name must be non-empty")
            if not cmd.description:
                raise CommandConfigError(
                    f"command description must be non-empty: {cmd.name}"
                )
            if not callable(cmd.handler):
                raise CommandConfigError(f"command handler must be callable: {cmd.name}")
            if cmd.name in seen:
                raise CommandConfigError(f"duplicate command name: {cmd.name}")
            seen.add(cmd.name)

        for cmd in commands:
            self._by_name[cmd.name] = cmd
            for scope in cmd.scopes or (NO_SCOPE,):
                self._by_scope.setdefault(scope, []).append(cmd)
            logger.debug("Registered command %s (scopes=%d)", cmd, len(cmd.scopes))

    def lookup(self, name: str) -> Optional[Command]:
        return self._by_name.get(name)

    def commands(self) -> Dict[CommandScope, List[Command]]:
        """Return the scope -> commands mapping (copies)."""
        return {scope: list(cmds) for scope, cmds in self._by_scope.items()}

    def visible(self, scope: Optional[CommandScope] = None) -> List[Command]:
        """Return non-hidden commands, either all of them or for one scope."""
        if scope is None:
            pool: Iterable[Command] = self._by_name.values()
        else:
            pool = self._by_scope.get(scope, [])
        return [cmd for cmd in pool if not cmd.hidden]

    async def register(self, registrar: CommandRegistrar) -> int:
        """Publish the command menu, one call per non-empty scope.

        Args:
            registrar: Component performing the remote call

        Returns:
            Number of registration calls made
        """
        calls = 0
        for scope in self._by_scope:
            visible = self.visible(scope)
            if not visible:
                continue
            await registrar.set_my_commands(
                [(cmd.name, cmd.description) for cmd in visible],
                scope=scope.to_api(),
                language_code=scope.language_code,
            )
            calls += 1
            logger.info(
                "Registered %d commands for scope=%s language=%s",
                len(visible),
                scope.type.value,
                scope.language_code,
            )
        return calls
