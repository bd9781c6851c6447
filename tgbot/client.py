"""Trio-friendly wrapper for the Telegram Bot API.

The pipeline only depends on three narrow interfaces:

1. UpdateSource: long-polling retrieval of update batches (getUpdates).
   The server holds the request open for up to the poll timeout, so the
   HTTP read timeout is always set above it.

2. CommandRegistrar: best-effort publication of the command menu
   (setMyCommands), optionally scoped.

3. ReplyTransport: sending answers back (sendMessage or any raw method).

TelegramTrioClient implements all three on top of a blocking httpx.Client,
running every call in a worker thread with trio.to_thread.run_sync. Calls are
abandoned on cancellation so stopping the bot never waits for a long poll.
"""
import logging
import os
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
import trio

from tgbot.errors import TelegramAPIError
from tgbot.models import Update, parse_updates

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.telegram.org"


class UpdateSource:
    """
    Interface for components that hand out batches of updates.
    """

    async def get_updates(
        self,
        offset: int,
        limit: int,
        timeout: int,
        allowed_updates: Optional[Sequence[str]] = None,
    ) -> List[Update]:
        """Return updates with update_id >= offset.

        Args:
            offset: Smallest update id not yet acknowledged
            limit: Maximum number of updates to return
            timeout: Long-poll timeout in seconds
            allowed_updates: Optional allow-list of update kinds
        """
        raise NotImplementedError


class CommandRegistrar:
    """
    Interface for components that publish the command menu.
    """

    async def set_my_commands(
        self,
        commands: Sequence[Tuple[str, str]],
        scope: Optional[Dict[str, Any]] = None,
        language_code: Optional[str] = None,
    ) -> None:
        """Publish (name, description) pairs for one scope."""
        raise NotImplementedError


class ReplyTransport:
    """
    Interface used by handlers to answer.
    """

    async def request(self, method: str, params: Dict[str, Any]) -> Any:
        """Call a raw API method and return its result."""
        raise NotImplementedError

    async def send_message(self, chat_id: int, text: str, **params: Any) -> Any:
        """Send a text message to a chat."""
        params.update({"chat_id": chat_id, "text": text})
        return await self.request("sendMessage", params)


class BotClient(UpdateSource, CommandRegistrar, ReplyTransport):
    """
    Everything the bot needs from the remote API.
    """


class TelegramTrioClient(BotClient):
    """
    Trio-friendly Bot API client.
    Uses trio.to_thread.run_sync for blocking httpx calls.
    """

    def __init__(
        self,
        token: str,
        *,
        api_url: str = DEFAULT_API_URL,
        http: Optional[httpx.Client] = None,
    ) -> None:
        if not token:
            raise ValueError("bot token must be non-empty")
        self._base_url = f"{api_url.rstrip('/')}/bot{token}"
        self._http = http or httpx.Client(timeout=httpx.Timeout(10.0))

    @classmethod
    def from_env(cls) -> "TelegramTrioClient":
        """Create a client from the TGBOT_TOKEN and TGBOT_API_URL variables."""
        token = os.environ.get("TGBOT_TOKEN", "")
        api_url = os.environ.get("TGBOT_API_URL", DEFAULT_API_URL)
        return cls(token, api_url=api_url)

    def close(self) -> None:
        """Release pooled HTTP connections."""
        self._http.close()

    async def request(
        self,
        method: str,
        params: Dict[str, Any],
        *,
        read_timeout: Optional[float] = None,
    ) -> Any:
        """Call a Bot API method.

        Args:
            method: Bot API method name, e.g. "sendMessage"
            params: JSON parameters of the call
            read_timeout: Override for the HTTP read timeout in seconds

        Returns:
            The "result" field of the API response

        Raises:
            TelegramAPIError: On transport failure or an "ok": false answer
        """
        def _post() -> Dict[str, Any]:
            timeout = httpx.USE_CLIENT_DEFAULT
            if read_timeout is not None:
                timeout = httpx.Timeout(10.0, read=read_timeout)
            try:
                res = self._http.post(
                    f"{self._base_url}/{method}",
                    json={k: v for k, v in params.items() if v is not None},
                    timeout=timeout,
                )
                return res.json()
            except httpx.HTTPError as e:
                raise TelegramAPIError(method, str(e)) from e
            except ValueError as e:
                raise TelegramAPIError(method, f"malformed response: {e}") from e

        res = await trio.to_thread.run_sync(_post, abandon_on_cancel=True)

        if not res.get("ok"):
            retry_after = (res.get("parameters") or {}).get("retry_after")
            if retry_after is not None:
                logger.warning(
                    "Rate limit hit calling %s, server asks to wait %s seconds",
                    method,
                    retry_after,
                )
            raise TelegramAPIError(
                method,
                res.get("description", "unknown error"),
                error_code=res.get("error_code"),
            )
        return res.get("result")

    async def get_updates(
        self,
        offset: int,
        limit: int,
        timeout: int,
        allowed_updates: Optional[Sequence[str]] = None,
    ) -> List[Update]:
        logger.debug("Polling for updates (offset=%s, timeout=%ss)", offset, timeout)
        result = await self.request(
            "getUpdates",
            {
                "offset": offset,
                "limit": limit,
                "timeout": timeout,
                "allowed_updates": list(allowed_updates) if allowed_updates else None,
            },
            read_timeout=timeout + 10,
        )
        return parse_updates(result or [])

    async def set_my_commands(
        self,
        commands: Sequence[Tuple[str, str]],
        scope: Optional[Dict[str, Any]] = None,
        language_code: Optional[str] = None,
    ) -> None:
        await self.request(
            "setMyCommands",
            {
                "commands": [
                    {"command": name, "description": description}
                    for name, description in commands
                ],
                "scope": scope,
                "language_code": language_code,
            },
        )

    async def get_me(self) -> Optional[Dict[str, Any]]:
        """Get the bot's own user profile."""
        try:
            return await self.request("getMe", {})
        except TelegramAPIError as e:
            logger.warning("Failed to get own profile: %s", e)
            return None
