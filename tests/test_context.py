import pytest

from tgbot.context import (
    Context,
    ContextPool,
    with_chat_id,
    with_markdown_v2,
    with_reply_to,
)
from tgbot.errors import HandlerError
from tgbot.models import parse_update

from .telegram_fakes import FakeClient, make_callback, make_update


def test_pool_reuses_released_contexts() -> None:
    pool = ContextPool(FakeClient())

    first = pool.acquire(make_update(1))
    pool.release(first)
    second = pool.acquire(make_update(2))

    assert second is first
    assert second.update.update_id == 2
    assert pool.allocated == 1


def test_disabled_pool_always_allocates() -> None:
    pool = ContextPool(FakeClient(), enabled=False)

    first = pool.acquire(make_update(1))
    pool.release(first)
    second = pool.acquire(make_update(2))

    assert second is not first
    assert pool.allocated == 2
    assert len(pool) == 0


def test_release_resets_context() -> None:
    pool = ContextPool(FakeClient())
    ctx = pool.acquire(make_update(1))
    pool.release(ctx)

    with pytest.raises(RuntimeError):
        ctx.update  # pylint: disable=pointless-statement
    assert ctx.cancel_scope is None
    assert len(pool) == 1


def test_clone_outlives_reset() -> None:
    ctx = Context(FakeClient())
    ctx.bind(make_update(5, "/start go"))

    clone = ctx.clone()
    ctx.reset()

    assert clone.update.update_id == 5
    assert clone.command() == "start"
    assert clone.command_args() == "go"


def test_accessors_on_non_message_update() -> None:
    ctx = Context(FakeClient())
    ctx.bind(parse_update({"update_id": 1}))

    assert ctx.message() is None
    assert ctx.is_command() is False
    assert ctx.command() == ""
    assert ctx.command_args() == ""
    assert ctx.sent_from() is None


@pytest.mark.anyio
async def test_reply_text_targets_update_chat() -> None:
    client = FakeClient()
    ctx = Context(client)
    ctx.bind(make_update(1, chat_id=77))

    await ctx.reply_text("hi", with_reply_to(10))

    assert client.requests == [
        ("sendMessage", {"chat_id": 77, "text": "hi", "reply_to_message_id": 10})
    ]


@pytest.mark.anyio
async def test_reply_markdown_and_html_defaults_can_be_overridden() -> None:
    client = FakeClient()
    ctx = Context(client)
    ctx.bind(make_update(1, chat_id=77))

    await ctx.reply_markdown("*a*", with_markdown_v2(), with_chat_id(5))
    await ctx.reply_html("<b>b</b>")

    assert client.requests[0][1] == {
        "chat_id": 5,
        "text": "*a*",
        "parse_mode": "MarkdownV2",
        "disable_web_page_preview": True,
    }
    assert client.requests[1][1]["parse_mode"] == "HTML"
    assert client.requests[1][1]["disable_web_page_preview"] is True


@pytest.mark.anyio
async def test_reply_on_callback_uses_message_chat() -> None:
    client = FakeClient()
    ctx = Context(client)
    ctx.bind(make_callback(3, chat_id=-9))

    await ctx.reply_text("ok")

    assert client.requests[0][1]["chat_id"] == -9


@pytest.mark.anyio
async def test_reply_without_chat_raises_handler_error() -> None:
    ctx = Context(FakeClient())
    ctx.bind(parse_update({"update_id": 1}))

    with pytest.raises(HandlerError, match="no chat"):
        await ctx.reply_text("lost")
