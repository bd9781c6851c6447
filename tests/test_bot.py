import pytest
import trio
from trio.testing import wait_all_tasks_blocked

from tgbot.bot import Bot
from tgbot.commands import CommandScope, new_command
from tgbot.errors import CommandConfigError, CommandRegistrationError, PoolClosedError
from tgbot.workers import TaskPool

from .telegram_fakes import FakeClient, make_options, make_update


async def _noop(ctx) -> None:
    return None


def test_bot_requires_api() -> None:
    with pytest.raises(ValueError):
        Bot(None)  # type: ignore[arg-type]


def test_add_commands_fails_fast_on_duplicates() -> None:
    bot = Bot(FakeClient(), make_options())
    bot.add_commands(new_command("ping", "ping", _noop))

    with pytest.raises(CommandConfigError):
        bot.add_commands(new_command("ping", "pong", _noop))


def test_commands_are_grouped_by_scope() -> None:
    bot = Bot(FakeClient(), make_options())
    a, b = CommandScope.default(), CommandScope.chat(3)
    bot.add_commands(new_command("ping", "ping", _noop, scopes=[a, a, b]))

    buckets = bot.commands()

    assert set(buckets) == {a, b}
    assert all(len(cmds) == 1 for cmds in buckets.values())


@pytest.mark.anyio
async def test_run_registers_commands_then_polls() -> None:
    client = FakeClient()
    bot = Bot(client, make_options(auto_setup_commands=True))
    bot.add_commands(new_command("ping", "ping the bot", _noop))

    async with trio.open_nursery() as nursery:
        nursery.start_soon(bot.run)
        await wait_all_tasks_blocked()

        assert client.registrations == [
            {"commands": [("ping", "ping the bot")], "scope": None, "language_code": None}
        ]
        assert len(client.get_updates_calls) == 1
        await bot.stop().wait()


@pytest.mark.anyio
async def test_registration_failure_aborts_run() -> None:
    client = FakeClient(fail_registration=True)
    bot = Bot(client, make_options(auto_setup_commands=True))
    bot.add_commands(new_command("ping", "ping", _noop))

    with pytest.raises(CommandRegistrationError, match="failed to setup commands"):
        await bot.run()

    assert client.get_updates_calls == []
    assert bot.stop().is_set()


@pytest.mark.anyio
async def test_disabled_auto_setup_skips_registration() -> None:
    client = FakeClient(fail_registration=True)
    bot = Bot(client, make_options(auto_setup_commands=False))
    bot.add_commands(new_command("ping", "ping", _noop))

    async with trio.open_nursery() as nursery:
        nursery.start_soon(bot.run)
        await wait_all_tasks_blocked()
        await bot.stop().wait()

    assert client.registrations == []


@pytest.mark.anyio
async def test_run_twice_and_late_commands_are_rejected() -> None:
    bot = Bot(FakeClient(), make_options())

    async with trio.open_nursery() as nursery:
        nursery.start_soon(bot.run)
        await wait_all_tasks_blocked()

        with pytest.raises(RuntimeError):
            await bot.run()
        with pytest.raises(RuntimeError):
            bot.add_commands(new_command("late", "late", _noop))
        await bot.stop().wait()


@pytest.mark.anyio
async def test_stop_before_run_completes_immediately() -> None:
    bot = Bot(FakeClient(), make_options())

    assert bot.stop().is_set()


@pytest.mark.anyio
async def test_end_to_end_dispatch_and_offset() -> None:
    client = FakeClient([[make_update(1, "/ping"), make_update(2, "hello")]])
    seen = []

    async def ping(ctx) -> None:
        await ctx.reply_text("pong")

    async def on_update(ctx) -> None:
        seen.append(ctx.message().text)

    bot = Bot(client, make_options(workers_num=2, updates_handler=on_update))
    bot.add_commands(new_command("ping", "ping", ping))

    async with trio.open_nursery() as nursery:
        nursery.start_soon(bot.run)
        await wait_all_tasks_blocked()
        await bot.stop().wait()

    assert bot.offset == 3
    assert seen == ["hello"]
    assert client.requests == [("sendMessage", {"chat_id": 1, "text": "pong"})]


@pytest.mark.anyio
async def test_panicking_handler_does_not_stop_other_updates() -> None:
    client = FakeClient([[make_update(i) for i in range(1, 6)]])
    handled = []
    panics = []

    async def on_update(ctx) -> None:
        if ctx.update.update_id == 2:
            raise RuntimeError("handler bug")
        handled.append(ctx.update.update_id)

    async def on_panic(ctx, exc) -> None:
        panics.append((ctx.update.update_id, str(exc)))

    bot = Bot(
        client,
        make_options(workers_num=2, updates_handler=on_update, panic_handler=on_panic),
    )

    async with trio.open_nursery() as nursery:
        nursery.start_soon(bot.run)
        await wait_all_tasks_blocked()
        await bot.stop().wait()

    assert sorted(handled) == [1, 3, 4, 5]
    assert panics == [(2, "handler bug")]


@pytest.mark.anyio
async def test_capacity_two_single_slow_worker_scenario() -> None:
    gate = trio.Event()
    started = []

    async def slow(ctx) -> None:
        started.append(ctx.update.update_id)
        await gate.wait()

    client = FakeClient([[make_update(1), make_update(2), make_update(3), make_update(4)]])
    bot = Bot(client, make_options(buffer_size=2, updates_handler=slow))

    async with trio.open_nursery() as nursery:
        nursery.start_soon(bot.run)
        await wait_all_tasks_blocked()

        # worker holds 1, queue holds 2 and 3, poller waits to enqueue 4
        assert started == [1]
        assert bot.queued == 2
        assert bot.offset == 4
        assert len(client.get_updates_calls) == 1

        gate.set()
        await wait_all_tasks_blocked()

        assert started == [1, 2, 3, 4]
        assert bot.offset == 5
        await bot.stop().wait()


@pytest.mark.anyio
async def test_stop_drains_queued_updates() -> None:
    gate = trio.Event()
    finished = []

    async def handler(ctx) -> None:
        if ctx.update.update_id == 1:
            await gate.wait()
        finished.append(ctx.update.update_id)

    client = FakeClient([[make_update(i) for i in range(1, 5)]])
    bot = Bot(client, make_options(buffer_size=3, updates_handler=handler))

    async with trio.open_nursery() as nursery:
        nursery.start_soon(bot.run)
        await wait_all_tasks_blocked()
        assert bot.queued == 3

        done = bot.stop()
        assert not done.is_set()
        await done.wait()

        assert sorted(finished) == [2, 3, 4]
        assert bot.queued == 0


@pytest.mark.anyio
async def test_stop_without_drain_discards_queued_updates() -> None:
    gate = trio.Event()
    started = []

    async def handler(ctx) -> None:
        started.append(ctx.update.update_id)
        await gate.wait()

    client = FakeClient([[make_update(i) for i in range(1, 5)]])
    bot = Bot(
        client,
        make_options(buffer_size=3, drain_on_stop=False, updates_handler=handler),
    )

    async with trio.open_nursery() as nursery:
        nursery.start_soon(bot.run)
        await wait_all_tasks_blocked()
        await bot.stop().wait()

    assert started == [1]
    assert bot.queued == 0


@pytest.mark.anyio
async def test_drain_respects_per_update_timeout() -> None:
    errors = []
    gate = trio.Event()

    async def handler(ctx) -> None:
        await gate.wait()

    client = FakeClient([[make_update(1), make_update(2)]])
    bot = Bot(
        client,
        make_options(
            buffer_size=2,
            timeout=0.5,
            updates_handler=handler,
            error_handler=errors.append,
        ),
    )

    async with trio.open_nursery() as nursery:
        nursery.start_soon(bot.run)
        await wait_all_tasks_blocked()
        with trio.fail_after(5):
            await bot.stop().wait()

    # update 1 is cancelled by shutdown, update 2 times out during the drain
    assert [e.update_id for e in errors] == [2]


@pytest.mark.anyio
async def test_external_cancel_scope_stops_bot() -> None:
    scope = trio.CancelScope()
    bot = Bot(FakeClient(), make_options(cancel_scope=scope))

    async with trio.open_nursery() as nursery:
        nursery.start_soon(bot.run)
        await wait_all_tasks_blocked()
        scope.cancel()

    assert bot.stop().is_set()


@pytest.mark.anyio
async def test_closed_task_pool_drops_updates() -> None:
    errors = []
    handled = []

    async def handler(ctx) -> None:
        handled.append(ctx.update.update_id)

    client = FakeClient([[make_update(1), make_update(2)]])
    async with TaskPool.open(2) as pool:
        pool.close()
        bot = Bot(
            client,
            make_options(task_pool=pool, updates_handler=handler, error_handler=errors.append),
        )
        async with trio.open_nursery() as nursery:
            nursery.start_soon(bot.run)
            await wait_all_tasks_blocked()
            await bot.stop().wait()

    assert handled == []
    assert len(errors) == 2
    assert all(isinstance(e, PoolClosedError) for e in errors)
    assert bot.offset == 3


@pytest.mark.anyio
async def test_stop_cancels_handlers_running_in_task_pool() -> None:
    cancelled = []

    async def handler(ctx) -> None:
        try:
            await trio.sleep_forever()
        except trio.Cancelled:
            cancelled.append((ctx.update.update_id, ctx.cancelled()))
            raise

    client = FakeClient([[make_update(1), make_update(2)]])
    with trio.fail_after(5):
        async with TaskPool.open(2) as pool:
            bot = Bot(client, make_options(task_pool=pool, updates_handler=handler))
            async with trio.open_nursery() as nursery:
                nursery.start_soon(bot.run)
                await wait_all_tasks_blocked()
                assert pool.running == 2
                await bot.stop().wait()

    assert sorted(cancelled) == [(1, True), (2, True)]
    assert bot.offset == 3


@pytest.mark.anyio
async def test_pool_mode_stop_drains_queue_inline() -> None:
    finished = []
    cancelled = []

    async def handler(ctx) -> None:
        if ctx.update.update_id == 3:
            finished.append(3)
            return
        try:
            await trio.sleep_forever()
        except trio.Cancelled:
            cancelled.append(ctx.update.update_id)
            raise

    client = FakeClient([[make_update(1), make_update(2), make_update(3)]])
    with trio.fail_after(5):
        async with TaskPool.open(1) as pool:
            bot = Bot(
                client,
                make_options(buffer_size=2, task_pool=pool, updates_handler=handler),
            )
            async with trio.open_nursery() as nursery:
                nursery.start_soon(bot.run)
                await wait_all_tasks_blocked()

                # 1 runs in the pool, the worker waits for a slot for 2
                assert pool.running == 1
                assert bot.queued == 1
                await bot.stop().wait()

    assert cancelled == [1]
    assert finished == [3]


class _BlockingRegistrationClient(FakeClient):
    def __init__(self) -> None:
        super().__init__()
        self.registering = trio.Event()

    async def set_my_commands(self, commands, scope=None, language_code=None):
        self.registering.set()
        await trio.sleep_forever()


@pytest.mark.anyio
async def test_stop_during_registration_skips_polling() -> None:
    client = _BlockingRegistrationClient()
    bot = Bot(client, make_options(auto_setup_commands=True))
    bot.add_commands(new_command("ping", "ping", _noop))

    with trio.fail_after(5):
        async with trio.open_nursery() as nursery:
            nursery.start_soon(bot.run)
            await client.registering.wait()
            await bot.stop().wait()

    assert client.registrations == []
    assert client.get_updates_calls == []


@pytest.mark.anyio
@pytest.mark.parametrize("drain", [True, False])
async def test_unlimited_mode_stop_cancels_every_running_handler(drain: bool) -> None:
    started = []
    cancelled = []

    async def handler(ctx) -> None:
        started.append(ctx.update.update_id)
        try:
            await trio.sleep_forever()
        except trio.Cancelled:
            cancelled.append(ctx.update.update_id)
            raise

    client = FakeClient([[make_update(i) for i in range(1, 5)]])
    bot = Bot(
        client,
        make_options(
            unlimited_concurrency=True,
            buffer_size=2,
            drain_on_stop=drain,
            updates_handler=handler,
        ),
    )

    with trio.fail_after(5):
        async with trio.open_nursery() as nursery:
            nursery.start_soon(bot.run)
            await wait_all_tasks_blocked()

            assert sorted(started) == [1, 2, 3, 4]
            assert bot.queued == 0
            await bot.stop().wait()

    assert sorted(cancelled) == [1, 2, 3, 4]
    assert bot.offset == 5
