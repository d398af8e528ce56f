from __future__ import annotations

from typing import Any

import anyio
import pytest

from tg_transmission.callbacks import CallbackRegistry
from tg_transmission.model import Location
from tg_transmission.telegram.api_models import Chat, Message, Update
from tg_transmission.telegram.bridge import TelegramBridgeConfig
from tg_transmission.telegram.loop import run_main_loop
from tg_transmission.transmission import DaemonError
from tests.telegram_fakes import (
    CHAT_ID,
    FakeBot,
    FakeDaemon,
    callback_update,
    document_update,
    make_cfg,
    text_update,
)

CALLBACK_ID = "c" * 36


async def _run(cfg: TelegramBridgeConfig, sleeps: list[float] | None = None) -> None:
    assert isinstance(cfg.bot, FakeBot)
    stop = anyio.Event()
    cfg.bot.stop = stop

    async def sleep(delay: float) -> None:
        if sleeps is not None:
            sleeps.append(delay)

    with anyio.fail_after(5):
        await run_main_loop(cfg, stop=stop, sleep=sleep)


def _texts(calls: list[dict[str, Any]]) -> list[str]:
    return [call["text"] for call in calls]


@pytest.mark.anyio
async def test_unauthorized_senders_get_fixed_reply_only() -> None:
    bot = FakeBot(
        [
            [
                text_update(1, "/checkport", username="mallory"),
                text_update(2, "magnet:?xt=urn:btih:abc", username="mallory"),
                document_update(3, "f1", username="mallory"),
                callback_update(4, CALLBACK_ID + "yes", username="mallory"),
                text_update(5, "/list", username=""),
                text_update(6, "/list", username="Alice"),
            ]
        ]
    )
    daemon = FakeDaemon()

    await _run(make_cfg(bot=bot, daemon=daemon))

    assert _texts(bot.send_calls) == ["Sorry, I don't know you..."] * 6
    assert {call["chat_id"] for call in bot.send_calls} == {CHAT_ID}
    assert bot.edit_calls == []
    assert bot.answer_calls == []
    assert daemon.calls == []


@pytest.mark.anyio
async def test_updates_without_sender_are_ignored() -> None:
    anonymous = Update(
        update_id=1,
        message=Message(message_id=1, chat=Chat(id=CHAT_ID), text="/stats"),
    )
    bot = FakeBot([[anonymous]])
    daemon = FakeDaemon()

    await _run(make_cfg(bot=bot, daemon=daemon))

    assert bot.send_calls == []
    assert daemon.calls == []


@pytest.mark.anyio
async def test_offset_never_regresses() -> None:
    bot = FakeBot(
        [
            [text_update(5, "/start"), text_update(3, "/start")],
            [text_update(7, "/start")],
        ]
    )

    await _run(make_cfg(bot=bot))

    assert [call["offset"] for call in bot.get_updates_calls] == [0, 6, 8]
    assert all(
        call["allowed_updates"] == ["message", "callback_query"]
        and call["timeout_s"] == 10
        for call in bot.get_updates_calls
    )
    assert len(bot.send_calls) == 3


@pytest.mark.anyio
async def test_failed_poll_backs_off_and_retries() -> None:
    bot = FakeBot([None, [text_update(1, "/start")]])
    sleeps: list[float] = []

    await _run(make_cfg(bot=bot), sleeps)

    assert sleeps == [0.1]
    assert [call["offset"] for call in bot.get_updates_calls] == [0, 0, 2]
    assert _texts(bot.send_calls) == [
        "Drop me a magnet link/torrent URL or a torrent file."
    ]


@pytest.mark.anyio
async def test_unknown_command_and_handler_errors() -> None:
    bot = FakeBot([[text_update(1, "/nope"), text_update(2, "/checkport")]])
    daemon = FakeDaemon(error=DaemonError("connection refused"))

    await _run(make_cfg(bot=bot, daemon=daemon))

    assert _texts(bot.send_calls) == [
        "Unknown command",
        "Oops, something went wrong: connection refused",
    ]


@pytest.mark.anyio
async def test_bad_torrent_ids_surface_as_error_reply() -> None:
    bot = FakeBot([[text_update(1, "/resume 1 abc")]])
    daemon = FakeDaemon()

    await _run(make_cfg(bot=bot, daemon=daemon))

    assert len(bot.send_calls) == 1
    assert bot.send_calls[0]["text"].startswith("Oops, something went wrong: ")
    assert daemon.calls == []


@pytest.mark.anyio
async def test_stale_callback_edits_prompt() -> None:
    bot = FakeBot([[callback_update(1, CALLBACK_ID + "yes", query_id="q9")]])

    await _run(make_cfg(bot=bot))

    assert bot.answer_calls == ["q9"]
    assert bot.edit_calls == [
        {
            "chat_id": CHAT_ID,
            "message_id": 55,
            "text": "Looks like these buttons no longer work ¯\\_(ツ)_/¯",
            "parse_mode": None,
            "reply_markup": None,
        }
    ]


@pytest.mark.anyio
async def test_short_callback_payload_is_unknown() -> None:
    bot = FakeBot([[callback_update(1, "yes"), callback_update(2, None)]])

    await _run(make_cfg(bot=bot))

    assert _texts(bot.edit_calls) == [
        "Looks like these buttons no longer work ¯\\_(ツ)_/¯"
    ] * 2


@pytest.mark.anyio
async def test_failed_callback_ack_edits_error() -> None:
    bot = FakeBot([[callback_update(1, CALLBACK_ID + "yes")]])
    bot.answer_ok = False

    await _run(make_cfg(bot=bot))

    assert _texts(bot.edit_calls) == [
        "Oops, something went wrong: failed to answer callback query"
    ]


@pytest.mark.anyio
async def test_location_flow_through_the_loop() -> None:
    bot = FakeBot(
        [
            [text_update(1, "magnet:?xt=urn:btih:abc")],
            [callback_update(2, CALLBACK_ID + "movies", message_id=1001)],
            [callback_update(3, CALLBACK_ID + "movies", message_id=1001)],
        ]
    )
    daemon = FakeDaemon()
    cfg = make_cfg(
        bot=bot,
        daemon=daemon,
        locations=[Location(name="movies", path="/data/movies")],
        registry=CallbackRegistry(new_id=lambda: CALLBACK_ID),
    )

    await _run(cfg)

    prompt = bot.send_calls[0]
    assert prompt["reply_to_message_id"] == 10
    assert prompt["reply_markup"] == {
        "inline_keyboard": [
            [
                {"text": "movies", "callback_data": CALLBACK_ID + "movies"},
                {"text": "Other", "callback_data": CALLBACK_ID + "other"},
            ],
            [{"text": "Cancel", "callback_data": CALLBACK_ID + "cancel"}],
        ]
    }
    assert daemon.calls == [("add_torrent", "magnet:?xt=urn:btih:abc", "/data/movies")]
    assert _texts(bot.edit_calls) == [
        "👌 \\<*7*\\> Some\\.Torrent\n\nWill be downloaded to */data/movies*",
        "Looks like these buttons no longer work ¯\\_(ツ)_/¯",
    ]
    assert {call["message_id"] for call in bot.edit_calls} == {1001}
    assert len(cfg.registry) == 0


def test_empty_injected_collaborators_are_kept() -> None:
    registry = CallbackRegistry()
    bot = FakeBot()
    daemon = FakeDaemon()

    cfg = make_cfg(bot=bot, daemon=daemon, registry=registry)

    assert len(registry) == 0
    assert cfg.registry is registry
    assert cfg.bot is bot
    assert cfg.daemon is daemon


@pytest.mark.anyio
async def test_callback_handler_error_becomes_edit() -> None:
    bot = FakeBot(
        [
            [text_update(1, "magnet:?xt=urn:btih:abc")],
            [callback_update(2, CALLBACK_ID + "music", message_id=1001)],
        ]
    )
    cfg = make_cfg(
        bot=bot,
        locations=[Location(name="movies", path="/data/movies")],
        registry=CallbackRegistry(new_id=lambda: CALLBACK_ID),
    )

    await _run(cfg)

    assert _texts(bot.edit_calls) == [
        "Oops, something went wrong: I don't know this location"
    ]


@pytest.mark.anyio
async def test_loop_exits_with_pending_prompts() -> None:
    bot = FakeBot([[text_update(1, "magnet:?xt=urn:btih:abc")]])
    cfg = make_cfg(bot=bot, locations=[Location(name="movies", path="/m")])

    await _run(cfg)

    assert len(bot.send_calls) == 1
    assert len(cfg.registry) == 1


@pytest.mark.anyio
async def test_send_failures_do_not_stop_the_loop() -> None:
    class _Bot(FakeBot):
        async def send_message(self, chat_id: int, text: str, **kwargs: Any):  # type: ignore[override]
            await super().send_message(chat_id, text, **kwargs)
            if len(self.send_calls) == 1:
                raise RuntimeError("network down")
            return None

    bot = _Bot([[text_update(1, "/start"), text_update(2, "/start")]])

    await _run(make_cfg(bot=bot))

    assert len(bot.send_calls) == 2


@pytest.mark.anyio
async def test_command_menu_published_on_startup() -> None:
    bot = FakeBot()

    await _run(make_cfg(bot=bot, set_commands=True))

    assert bot.command_calls == [
        [
            {"command": "checkport", "description": "Check if the incoming port is open"},
            {"command": "stats", "description": "Show session statistics"},
            {"command": "turtleon", "description": "Enable turtle mode"},
            {"command": "turtleoff", "description": "Disable turtle mode"},
            {"command": "resume", "description": "Resume specified torrents"},
            {"command": "stop", "description": "Stop specified torrents"},
            {"command": "list", "description": "List torrents"},
            {"command": "remove", "description": "Remove torrents"},
        ]
    ]


@pytest.mark.anyio
async def test_command_menu_failure_is_not_fatal() -> None:
    class _Bot(FakeBot):
        async def set_my_commands(self, commands: list[dict[str, Any]]) -> bool:
            _ = commands
            raise RuntimeError("nope")

    bot = _Bot([[text_update(1, "/start")]])

    await _run(make_cfg(bot=bot, set_commands=True))

    assert len(bot.send_calls) == 1
