"""Handlers for the torrent commands and for torrents dropped into the chat.

Each handler returns the reply to send; errors propagate to the dispatcher,
which turns them into an error reply.
"""

from __future__ import annotations

import httpx

from ..format import format_bytes, format_duration, format_ratio
from ..logging import get_logger
from ..model import (
    ALL_TORRENTS,
    CANCEL_TOKEN,
    NO_TOKEN,
    OTHER_TOKEN,
    YES_TOKEN,
    TorrentRef,
    TorrentSource,
)
from ..transmission import LIST_FIELDS, REMOVE_FIELDS
from .bridge import TelegramBridgeConfig
from .client import TelegramError
from .reply import (
    InlineButton,
    Reply,
    edit,
    escape_markdown_v2,
    reply,
    with_inline_keyboard,
    with_markdown_v2,
    with_quote_message,
    with_text,
)
from .types import CallbackQuery, CommandMessage, DocumentMessage, MessageRef, TextMessage

logger = get_logger(__name__)

GREETING = "Drop me a magnet link/torrent URL or a torrent file."
DONE = "Done 😎"


class TorrentIdError(ValueError):
    pass


def parse_torrent_ids(args: str) -> TorrentRef:
    ids: list[int] = []
    for token in args.split():
        try:
            ids.append(int(token))
        except ValueError:
            raise TorrentIdError(f"invalid torrent ID {token!r}") from None
    if not ids:
        return ALL_TORRENTS
    return tuple(ids)


def _added_text(torrent_id: int, name: str, path: str | None = None) -> str:
    text = f"👌 \\<*{torrent_id}*\\> {escape_markdown_v2(name)}"
    if path:
        text += f"\n\nWill be downloaded to *{escape_markdown_v2(path)}*"
    return text


def _prompt_target(query: CallbackQuery) -> MessageRef:
    if query.message is None:
        raise TelegramError("callback query has no message")
    return query.message


async def add_torrent(
    cfg: TelegramBridgeConfig, origin: MessageRef, source: TorrentSource
) -> Reply:
    if not cfg.locations:
        torrent = await cfg.daemon.add_torrent(source)
        return reply(
            origin,
            with_text(_added_text(torrent.id, torrent.name)),
            with_markdown_v2(),
            with_quote_message(),
        )

    async def on_location(query: CallbackQuery) -> Reply:
        target = _prompt_target(query)
        path: str | None = None
        match query.data:
            case "cancel":
                return edit(target, with_text("Ok, not gonna download it"))
            case "other":
                pass
            case name:
                path = cfg.location_path(name)
                if path is None:
                    raise ValueError("I don't know this location")
        torrent = await cfg.daemon.add_torrent(source, download_dir=path)
        return edit(
            target,
            with_text(_added_text(torrent.id, torrent.name, path)),
            with_markdown_v2(),
        )

    callback_id = cfg.registry.register(on_location)
    row = [
        InlineButton(text=location.name, callback_data=callback_id + location.name)
        for location in cfg.locations
    ]
    row.append(InlineButton(text="Other", callback_data=callback_id + OTHER_TOKEN))
    return reply(
        origin,
        with_text("Ok, gonna queue it for download. But first tell me what is it?"),
        with_inline_keyboard(
            row,
            [InlineButton(text="Cancel", callback_data=callback_id + CANCEL_TOKEN)],
        ),
        with_quote_message(),
    )


async def handle_text(cfg: TelegramBridgeConfig, msg: TextMessage) -> Reply:
    return await add_torrent(cfg, msg.message, msg.text)


async def _download(http_client: httpx.AsyncClient, url: str) -> bytes:
    resp = await http_client.get(url)
    resp.raise_for_status()
    return resp.content


async def handle_document(cfg: TelegramBridgeConfig, msg: DocumentMessage) -> Reply:
    file = await cfg.bot.get_file(msg.file_id)
    if file is None or not file.file_path:
        raise TelegramError(f"can't resolve file {msg.file_id}")
    url = cfg.bot.file_url(file.file_path)
    if cfg.http_client is not None:
        data = await _download(cfg.http_client, url)
    else:
        async with httpx.AsyncClient() as http_client:
            data = await _download(http_client, url)
    logger.debug("torrents.document.fetched", file_id=msg.file_id, size=len(data))
    return await add_torrent(cfg, msg.message, data)


async def start(cfg: TelegramBridgeConfig, msg: CommandMessage) -> Reply:
    return reply(msg.message, with_text(GREETING))


async def check_port(cfg: TelegramBridgeConfig, msg: CommandMessage) -> Reply:
    if await cfg.daemon.is_port_open():
        text = "Hooray! The port is open :)"
    else:
        text = "Hmm... The port is closed :("
    return reply(msg.message, with_text(text))


async def stats(cfg: TelegramBridgeConfig, msg: CommandMessage) -> Reply:
    s = await cfg.daemon.get_session_stats()
    turtle = await cfg.daemon.get_turtle_mode()
    esc = escape_markdown_v2
    text = (
        f"↓*{esc(format_bytes(s.download_rate))}/s* "
        f"↑*{esc(format_bytes(s.upload_rate))}/s* "
        f"{'🐢' if turtle else '🚀'}   "
        f"↻*{s.active_torrents}* ⊗*{s.paused_torrents}*   "
        f"↓*{esc(format_bytes(s.downloaded_total))}* "
        f"↑*{esc(format_bytes(s.uploaded_total))}* "
        f"☯*{esc(format_ratio(s.uploaded_total, s.downloaded_total))}*"
    )
    return reply(msg.message, with_text(text), with_markdown_v2())


async def _set_turtle(
    cfg: TelegramBridgeConfig, msg: CommandMessage, enabled: bool
) -> Reply:
    await cfg.daemon.set_turtle_mode(enabled)
    state = "*enabled* 🐢" if enabled else "*disabled* 🚀"
    return reply(
        msg.message, with_text(f"Turtle mode is now {state}"), with_markdown_v2()
    )


async def turtle_on(cfg: TelegramBridgeConfig, msg: CommandMessage) -> Reply:
    return await _set_turtle(cfg, msg, True)


async def turtle_off(cfg: TelegramBridgeConfig, msg: CommandMessage) -> Reply:
    return await _set_turtle(cfg, msg, False)


async def resume(cfg: TelegramBridgeConfig, msg: CommandMessage) -> Reply:
    await cfg.daemon.start_torrents(parse_torrent_ids(msg.args))
    return reply(msg.message, with_text(DONE))


async def stop(cfg: TelegramBridgeConfig, msg: CommandMessage) -> Reply:
    await cfg.daemon.stop_torrents(parse_torrent_ids(msg.args))
    return reply(msg.message, with_text(DONE))


async def list_torrents(cfg: TelegramBridgeConfig, msg: CommandMessage) -> Reply:
    torrents = await cfg.daemon.get_torrents(ALL_TORRENTS, LIST_FIELDS)
    needle = msg.args.strip().lower()
    if needle:
        torrents = [t for t in torrents if needle in t.name.lower()]
    if not torrents:
        return reply(
            msg.message, with_text("Don't have any matching torrent"), with_markdown_v2()
        )

    esc = escape_markdown_v2
    parts = ["Here is what I got:\n"]
    for t in torrents:
        status = t.status[:1].upper() + t.status[1:]
        perc = format_ratio(t.valid_size * 100, t.wanted_size, digits=1)
        block = (
            f"\n\\<*{t.id}*\\> *{esc(t.name)}*\n"
            f"{esc(status)} *{esc(format_bytes(t.valid_size))}* "
            f"of *{esc(format_bytes(t.wanted_size))}* \\(*{esc(perc)}%*\\)   "
            f"↓*{esc(format_bytes(t.download_rate))}/s* "
            f"↑*{esc(format_bytes(t.upload_rate))}/s*"
        )
        if t.upload_ratio > 0:
            block += f" ☯*{esc(f'{t.upload_ratio:.2f}')}*"
        if t.eta > 0:
            block += f"   ETA: *{format_duration(t.eta)}*"
        parts.append(block + "\n")
    return reply(msg.message, with_text("".join(parts)), with_markdown_v2())


async def remove(cfg: TelegramBridgeConfig, msg: CommandMessage) -> Reply:
    ref = parse_torrent_ids(msg.args)
    torrents = await cfg.daemon.get_torrents(ref, REMOVE_FIELDS)
    if not torrents:
        return reply(msg.message, with_text("Don't have any matching torrents"))

    hashes = tuple(t.hash for t in torrents)

    async def on_confirm(query: CallbackQuery) -> Reply:
        target = _prompt_target(query)
        match query.data:
            case "yes":
                delete_data = True
            case "no":
                delete_data = False
            case _:
                return edit(target, with_text("Ok, not gonna remove any torrents"))
        await cfg.daemon.remove_torrents(hashes, delete_data=delete_data)
        return edit(target, with_text(DONE))

    listing = "".join(
        f"\\<*{t.id}*\\> *{escape_markdown_v2(t.name)}*\n" for t in torrents
    )
    text = (
        "I'm going to remove the following torrents:\n\n"
        f"{listing}\n"
        "Should I remove their data files as well?"
    )
    callback_id = cfg.registry.register(on_confirm)
    return reply(
        msg.message,
        with_text(text),
        with_markdown_v2(),
        with_inline_keyboard(
            [
                InlineButton(text="Yes", callback_data=callback_id + YES_TOKEN),
                InlineButton(text="No", callback_data=callback_id + NO_TOKEN),
                InlineButton(text="Cancel", callback_data=callback_id + CANCEL_TOKEN),
            ]
        ),
    )
