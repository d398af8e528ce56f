from __future__ import annotations

import dataclasses
from collections.abc import Awaitable, Callable

import anyio

from ..callbacks import split_callback_data
from ..logging import bind_update_context, clear_context, get_logger
from .api_models import Update
from .bridge import TelegramBridgeConfig
from .client import TelegramError
from .commands import CommandTable, build_command_table, set_command_menu
from .parsing import parse_incoming_update, update_origin
from .reply import Reply, edit, reply, send_reply, with_error, with_text
from .torrents import handle_document, handle_text
from .types import (
    CallbackQuery,
    CommandMessage,
    DocumentMessage,
    MessageRef,
    TextMessage,
)

logger = get_logger(__name__)

ALLOWED_UPDATES = ["message", "callback_query"]
POLL_BACKOFF_S = 0.1

UNAUTHORIZED_TEXT = "Sorry, I don't know you..."
UNKNOWN_COMMAND_TEXT = "Unknown command"
STALE_BUTTONS_TEXT = "Looks like these buttons no longer work ¯\\_(ツ)_/¯"


async def _guarded(
    update_id: int,
    call: Callable[[], Awaitable[Reply]],
    on_error: Callable[[Exception], Reply],
) -> Reply:
    try:
        return await call()
    except Exception as exc:  # noqa: BLE001
        logger.info(
            "loop.handler.failed",
            update_id=update_id,
            error=str(exc),
            error_type=exc.__class__.__name__,
        )
        return on_error(exc)


def _error_reply(origin: MessageRef) -> Callable[[Exception], Reply]:
    return lambda exc: reply(origin, with_error(exc))


def _error_edit(target: MessageRef) -> Callable[[Exception], Reply]:
    return lambda exc: edit(target, with_error(exc))


async def _handle_command(
    cfg: TelegramBridgeConfig, table: CommandTable, msg: CommandMessage
) -> Reply:
    command = table.get(msg.command)
    if command is None:
        return reply(msg.message, with_text(UNKNOWN_COMMAND_TEXT))
    return await _guarded(
        msg.update_id,
        lambda: command.handler(cfg, msg),
        _error_reply(msg.message),
    )


async def _handle_callback(
    cfg: TelegramBridgeConfig, query: CallbackQuery
) -> Reply | None:
    callback_id, data = split_callback_data(query.data)
    handler = cfg.registry.consume(callback_id)
    target = query.message
    try:
        acked = await cfg.bot.answer_callback_query(query.query_id)
        if not acked:
            raise TelegramError("failed to answer callback query")
    except Exception as exc:  # noqa: BLE001
        logger.info(
            "loop.callback.ack_failed",
            update_id=query.update_id,
            error=str(exc),
        )
        return edit(target, with_error(exc)) if target is not None else None
    if target is None:
        logger.info("loop.callback.no_message", update_id=query.update_id)
        return None
    if handler is None:
        logger.debug("loop.callback.unknown", update_id=query.update_id)
        return edit(target, with_text(STALE_BUTTONS_TEXT))
    resolved = dataclasses.replace(query, data=data)
    return await _guarded(
        query.update_id,
        lambda: handler(resolved),
        _error_edit(target),
    )


async def process_update(
    cfg: TelegramBridgeConfig, table: CommandTable, update: Update
) -> Reply | None:
    sender, origin = update_origin(update)
    if sender is None:
        logger.debug("loop.update.no_sender", update_id=update.update_id)
        return None
    if not cfg.authorizer.is_allowed(sender):
        logger.warning(
            "loop.unauthorized", update_id=update.update_id, sender=sender
        )
        if origin is None:
            return None
        return reply(origin, with_text(UNAUTHORIZED_TEXT))

    incoming = parse_incoming_update(update)
    if incoming is None:
        logger.debug("loop.update.ignored", update_id=update.update_id)
        return None
    logger.debug(
        "loop.dispatch",
        update_id=update.update_id,
        kind=incoming.__class__.__name__,
    )
    match incoming:
        case CommandMessage():
            return await _handle_command(cfg, table, incoming)
        case TextMessage():
            return await _guarded(
                incoming.update_id,
                lambda: handle_text(cfg, incoming),
                _error_reply(incoming.message),
            )
        case DocumentMessage():
            return await _guarded(
                incoming.update_id,
                lambda: handle_document(cfg, incoming),
                _error_reply(incoming.message),
            )
        case CallbackQuery():
            return await _handle_callback(cfg, incoming)
    return None


async def _send(cfg: TelegramBridgeConfig, update_id: int, out: Reply) -> None:
    try:
        sent = await send_reply(cfg.bot, out)
    except Exception as exc:  # noqa: BLE001
        logger.info(
            "loop.reply.failed",
            update_id=update_id,
            error=str(exc),
            error_type=exc.__class__.__name__,
        )
        return
    if not sent:
        logger.info("loop.reply.failed", update_id=update_id)


async def run_main_loop(
    cfg: TelegramBridgeConfig,
    *,
    stop: anyio.Event | None = None,
    commands: CommandTable | None = None,
    sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
) -> None:
    """Poll and dispatch updates until ``stop`` is set.

    ``stop`` is only checked between polls; a poll already waiting on
    Telegram runs to its timeout first.
    """
    table = commands if commands is not None else build_command_table()
    if cfg.set_commands:
        await set_command_menu(cfg.bot, table)

    offset = 0
    async with anyio.create_task_group() as tg:
        cfg.registry.attach(tg)
        try:
            while stop is None or not stop.is_set():
                updates = await cfg.bot.get_updates(
                    offset=offset,
                    timeout_s=cfg.poll_timeout_s,
                    allowed_updates=ALLOWED_UPDATES,
                )
                if updates is None:
                    logger.info("loop.get_updates.failed")
                    await sleep(POLL_BACKOFF_S)
                    continue
                logger.debug("loop.updates", count=len(updates))
                for upd in updates:
                    offset = max(offset, upd.update_id + 1)
                    bind_update_context(
                        update_id=upd.update_id, sender=update_origin(upd)[0]
                    )
                    try:
                        out = await process_update(cfg, table, upd)
                        if out is not None:
                            await _send(cfg, upd.update_id, out)
                    finally:
                        clear_context()
        finally:
            cfg.registry.attach(None)
            tg.cancel_scope.cancel()
    logger.info("loop.stopped", offset=offset)
