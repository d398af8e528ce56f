"""Outbound messages: a fresh reply or an edit of a message the bot sent.

Replies are immutable values built from ordered options::

    reply(origin, with_text("hi"), with_quote_message())
    edit(prompt, with_markdown_v2(), with_text(escape_markdown_v2(name)))

Later options win over earlier ones for the same field.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, TypeAlias, cast

from ..logging import get_logger
from .client import BotClient
from .types import MessageRef

logger = get_logger(__name__)

MARKDOWN_V2 = "MarkdownV2"
ERROR_PREFIX = "Oops, something went wrong: "

_MARKDOWN_V2_RESERVED = frozenset("-*[]()~`>#+=|{}.!")


def escape_markdown_v2(text: str) -> str:
    return "".join(f"\\{ch}" if ch in _MARKDOWN_V2_RESERVED else ch for ch in text)


@dataclass(frozen=True, slots=True)
class InlineButton:
    text: str
    callback_data: str


ButtonRow: TypeAlias = tuple[InlineButton, ...]


@dataclass(frozen=True, slots=True)
class NewMessage:
    target: MessageRef
    text: str = ""
    parse_mode: str | None = None
    reply_markup: tuple[ButtonRow, ...] | None = None
    reply_to_message_id: int | None = None


@dataclass(frozen=True, slots=True)
class EditMessage:
    target: MessageRef
    text: str = ""
    parse_mode: str | None = None
    reply_markup: tuple[ButtonRow, ...] | None = None


Reply: TypeAlias = NewMessage | EditMessage
ReplyOption: TypeAlias = Callable[[Reply], Reply]


def with_text(text: str) -> ReplyOption:
    return lambda r: dataclasses.replace(r, text=text)


def with_markdown_v2() -> ReplyOption:
    return lambda r: dataclasses.replace(r, parse_mode=MARKDOWN_V2)


def with_quote_message() -> ReplyOption:
    def apply(r: Reply) -> Reply:
        # Quoting only applies to new messages.
        if isinstance(r, NewMessage):
            return dataclasses.replace(r, reply_to_message_id=r.target.message_id)
        return r

    return apply


def with_inline_keyboard(*rows: Sequence[InlineButton]) -> ReplyOption:
    markup = tuple(tuple(row) for row in rows)
    return lambda r: dataclasses.replace(r, reply_markup=markup)


def with_error(exc: BaseException | str) -> ReplyOption:
    """Plain-text error message; resets any markup mode set before it."""

    def apply(r: Reply) -> Reply:
        return dataclasses.replace(r, text=f"{ERROR_PREFIX}{exc}", parse_mode=None)

    return apply


def _build(base: Reply, opts: Sequence[ReplyOption]) -> Reply:
    for opt in opts:
        base = opt(base)
    return base


def reply(origin: MessageRef, *opts: ReplyOption) -> NewMessage:
    return cast(NewMessage, _build(NewMessage(target=origin), opts))


def edit(target: MessageRef, *opts: ReplyOption) -> EditMessage:
    return cast(EditMessage, _build(EditMessage(target=target), opts))


def keyboard_markup(rows: tuple[ButtonRow, ...] | None) -> dict[str, Any] | None:
    if rows is None:
        return None
    return {
        "inline_keyboard": [
            [{"text": b.text, "callback_data": b.callback_data} for b in row]
            for row in rows
        ]
    }


async def send_reply(bot: BotClient, out: Reply) -> bool:
    match out:
        case NewMessage():
            sent = await bot.send_message(
                chat_id=out.target.chat_id,
                text=out.text,
                reply_to_message_id=out.reply_to_message_id,
                parse_mode=out.parse_mode,
                reply_markup=keyboard_markup(out.reply_markup),
            )
        case EditMessage():
            sent = await bot.edit_message_text(
                chat_id=out.target.chat_id,
                message_id=out.target.message_id,
                text=out.text,
                parse_mode=out.parse_mode,
                reply_markup=keyboard_markup(out.reply_markup),
            )
    if sent is None:
        logger.info(
            "reply.send_failed",
            chat_id=out.target.chat_id,
            kind=type(out).__name__,
        )
        return False
    return True
