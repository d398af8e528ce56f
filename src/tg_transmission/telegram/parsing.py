from __future__ import annotations

from .api_models import CallbackQuery as ApiCallbackQuery
from .api_models import Message, Update, User
from .types import (
    CallbackQuery,
    CommandMessage,
    DocumentMessage,
    IncomingUpdate,
    MessageRef,
    TextMessage,
)

__all__ = ["parse_incoming_update", "parse_slash_command", "update_origin"]


def parse_slash_command(text: str) -> tuple[str | None, str]:
    if not text.startswith("/"):
        return None, text
    lines = text.splitlines()
    first_line = lines[0]
    token, _, rest = first_line.partition(" ")
    command = token[1:]
    if "@" in command:
        command = command.split("@", 1)[0]
    if not command:
        return None, text
    args_text = rest
    if len(lines) > 1:
        tail = "\n".join(lines[1:])
        args_text = f"{args_text}\n{tail}" if args_text else tail
    return command.lower(), args_text


def _sender(user: User | None) -> str | None:
    # A sender without a username still counts as a sender; it just never
    # matches the allow-list.
    if user is None:
        return None
    return user.username or ""


def _message_ref(msg: Message) -> MessageRef:
    return MessageRef(chat_id=msg.chat.id, message_id=msg.message_id)


def _parse_message(update_id: int, msg: Message) -> IncomingUpdate | None:
    sender = _sender(msg.from_)
    ref = _message_ref(msg)
    text = msg.text or ""
    command, args = parse_slash_command(text)
    if command is not None:
        return CommandMessage(
            update_id=update_id,
            sender=sender,
            message=ref,
            command=command,
            args=args,
        )
    if text:
        return TextMessage(update_id=update_id, sender=sender, message=ref, text=text)
    if msg.document is not None:
        return DocumentMessage(
            update_id=update_id,
            sender=sender,
            message=ref,
            file_id=msg.document.file_id,
            file_name=msg.document.file_name,
        )
    return None


def _parse_callback_query(update_id: int, query: ApiCallbackQuery) -> CallbackQuery:
    return CallbackQuery(
        update_id=update_id,
        sender=_sender(query.from_),
        message=_message_ref(query.message) if query.message is not None else None,
        query_id=query.id,
        data=query.data or "",
    )


def parse_incoming_update(update: Update) -> IncomingUpdate | None:
    if update.message is not None:
        parsed = _parse_message(update.update_id, update.message)
        if parsed is not None:
            return parsed
    if update.callback_query is not None:
        return _parse_callback_query(update.update_id, update.callback_query)
    return None


def update_origin(update: Update) -> tuple[str | None, MessageRef | None]:
    """Return the sender and the message an update refers to, whatever its shape."""
    if update.message is not None:
        return _sender(update.message.from_), _message_ref(update.message)
    query = update.callback_query
    if query is not None:
        ref = _message_ref(query.message) if query.message is not None else None
        return _sender(query.from_), ref
    return None, None
