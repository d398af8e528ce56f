from __future__ import annotations

from dataclasses import dataclass
from typing import TypeAlias


@dataclass(frozen=True, slots=True)
class MessageRef:
    chat_id: int
    message_id: int


@dataclass(frozen=True, slots=True)
class CommandMessage:
    update_id: int
    sender: str | None
    message: MessageRef
    command: str
    args: str


@dataclass(frozen=True, slots=True)
class TextMessage:
    update_id: int
    sender: str | None
    message: MessageRef
    text: str


@dataclass(frozen=True, slots=True)
class DocumentMessage:
    update_id: int
    sender: str | None
    message: MessageRef
    file_id: str
    file_name: str | None = None


@dataclass(frozen=True, slots=True)
class CallbackQuery:
    update_id: int
    sender: str | None
    message: MessageRef | None
    query_id: str
    data: str


IncomingMessage: TypeAlias = CommandMessage | TextMessage | DocumentMessage
IncomingUpdate: TypeAlias = IncomingMessage | CallbackQuery
