from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass

from ..logging import get_logger
from . import torrents
from .bridge import TelegramBridgeConfig
from .client import BotClient
from .reply import Reply
from .types import CommandMessage

logger = get_logger(__name__)

CommandHandler = Callable[[TelegramBridgeConfig, CommandMessage], Awaitable[Reply]]


@dataclass(frozen=True, slots=True)
class BotCommand:
    name: str
    description: str
    handler: CommandHandler
    advertised: bool = True


CommandTable = Mapping[str, BotCommand]


def build_command_table() -> dict[str, BotCommand]:
    commands = (
        BotCommand("start", "", torrents.start, advertised=False),
        BotCommand("checkport", "Check if the incoming port is open", torrents.check_port),
        BotCommand("stats", "Show session statistics", torrents.stats),
        BotCommand("turtleon", "Enable turtle mode", torrents.turtle_on),
        BotCommand("turtleoff", "Disable turtle mode", torrents.turtle_off),
        BotCommand("resume", "Resume specified torrents", torrents.resume),
        BotCommand("stop", "Stop specified torrents", torrents.stop),
        BotCommand("list", "List torrents", torrents.list_torrents),
        BotCommand("remove", "Remove torrents", torrents.remove),
    )
    return {cmd.name: cmd for cmd in commands}


def command_menu(table: CommandTable) -> list[dict[str, str]]:
    return [
        {"command": cmd.name, "description": cmd.description}
        for cmd in table.values()
        if cmd.advertised
    ]


async def set_command_menu(bot: BotClient, table: CommandTable) -> None:
    payload = command_menu(table)
    if not payload:
        return
    try:
        ok = await bot.set_my_commands(payload)
    except Exception as exc:  # noqa: BLE001
        logger.info(
            "startup.command_menu.failed",
            error=str(exc),
            error_type=exc.__class__.__name__,
        )
        return
    if not ok:
        logger.info("startup.command_menu.rejected")
        return
    logger.info(
        "startup.command_menu.updated",
        commands=[cmd["command"] for cmd in payload],
    )
