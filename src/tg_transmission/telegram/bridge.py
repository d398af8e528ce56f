from __future__ import annotations

from dataclasses import dataclass, field

import httpx

from ..auth import Authorizer
from ..callbacks import CallbackRegistry
from ..model import Location
from ..transmission import TorrentClient
from .client import BotClient

DEFAULT_POLL_TIMEOUT_S = 10


@dataclass(frozen=True)
class TelegramBridgeConfig:
    bot: BotClient
    daemon: TorrentClient
    authorizer: Authorizer
    locations: tuple[Location, ...] = ()
    registry: CallbackRegistry = field(default_factory=CallbackRegistry)
    http_client: httpx.AsyncClient | None = None
    set_commands: bool = True
    poll_timeout_s: int = DEFAULT_POLL_TIMEOUT_S

    def location_path(self, name: str) -> str | None:
        for location in self.locations:
            if location.name == name:
                return location.path
        return None
