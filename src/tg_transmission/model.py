from __future__ import annotations

from dataclasses import dataclass
from typing import Final, TypeAlias

# Callback payload suffixes with a fixed meaning; never usable as location names.
OTHER_TOKEN: Final = "other"
CANCEL_TOKEN: Final = "cancel"
YES_TOKEN: Final = "yes"
NO_TOKEN: Final = "no"
RESERVED_TOKENS: Final = frozenset({OTHER_TOKEN, CANCEL_TOKEN, YES_TOKEN, NO_TOKEN})


class _AllTorrents:
    __slots__ = ()

    def __repr__(self) -> str:
        return "ALL_TORRENTS"


ALL_TORRENTS: Final = _AllTorrents()

TorrentIds: TypeAlias = tuple[int | str, ...]
TorrentRef: TypeAlias = _AllTorrents | TorrentIds
TorrentSource: TypeAlias = str | bytes


@dataclass(frozen=True, slots=True)
class Location:
    name: str
    path: str


@dataclass(frozen=True, slots=True)
class NewTorrent:
    id: int
    hash: str
    name: str


@dataclass(frozen=True, slots=True)
class Torrent:
    id: int
    name: str
    hash: str = ""
    status: str = ""
    valid_size: int = 0
    wanted_size: int = 0
    download_rate: int = 0
    upload_rate: int = 0
    upload_ratio: float = 0.0
    eta: int = -1


@dataclass(frozen=True, slots=True)
class SessionStats:
    download_rate: int
    upload_rate: int
    active_torrents: int
    paused_torrents: int
    downloaded_total: int
    uploaded_total: int
