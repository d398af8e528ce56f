from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from functools import partial
from typing import Any, Protocol, TypeVar
from urllib.parse import urlsplit

import anyio
from transmission_rpc import Client, from_url
from transmission_rpc.error import TransmissionError

from .logging import get_logger
from .model import (
    NewTorrent,
    SessionStats,
    Torrent,
    TorrentRef,
    TorrentSource,
)

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_RPC_URL = "http://localhost:9091/transmission/rpc"

LIST_FIELDS = (
    "id",
    "name",
    "status",
    "haveValid",
    "sizeWhenDone",
    "rateDownload",
    "rateUpload",
    "uploadRatio",
    "eta",
)
REMOVE_FIELDS = ("id", "hashString", "name")


class DaemonError(RuntimeError):
    pass


class TorrentClient(Protocol):
    async def add_torrent(
        self, source: TorrentSource, download_dir: str | None = None
    ) -> NewTorrent: ...

    async def is_port_open(self) -> bool: ...

    async def get_session_stats(self) -> SessionStats: ...

    async def get_turtle_mode(self) -> bool: ...

    async def set_turtle_mode(self, enabled: bool) -> None: ...

    async def start_torrents(self, ref: TorrentRef) -> None: ...

    async def stop_torrents(self, ref: TorrentRef) -> None: ...

    async def get_torrents(
        self, ref: TorrentRef, fields: Sequence[str] = LIST_FIELDS
    ) -> list[Torrent]: ...

    async def remove_torrents(self, ref: TorrentRef, delete_data: bool) -> None: ...


def build_rpc_client(
    url: str,
    *,
    username: str | None = None,
    password: str | None = None,
    timeout_s: float = 30,
) -> Client:
    if username is None and password is None:
        return from_url(url, timeout=timeout_s)
    parts = urlsplit(url)
    scheme = parts.scheme or "http"
    return Client(
        protocol=scheme,
        host=parts.hostname or "localhost",
        port=parts.port or (443 if scheme == "https" else 9091),
        path=parts.path or "/transmission/rpc",
        username=username,
        password=password,
        timeout=timeout_s,
    )


def _torrent_from_rpc(t: Any) -> Torrent:
    fields = t.fields
    return Torrent(
        id=int(fields["id"]),
        name=str(fields.get("name", "")),
        hash=str(fields.get("hashString", "")),
        status=str(t.status) if "status" in fields else "",
        valid_size=int(fields.get("haveValid", 0)),
        wanted_size=int(fields.get("sizeWhenDone", 0)),
        download_rate=int(fields.get("rateDownload", 0)),
        upload_rate=int(fields.get("rateUpload", 0)),
        upload_ratio=float(fields.get("uploadRatio", 0.0)),
        eta=int(fields.get("eta", -1)),
    )


class TransmissionClient:
    """Async facade over the blocking ``transmission_rpc`` client.

    The RPC client is created on first use, in a worker thread, so a daemon
    that is down at startup only fails the requests that need it.
    """

    def __init__(
        self,
        url: str = DEFAULT_RPC_URL,
        *,
        username: str | None = None,
        password: str | None = None,
        timeout_s: float = 30,
        factory: Callable[[], Client] | None = None,
    ) -> None:
        self._url = url
        self._factory = factory or partial(
            build_rpc_client,
            url,
            username=username,
            password=password,
            timeout_s=timeout_s,
        )
        self._client: Client | None = None
        self._client_lock = threading.Lock()

    def _get_client(self) -> Client:
        with self._client_lock:
            if self._client is None:
                self._client = self._factory()
            return self._client

    async def _call(self, op: str, fn: Callable[[Client], T]) -> T:
        def run() -> T:
            return fn(self._get_client())

        try:
            return await anyio.to_thread.run_sync(run)
        except TransmissionError as exc:
            logger.info("transmission.failed", op=op, url=self._url, error=str(exc))
            raise DaemonError(str(exc)) from exc

    def _resolve_ids(self, c: Client, ref: TorrentRef) -> list[int | str]:
        if isinstance(ref, tuple):
            return list(ref)
        return [t.id for t in c.get_torrents(arguments=["id"])]

    async def add_torrent(
        self, source: TorrentSource, download_dir: str | None = None
    ) -> NewTorrent:
        def run(c: Client) -> NewTorrent:
            t = c.add_torrent(source, download_dir=download_dir)
            return NewTorrent(id=int(t.id), hash=t.hash_string, name=t.name)

        added = await self._call("add_torrent", run)
        logger.info("transmission.added", torrent_id=added.id, download_dir=download_dir)
        return added

    async def is_port_open(self) -> bool:
        return await self._call("port_test", lambda c: bool(c.port_test()))

    async def get_session_stats(self) -> SessionStats:
        def run(c: Client) -> SessionStats:
            stats = c.session_stats()
            total = stats.cumulative_stats
            return SessionStats(
                download_rate=int(stats.download_speed),
                upload_rate=int(stats.upload_speed),
                active_torrents=int(stats.active_torrent_count),
                paused_torrents=int(stats.paused_torrent_count),
                downloaded_total=int(total.downloaded_bytes),
                uploaded_total=int(total.uploaded_bytes),
            )

        return await self._call("session_stats", run)

    async def get_turtle_mode(self) -> bool:
        return await self._call(
            "get_session", lambda c: bool(c.get_session().alt_speed_enabled)
        )

    async def set_turtle_mode(self, enabled: bool) -> None:
        await self._call(
            "set_session", lambda c: c.set_session(alt_speed_enabled=enabled)
        )

    async def start_torrents(self, ref: TorrentRef) -> None:
        def run(c: Client) -> None:
            ids = self._resolve_ids(c, ref)
            if ids:
                c.start_torrent(ids)

        await self._call("start_torrent", run)

    async def stop_torrents(self, ref: TorrentRef) -> None:
        def run(c: Client) -> None:
            ids = self._resolve_ids(c, ref)
            if ids:
                c.stop_torrent(ids)

        await self._call("stop_torrent", run)

    async def get_torrents(
        self, ref: TorrentRef, fields: Sequence[str] = LIST_FIELDS
    ) -> list[Torrent]:
        def run(c: Client) -> list[Torrent]:
            ids = list(ref) if isinstance(ref, tuple) else None
            arguments = list(dict.fromkeys(["id", *fields]))
            return [
                _torrent_from_rpc(t)
                for t in c.get_torrents(ids, arguments=arguments)
            ]

        return await self._call("get_torrents", run)

    async def remove_torrents(self, ref: TorrentRef, delete_data: bool) -> None:
        def run(c: Client) -> None:
            ids = self._resolve_ids(c, ref)
            if ids:
                c.remove_torrent(ids, delete_data=delete_data)

        await self._call("remove_torrent", run)
        logger.info("transmission.removed", delete_data=delete_data)
