from __future__ import annotations

import signal
from pathlib import Path
from typing import Any

import anyio
import typer

from . import __version__
from .auth import Authorizer
from .callbacks import CallbackRegistry
from .config import ConfigError
from .logging import get_logger, setup_logging
from .settings import BotSettings, load_settings
from .telegram.bridge import TelegramBridgeConfig
from .telegram.client import TelegramClient
from .telegram.loop import run_main_loop
from .transmission import TransmissionClient

logger = get_logger(__name__)


def _print_version_and_exit() -> None:
    typer.echo(__version__)
    raise typer.Exit()


def _version_callback(value: bool) -> None:
    if value:
        _print_version_and_exit()


def parse_location(value: str) -> dict[str, str]:
    name, sep, path = value.partition(":")
    if not sep or ":" in path or not name.strip() or not path.strip():
        raise ConfigError(f"invalid location value {value!r}; expected NAME:PATH")
    return {"name": name.strip(), "path": path.strip()}


def _cli_overrides(
    *,
    api_token: str | None,
    allow_user: list[str],
    transmission_url: str | None,
    location: list[str],
    set_commands: bool | None,
) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    telegram: dict[str, Any] = {}
    if api_token:
        telegram["api_token"] = api_token
    if allow_user:
        telegram["allow_users"] = list(allow_user)
    if telegram:
        overrides["telegram"] = telegram
    if transmission_url:
        overrides["transmission"] = {"url": transmission_url}
    if location:
        overrides["locations"] = [parse_location(value) for value in location]
    if set_commands is not None:
        overrides["set_commands"] = set_commands
    return overrides


def _build_bridge_config(settings: BotSettings) -> TelegramBridgeConfig:
    tr = settings.transmission
    return TelegramBridgeConfig(
        bot=TelegramClient(settings.telegram.api_token),
        daemon=TransmissionClient(
            tr.url,
            username=tr.username,
            password=tr.password,
            timeout_s=tr.timeout_s,
        ),
        authorizer=Authorizer(settings.telegram.allow_users),
        locations=settings.to_locations(),
        registry=CallbackRegistry(),
        set_commands=settings.set_commands,
        poll_timeout_s=settings.poll_timeout_s,
    )


async def _watch_signals(stop: anyio.Event) -> None:
    with anyio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
        async for signum in signals:
            logger.info("shutdown.signal", signal=signal.Signals(signum).name)
            stop.set()
            return


async def _run(cfg: TelegramBridgeConfig) -> None:
    stop = anyio.Event()
    try:
        async with anyio.create_task_group() as tg:
            tg.start_soon(_watch_signals, stop)
            logger.info(
                "startup",
                version=__version__,
                locations=[loc.name for loc in cfg.locations],
            )
            await run_main_loop(cfg, stop=stop)
            tg.cancel_scope.cancel()
    finally:
        await cfg.bot.close()


def run(
    version: bool = typer.Option(
        False,
        "--version",
        help="Show the version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    config: Path | None = typer.Option(
        None,
        "--config",
        help="Path to the TOML config (default: ~/.config/tg-transmission/config.toml).",
    ),
    api_token: str | None = typer.Option(
        None,
        "--api-token",
        help="Telegram bot API token.",
    ),
    allow_user: list[str] = typer.Option(
        [],
        "--allow-user",
        help="Telegram username allowed to talk to the bot (repeatable).",
    ),
    transmission_url: str | None = typer.Option(
        None,
        "--transmission-url",
        help="Transmission RPC URL.",
    ),
    location: list[str] = typer.Option(
        [],
        "--location",
        help="Download location in NAME:PATH form (repeatable).",
    ),
    set_commands: bool | None = typer.Option(
        None,
        "--set-commands/--no-set-commands",
        help="Publish the command list to Telegram on startup.",
        show_default=False,
    ),
    debug: bool = typer.Option(
        False,
        "--debug/--no-debug",
        help="Log Telegram requests and dispatched updates.",
    ),
) -> None:
    setup_logging(debug=debug)
    try:
        overrides = _cli_overrides(
            api_token=api_token,
            allow_user=allow_user,
            transmission_url=transmission_url,
            location=location,
            set_commands=set_commands,
        )
        settings, _ = load_settings(config, overrides=overrides)
    except ConfigError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=1)
    try:
        cfg = _build_bridge_config(settings)
    except ValueError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=1)
    anyio.run(_run, cfg)


def main() -> None:
    typer.run(run)


if __name__ == "__main__":
    main()
