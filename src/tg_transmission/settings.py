from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PositiveFloat,
    StringConstraints,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.types import NonNegativeInt
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import TomlConfigSettingsSource

from .callbacks import CALLBACK_ID_LEN
from .config import ConfigError, read_config, resolve_config_path
from .model import RESERVED_TOKENS, Location
from .transmission import DEFAULT_RPC_URL

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]

# Telegram caps callback_data at 64 bytes; the callback id takes the rest.
MAX_CALLBACK_DATA_BYTES = 64
MAX_LOCATION_NAME_BYTES = MAX_CALLBACK_DATA_BYTES - CALLBACK_ID_LEN


class TelegramSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    api_token: NonEmptyStr
    allow_users: list[NonEmptyStr] = Field(min_length=1)


class TransmissionSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    url: NonEmptyStr = DEFAULT_RPC_URL
    username: str | None = None
    password: str | None = None
    timeout_s: PositiveFloat = 30


class LocationSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: NonEmptyStr
    path: NonEmptyStr

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        if value.lower() in RESERVED_TOKENS:
            reserved = ", ".join(sorted(RESERVED_TOKENS))
            raise ValueError(f"location name {value!r} is reserved ({reserved})")
        if len(value.encode()) > MAX_LOCATION_NAME_BYTES:
            raise ValueError(
                f"location name {value!r} is longer than "
                f"{MAX_LOCATION_NAME_BYTES} bytes"
            )
        return value


class BotSettings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        env_prefix="TG_TRANSMISSION__",
        env_nested_delimiter="__",
        str_strip_whitespace=True,
    )

    set_commands: bool = True
    poll_timeout_s: NonNegativeInt = 10

    telegram: TelegramSettings
    transmission: TransmissionSettings = Field(default_factory=TransmissionSettings)
    locations: list[LocationSettings] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_locations(self) -> BotSettings:
        seen: set[str] = set()
        for location in self.locations:
            if location.name in seen:
                raise ValueError(f"duplicate location name {location.name!r}")
            seen.add(location.name)
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    def to_locations(self) -> tuple[Location, ...]:
        return tuple(Location(name=loc.name, path=loc.path) for loc in self.locations)


def load_settings(
    path: str | Path | None = None,
    *,
    overrides: dict[str, Any] | None = None,
) -> tuple[BotSettings, Path | None]:
    """Load settings from the TOML file (if any), the environment and ``overrides``.

    ``overrides`` wins over the environment, which wins over the file.
    """
    cfg_path = resolve_config_path(path)
    if cfg_path is not None:
        # Fail on TOML syntax with our own message before pydantic reads it.
        read_config(cfg_path)
    return _load_settings_from_path(cfg_path, overrides or {}), cfg_path


def _load_settings_from_path(
    cfg_path: Path | None, overrides: dict[str, Any]
) -> BotSettings:
    cfg = dict(BotSettings.model_config)
    cfg["toml_file"] = cfg_path
    Bound = type(
        "BotSettingsBound",
        (BotSettings,),
        {"model_config": SettingsConfigDict(**cfg)},
    )
    source = cfg_path if cfg_path is not None else "environment"
    try:
        return Bound(**overrides)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config in {source}: {exc}") from exc
