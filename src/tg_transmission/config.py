from __future__ import annotations

import tomllib
from pathlib import Path

HOME_CONFIG_PATH = Path.home() / ".config" / "tg-transmission" / "config.toml"


class ConfigError(RuntimeError):
    pass


def read_config(cfg_path: Path) -> dict:
    try:
        raw = cfg_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigError(f"Missing config file {cfg_path}.") from None
    except OSError as e:
        raise ConfigError(f"Failed to read config file {cfg_path}: {e}") from e
    try:
        return tomllib.loads(raw)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Malformed TOML in {cfg_path}: {e}") from None


def resolve_config_path(path: str | Path | None) -> Path | None:
    """Return the config file to load, or None when running from env/flags only.

    An explicit path must exist; the default location is used only if present.
    """
    if path:
        cfg_path = Path(path).expanduser()
        if not cfg_path.exists():
            raise ConfigError(f"Missing config file {cfg_path}.") from None
    else:
        cfg_path = HOME_CONFIG_PATH
        if not cfg_path.exists():
            return None
    if not cfg_path.is_file():
        raise ConfigError(f"Config path {cfg_path} exists but is not a file.") from None
    return cfg_path
